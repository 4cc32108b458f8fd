"""Model registry.

Holds every model definition, keyed by model id. Definitions are loaded once
from the packaged tables and checked for structural problems before the
registry is usable; after construction the registry is read-only.
"""

import itertools
import logging
from pathlib import Path
from types import MappingProxyType
from typing import Iterator, Mapping

from clinical_calculators.clinical_risk_calculator.algorithms import DEFAULT_SUBGROUP, conditions_match
from clinical_calculators.clinical_risk_calculator.auxiliary import DERIVED_FIELDS, VALUE_KINDS
from clinical_calculators.clinical_risk_calculator.exceptions import (
    MalformedModelDefinitionError,
    UnknownModelError,
)
from clinical_calculators.clinical_risk_calculator.models import (
    AlgorithmKind,
    FieldSpec,
    ModelDefinition,
    PointRow,
)
from clinical_calculators.clinical_risk_calculator.table_loader import load_model_definitions

logger = logging.getLogger(__name__)

NUMERIC_KINDS = ("integer", "number")
FACTOR_KINDS = {
    "ln": NUMERIC_KINDS,
    "value": NUMERIC_KINDS,
    "offset_floor": NUMERIC_KINDS,
    "flag": ("boolean",),
    "not": ("boolean",),
    "is": ("choice",),
}


class _Checker:
    """Structural checks for one model definition."""

    def __init__(self, definition: ModelDefinition):
        self.definition = definition
        self.fields = {spec.name: spec for spec in definition.fields}

    def fail(self, problem: str) -> None:
        raise MalformedModelDefinitionError(self.definition.model_id, problem)

    def field(self, name: str | None, context: str, kinds: tuple[str, ...] | None = None) -> FieldSpec:
        spec = self.fields.get(name or "")
        if spec is None:
            self.fail(f"{context} references undeclared field {name!r}")
        if kinds is not None and spec.kind not in kinds:
            self.fail(f"{context} needs a {'/'.join(kinds)} field, {name!r} is {spec.kind}")
        return spec

    def condition_value(self, name: str, expected: object, context: str) -> None:
        spec = self.field(name, context)
        if spec.kind == "choice" and str(expected) not in spec.options:
            self.fail(f"{context} tests {name!r} for undeclared option {expected!r}")
        if spec.kind == "boolean" and not isinstance(expected, bool):
            self.fail(f"{context} tests flag {name!r} against non-boolean {expected!r}")

    def run(self) -> None:
        self.check_fields()
        self.check_thresholds()
        self.check_knots()
        self.check_subgroups()
        self.check_algorithm()
        self.check_point_tables()
        self.check_calibration()
        self.check_auxiliary()
        self.check_recommendations()

    def check_fields(self) -> None:
        if len(self.fields) != len(self.definition.fields):
            self.fail("duplicate field names")
        for spec in self.definition.fields:
            if spec.kind == "choice" and not spec.options:
                self.fail(f"choice field {spec.name!r} declares no options")
            if spec.kind in NUMERIC_KINDS:
                if spec.minimum is not None and spec.maximum is not None and spec.minimum > spec.maximum:
                    self.fail(f"field {spec.name!r} has minimum above maximum")
            if not spec.required and spec.default is None and spec.kind in ("boolean", "choice"):
                self.fail(f"optional field {spec.name!r} declares no default")
            if spec.default is not None:
                if spec.kind == "boolean" and not isinstance(spec.default, bool):
                    self.fail(f"flag {spec.name!r} has a non-boolean default")
                if spec.kind == "choice" and spec.default not in spec.options:
                    self.fail(f"field {spec.name!r} defaults to undeclared option {spec.default!r}")

    def check_thresholds(self) -> None:
        bands = self.definition.thresholds
        if not bands:
            self.fail("no threshold bands")
        if bands[0].low > self.definition.output.minimum:
            self.fail(
                f"thresholds start at {bands[0].low}, above the output minimum "
                f"{self.definition.output.minimum}"
            )
        if len({band.category for band in bands}) != len(bands):
            self.fail("duplicate threshold categories")
        for current, following in itertools.pairwise(bands):
            if current.high is None:
                self.fail(f"band {current.category!r} is open-ended but not last")
            if current.high <= current.low:
                self.fail(f"band {current.category!r} is empty")
            if current.high != following.low:
                self.fail(
                    f"thresholds are not contiguous between {current.category!r} "
                    f"and {following.category!r}"
                )
        if bands[-1].high is not None:
            self.fail("last threshold band must be open-ended")

    def check_knots(self) -> None:
        for table in self.definition.interpolation_tables.values():
            if not table.knots:
                self.fail(f"interpolation table {table.name!r} has no knots")
            for (x0, _), (x1, _) in itertools.pairwise(table.knots):
                if x1 <= x0:
                    self.fail(
                        f"interpolation table {table.name!r} knots are not strictly ascending "
                        f"({x0} then {x1})"
                    )

    def check_subgroups(self) -> None:
        mapping = self.definition.subgroups
        if mapping is None:
            return
        specs = [self.field(name, "subgroup mapping", ("choice",)) for name in mapping.fields]
        for key in mapping.keys:
            for name, expected in key.match.items():
                if name not in mapping.fields:
                    self.fail(f"subgroup key {key.key!r} matches on non-subgroup field {name!r}")
                self.condition_value(name, expected, f"subgroup key {key.key!r}")
            if key.key not in self.definition.coefficient_sets:
                self.fail(f"subgroup key {key.key!r} has no coefficient set")

        for combination in itertools.product(*(spec.options for spec in specs)):
            values = dict(zip(mapping.fields, combination))
            hits = [key.key for key in mapping.keys if conditions_match(key.match, values)]
            if len(hits) != 1:
                self.fail(f"subgroup mapping matches {len(hits)} keys for {values}")

    def check_algorithm(self) -> None:
        definition = self.definition
        kind = definition.algorithm

        if kind in (AlgorithmKind.logistic_coefficient_sum, AlgorithmKind.weighted_logistic_sum):
            if definition.subgroups is None and DEFAULT_SUBGROUP not in definition.coefficient_sets:
                self.fail(f"no subgroup mapping and no {DEFAULT_SUBGROUP!r} coefficient set")
            for name, coefficients in definition.coefficient_sets.items():
                if not coefficients.terms:
                    self.fail(f"coefficient set {name!r} has no terms")
                if kind == AlgorithmKind.logistic_coefficient_sum and (
                    coefficients.baseline_survival is None
                    or coefficients.mean_coefficient_sum is None
                ):
                    self.fail(f"coefficient set {name!r} lacks baseline survival or mean sum")
                for term in coefficients.terms:
                    self.check_term_factors(term.name, term.factors)

        elif kind in (AlgorithmKind.additive_points, AlgorithmKind.weighted_sum):
            table = definition.point_tables.get(definition.scoring_table)
            if table is None:
                self.fail(f"missing scoring table {definition.scoring_table!r}")
            if kind == AlgorithmKind.additive_points:
                for row in table.rows:
                    if not float(row.points).is_integer():
                        self.fail(f"additive points row {row.contributor!r} has non-integer points")

        elif kind == AlgorithmKind.piecewise_interpolation:
            if definition.scoring_table not in definition.interpolation_tables:
                self.fail(f"missing interpolation table {definition.scoring_table!r}")
            self.field(definition.score_field, "piecewise interpolation", NUMERIC_KINDS)

    def check_term_factors(self, term: str, factors) -> None:
        for factor in factors:
            spec = self.field(factor.field, f"term {term!r}", FACTOR_KINDS[factor.transform])
            if factor.transform == "is":
                if len(factor.args) != 1 or factor.args[0] not in spec.options:
                    self.fail(f"term {term!r} tests {factor.field!r} for an undeclared option")
            elif factor.transform == "offset_floor":
                if len(factor.args) != 2:
                    self.fail(f"term {term!r} offset_floor needs offset and floor")
            elif factor.transform == "ln" and (spec.minimum is None or spec.minimum <= 0):
                self.fail(f"term {term!r} takes ln of {factor.field!r} which may be <= 0")

    def check_row(self, table: str, row: PointRow) -> None:
        context = f"point table {table!r} row {row.contributor!r}"
        if row.match == "always":
            return
        if row.field in DERIVED_FIELDS and table != self.definition.scoring_table:
            if row.match != "range":
                self.fail(f"{context} can only range-match {row.field!r}")
            return
        if row.match == "flag":
            self.field(row.field, context, ("boolean",))
            if row.value is not None and row.value.lower() not in ("true", "false"):
                self.fail(f"{context} flag value must be true or false")
        elif row.match == "option":
            spec = self.field(row.field, context, ("choice",))
            if row.value not in spec.options:
                self.fail(f"{context} matches undeclared option {row.value!r}")
        else:
            self.field(row.field, context, NUMERIC_KINDS)
            if row.low is None and row.high is None:
                self.fail(f"{context} range has no bounds")
            if row.low is not None and row.high is not None and row.low >= row.high:
                self.fail(f"{context} range is empty")
            if row.band_field is not None:
                self.field(row.band_field, context, NUMERIC_KINDS)

    def check_point_tables(self) -> None:
        for name, table in self.definition.point_tables.items():
            for row in table.rows:
                self.check_row(name, row)

    def check_calibration(self) -> None:
        for rule in self.definition.calibration:
            context = f"calibration rule {rule.rule_id!r}"
            if rule.factor == 0:
                self.fail(f"{context} has a zero factor")
            for name, expected in rule.when.items():
                self.condition_value(name, expected, context)

    def check_auxiliary(self) -> None:
        categories = set(self.definition.categories)
        names = set()
        for spec in self.definition.auxiliary:
            context = f"auxiliary output {spec.name!r}"
            if spec.name in names:
                self.fail(f"{context} is declared twice")
            names.add(spec.name)
            if spec.kind == "interpolation" and spec.table not in self.definition.interpolation_tables:
                self.fail(f"{context} references missing interpolation table {spec.table!r}")
            if spec.kind in ("point_sum", "scaled_contributions") and (
                spec.table not in self.definition.point_tables
            ):
                self.fail(f"{context} references missing point table {spec.table!r}")
            if spec.kind == "category_lookup":
                unknown = set(spec.values) - categories
                if unknown:
                    self.fail(f"{context} maps undeclared categories {sorted(unknown)}")
            if spec.only_if_field is not None:
                self.field(spec.only_if_field, context, NUMERIC_KINDS)

        classify_on = self.definition.classify_on
        if classify_on != "final_value":
            spec = next((s for s in self.definition.auxiliary if s.name == classify_on), None)
            if spec is None or spec.kind not in VALUE_KINDS or spec.kind == "scaled_contributions":
                self.fail(f"classify_on {classify_on!r} is not a numeric auxiliary output")
            if spec.only_if_field is not None:
                self.fail(f"classify_on {classify_on!r} is not produced for every input")

    def check_recommendations(self) -> None:
        rules = self.definition.recommendations
        unknown = set(rules.by_category) - set(self.definition.categories)
        if unknown:
            self.fail(f"recommendations reference undeclared categories {sorted(unknown)}")
        for factor in rules.by_factor:
            for name, expected in factor.when.items():
                self.condition_value(name, expected, "factor recommendation")


def check_definition(definition: ModelDefinition) -> None:
    """Run every structural check; raises MalformedModelDefinitionError."""
    _Checker(definition).run()


class ModelRegistry:
    """Read-only lookup of model definitions by id."""

    def __init__(self, definitions: Mapping[str, ModelDefinition]):
        for model_id, definition in definitions.items():
            if model_id != definition.model_id:
                raise MalformedModelDefinitionError(model_id, "registered under a different id")
            check_definition(definition)
        self._definitions = MappingProxyType(dict(definitions))

    @classmethod
    def from_tables(cls, tables_dir: Path | None = None) -> "ModelRegistry":
        """Load and check every definition from the table directory."""
        registry = cls(load_model_definitions(tables_dir))
        logger.info("Model registry ready: %s", ", ".join(registry.model_ids()))
        return registry

    def get(self, model_id: str) -> ModelDefinition:
        try:
            return self._definitions[model_id]
        except KeyError:
            raise UnknownModelError(model_id, list(self._definitions)) from None

    def model_ids(self) -> list[str]:
        return list(self._definitions)

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._definitions

    def __iter__(self) -> Iterator[ModelDefinition]:
        return iter(self._definitions.values())

    def __len__(self) -> int:
        return len(self._definitions)

