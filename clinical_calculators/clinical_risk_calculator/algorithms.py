"""Score algorithms.

Every algorithm is a pure function of a model definition and validated
values. The algorithm kind on the definition selects which one runs; no
model-specific code lives here.
"""

import math
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Mapping

from clinical_calculators.clinical_risk_calculator.exceptions import (
    MalformedModelDefinitionError,
)
from clinical_calculators.clinical_risk_calculator.interpolation import interpolate
from clinical_calculators.clinical_risk_calculator.models import (
    AlgorithmKind,
    CoefficientSet,
    Factor,
    ModelDefinition,
    PointRow,
    ScoreComponent,
)

DEFAULT_SUBGROUP = "all"


@dataclass(frozen=True)
class RawScore:
    """Algorithm output before calibration and clamping."""

    value: float
    components: list[ScoreComponent] = field(default_factory=list)


def normalize_value(value: Any) -> str:
    """Normalize a raw or typed value for equality matching."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip().lower()


def conditions_match(conditions: Mapping[str, Any], values: Mapping[str, Any]) -> bool:
    """Check that every ``field: expected`` condition holds for ``values``."""
    for name, expected in conditions.items():
        if name not in values or values[name] is None:
            return False
        if normalize_value(values[name]) != normalize_value(expected):
            return False
    return True


def in_range(x: float, low: float | None, high: float | None, closed: str = "left") -> bool:
    """Check ``x`` against a bucket with the given closure (left closed by default)."""
    if low is not None:
        if closed in ("left", "both"):
            if x < low:
                return False
        elif x <= low:
            return False
    if high is not None:
        if closed in ("right", "both"):
            if x > high:
                return False
        elif x >= high:
            return False
    return True


def resolve_subgroup(definition: ModelDefinition, values: Mapping[str, Any]) -> str:
    """Map input values to the coefficient set key for this model."""
    mapping = definition.subgroups
    if mapping is None:
        return DEFAULT_SUBGROUP

    matched = [key.key for key in mapping.keys if conditions_match(key.match, values)]
    if len(matched) != 1:
        raise MalformedModelDefinitionError(
            definition.model_id,
            f"subgroup mapping matched {len(matched)} keys for "
            + ", ".join(f"{f}={values.get(f)!r}" for f in mapping.fields),
        )
    return matched[0]


def _coefficient_set(definition: ModelDefinition, subgroup: str) -> CoefficientSet:
    try:
        return definition.coefficient_sets[subgroup]
    except KeyError:
        raise MalformedModelDefinitionError(
            definition.model_id, f"no coefficient set for subgroup {subgroup!r}"
        ) from None


def evaluate_factor(factor: Factor, values: Mapping[str, Any]) -> float:
    """Evaluate one factor of a coefficient term."""
    value = values[factor.field]
    if factor.transform == "ln":
        return math.log(float(value))
    if factor.transform == "value":
        return float(value)
    if factor.transform == "flag":
        return 1.0 if value else 0.0
    if factor.transform == "not":
        return 0.0 if value else 1.0
    if factor.transform == "is":
        return 1.0 if normalize_value(value) == normalize_value(factor.args[0]) else 0.0
    if factor.transform == "offset_floor":
        offset, floor = (float(a) for a in factor.args)
        return max(float(value) - offset, floor)
    raise ValueError(f"Unknown factor transform: {factor.transform}")


def linear_predictor(
    coefficients: CoefficientSet, values: Mapping[str, Any]
) -> tuple[float, list[ScoreComponent]]:
    """Sum of coefficient x factor-product over every term, plus the set constant."""
    total = coefficients.constant
    components: list[ScoreComponent] = []
    if coefficients.constant:
        components.append(
            ScoreComponent(
                component_type="constant",
                component_code="constant",
                coefficient=coefficients.constant,
                contribution=coefficients.constant,
            )
        )

    for term in coefficients.terms:
        product = 1.0
        for factor in term.factors:
            product *= evaluate_factor(factor, values)
        if product == 0.0:
            continue
        contribution = term.coefficient * product
        total += contribution
        components.append(
            ScoreComponent(
                component_type="coefficient",
                component_code=term.name,
                coefficient=term.coefficient,
                contribution=contribution,
                source_data=sorted({f"{f.field}={values[f.field]}" for f in term.factors}),
            )
        )
    return total, components


def row_matches(row: PointRow, values: Mapping[str, Any]) -> bool:
    """Check whether a point-table row applies to ``values``."""
    if row.match == "always":
        return True

    value = values.get(row.field) if row.field else None
    if value is None:
        return False

    if row.match == "flag":
        expected = (row.value or "true").strip().lower() != "false"
        return bool(value) is expected
    if row.match == "option":
        return normalize_value(value) == normalize_value(row.value)

    # range
    if isinstance(value, (bool, str)):
        return False
    if not in_range(float(value), row.low, row.high, row.closed):
        return False
    if row.band_field is not None:
        band_value = values.get(row.band_field)
        if band_value is None:
            return False
        return in_range(float(band_value), row.band_low, row.band_high, "left")
    return True


def sum_points(
    rows: Iterable[PointRow], values: Mapping[str, Any]
) -> tuple[float, list[ScoreComponent]]:
    """Add up the points of every matching row, in table order."""
    total = 0.0
    components: list[ScoreComponent] = []
    for row in rows:
        if not row_matches(row, values):
            continue
        total += row.points
        source = [f"{row.field}={values[row.field]}"] if row.field else []
        if row.band_field:
            source.append(f"{row.band_field}={values[row.band_field]}")
        components.append(
            ScoreComponent(
                component_type="points",
                component_code=row.contributor,
                coefficient=row.points,
                contribution=row.points,
                source_data=source,
            )
        )
    return total, components


# ── Algorithm kinds ──────────────────────────────────────────────────────────


def pooled_cohort_risk(
    definition: ModelDefinition, values: Mapping[str, Any], subgroup: str
) -> RawScore:
    """Survival-form risk: ``1 - S0 ** exp(y - mean(y))``, scaled to the output unit."""
    coefficients = _coefficient_set(definition, subgroup)
    if coefficients.baseline_survival is None or coefficients.mean_coefficient_sum is None:
        raise MalformedModelDefinitionError(
            definition.model_id,
            f"coefficient set {subgroup!r} lacks baseline survival or mean coefficient sum",
        )
    y, components = linear_predictor(coefficients, values)
    risk = 1.0 - coefficients.baseline_survival ** math.exp(y - coefficients.mean_coefficient_sum)
    return RawScore(value=risk * definition.output.scale, components=components)


def logistic_risk(
    definition: ModelDefinition, values: Mapping[str, Any], subgroup: str
) -> RawScore:
    """Logistic-link risk: ``e^y / (1 + e^y)``, scaled to the output unit."""
    coefficients = _coefficient_set(definition, subgroup)
    y, components = linear_predictor(coefficients, values)
    if y >= 0:
        probability = 1.0 / (1.0 + math.exp(-y))
    else:
        exp_y = math.exp(y)
        probability = exp_y / (1.0 + exp_y)
    return RawScore(value=probability * definition.output.scale, components=components)


def points_score(
    definition: ModelDefinition, values: Mapping[str, Any], subgroup: str
) -> RawScore:
    """Sum of bucket, flag and option points from the model's scoring table."""
    table = definition.point_tables.get(definition.scoring_table)
    if table is None:
        raise MalformedModelDefinitionError(
            definition.model_id, f"missing point table {definition.scoring_table!r}"
        )
    total, components = sum_points(table.rows, values)
    return RawScore(value=total, components=components)


def interpolated_score(
    definition: ModelDefinition, values: Mapping[str, Any], subgroup: str
) -> RawScore:
    """Interpolate the model's scoring table at the declared score field."""
    table = definition.interpolation_tables.get(definition.scoring_table)
    if table is None or definition.score_field is None:
        raise MalformedModelDefinitionError(
            definition.model_id, "piecewise interpolation needs a knot table and a score field"
        )
    x = float(values[definition.score_field])
    value = interpolate(table, x)
    component = ScoreComponent(
        component_type="points",
        component_code=table.name,
        coefficient=x,
        contribution=value,
        source_data=[f"{definition.score_field}={values[definition.score_field]}"],
    )
    return RawScore(value=value, components=[component])


ALGORITHMS: dict[AlgorithmKind, Callable[[ModelDefinition, Mapping[str, Any], str], RawScore]] = {
    AlgorithmKind.logistic_coefficient_sum: pooled_cohort_risk,
    AlgorithmKind.weighted_logistic_sum: logistic_risk,
    AlgorithmKind.additive_points: points_score,
    AlgorithmKind.weighted_sum: points_score,
    AlgorithmKind.piecewise_interpolation: interpolated_score,
}


def compute_raw_score(
    definition: ModelDefinition, values: Mapping[str, Any], subgroup: str | None = None
) -> RawScore:
    """Run the algorithm the definition is tagged with.

    Args:
        definition: Model definition
        values: Validated input values
        subgroup: Coefficient set key (resolved from ``values`` when omitted)

    Returns:
        RawScore with the value and its ordered breakdown
    """
    if subgroup is None:
        subgroup = resolve_subgroup(definition, values)
    return ALGORITHMS[definition.algorithm](definition, values, subgroup)
