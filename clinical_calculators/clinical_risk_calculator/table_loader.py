"""Load model tables shipped with the package.

Tables are read from ``model_tables/`` (or ``CLINICAL_CALC_TABLES_DIR``):
    - models.yaml: per-model fields, subgroups, calibration, recommendations
    - coefficients.csv: coefficient terms by model and subgroup
    - point_tables.csv: bucket/flag/option point rows by model and table
    - thresholds.csv: ordered category bands by model
    - interpolation_knots.csv: (score, outcome) knots by model and table

CSV files are read with every column as text so that blank cells stay null
and numeric conversion happens here, row by row.
"""

import logging
import re
from pathlib import Path
from typing import Any

import polars as pl
import yaml
from pydantic import ValidationError

from clinical_calculators.clinical_risk_calculator.exceptions import (
    MalformedModelDefinitionError,
)
from clinical_calculators.clinical_risk_calculator.models import (
    AuxiliaryOutputSpec,
    CalibrationRule,
    CoefficientSet,
    CoefficientTerm,
    Factor,
    FieldSpec,
    InterpolationTable,
    ModelDefinition,
    OutputSpec,
    PointRow,
    PointTable,
    RecommendationRules,
    SubgroupMapping,
    ThresholdBand,
)
from clinical_calculators.settings import DEFAULT_TABLES_DIR

logger = logging.getLogger(__name__)

# Cache loaded tables
_CACHE: dict[str, Any] = {}

# Matches factors like ln(age), is(sex,female), offset_floor(age,59,1)
_FACTOR_PATTERN = re.compile(r"^(\w+)\(([^)]*)\)$")


def _get_tables_dir(tables_dir: Path | None = None) -> Path:
    """Get the directory holding the model tables."""
    resolved = Path(tables_dir) if tables_dir is not None else DEFAULT_TABLES_DIR
    if not resolved.exists():
        raise FileNotFoundError(f"Model tables not found. Expected directory: {resolved}")
    return resolved


def _read_csv(path: Path) -> pl.DataFrame:
    return pl.read_csv(path, infer_schema_length=0)


def _opt_float(value: Any) -> float | None:
    if value is None:
        return None
    text = str(value).strip()
    return float(text) if text else None


def _opt_str(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def parse_expression(expression: str) -> tuple[Factor, ...]:
    """Parse a coefficient expression into its factors.

    Example: "ln(age)*ln(total_cholesterol)"
    Returns: (Factor(transform="ln", field="age"), Factor(transform="ln", field="total_cholesterol"))
    """
    factors = []
    for part in expression.split("*"):
        match = _FACTOR_PATTERN.match(part.strip())
        if not match:
            raise ValueError(f"Cannot parse factor {part!r} in expression {expression!r}")
        transform, raw_args = match.groups()
        args = [a.strip() for a in raw_args.split(",") if a.strip()]
        if not args:
            raise ValueError(f"Factor {part!r} names no field")
        factors.append(Factor(transform=transform, field=args[0], args=tuple(args[1:])))
    return tuple(factors)


def load_catalog(tables_dir: Path | None = None) -> dict[str, dict[str, Any]]:
    """Load the per-model catalog from models.yaml.

    Returns:
        Dictionary mapping model id to its raw catalog entry
    """
    tables_dir = _get_tables_dir(tables_dir)
    cache_key = f"catalog_{tables_dir}"
    if cache_key in _CACHE:
        return _CACHE[cache_key]

    with open(tables_dir / "models.yaml", encoding="utf-8") as f:
        data = yaml.safe_load(f) or {}

    catalog = data.get("models") or {}
    if not isinstance(catalog, dict):
        raise ValueError("models.yaml must contain a 'models' mapping")

    _CACHE[cache_key] = catalog
    return catalog


def load_coefficient_terms(
    tables_dir: Path | None = None,
) -> dict[tuple[str, str], list[CoefficientTerm]]:
    """Load coefficient terms from coefficients.csv.

    Returns:
        Dictionary mapping (model, subgroup) to its ordered terms
        e.g., {("ascvd", "white_male"): [CoefficientTerm(name="ln_age", ...), ...]}
    """
    tables_dir = _get_tables_dir(tables_dir)
    cache_key = f"coefficients_{tables_dir}"
    if cache_key in _CACHE:
        return _CACHE[cache_key]

    terms: dict[tuple[str, str], list[CoefficientTerm]] = {}

    df = _read_csv(tables_dir / "coefficients.csv")
    for row in df.iter_rows(named=True):
        model = str(row["model"]).strip()
        subgroup = str(row["subgroup"]).strip()
        expression = str(row["expression"]).strip()
        try:
            factors = parse_expression(expression)
        except ValueError as exc:
            raise MalformedModelDefinitionError(model, str(exc)) from exc

        terms.setdefault((model, subgroup), []).append(
            CoefficientTerm(
                name=str(row["term"]).strip(),
                coefficient=float(row["coefficient"]),
                expression=expression,
                factors=factors,
            )
        )

    _CACHE[cache_key] = terms
    return terms


def load_point_tables(tables_dir: Path | None = None) -> dict[tuple[str, str], list[PointRow]]:
    """Load point rows from point_tables.csv.

    Returns:
        Dictionary mapping (model, table) to its ordered rows
    """
    tables_dir = _get_tables_dir(tables_dir)
    cache_key = f"point_tables_{tables_dir}"
    if cache_key in _CACHE:
        return _CACHE[cache_key]

    tables: dict[tuple[str, str], list[PointRow]] = {}

    df = _read_csv(tables_dir / "point_tables.csv")
    for row in df.iter_rows(named=True):
        model = str(row["model"]).strip()
        table = str(row["table"]).strip()
        try:
            point_row = PointRow(
                contributor=str(row["contributor"]).strip(),
                field=_opt_str(row.get("field")),
                match=str(row["match"]).strip(),
                value=_opt_str(row.get("value")),
                low=_opt_float(row.get("low")),
                high=_opt_float(row.get("high")),
                closed=_opt_str(row.get("closed")) or "left",
                band_field=_opt_str(row.get("band_field")),
                band_low=_opt_float(row.get("band_low")),
                band_high=_opt_float(row.get("band_high")),
                points=float(row["points"]),
            )
        except (ValidationError, ValueError) as exc:
            raise MalformedModelDefinitionError(model, f"bad row in table {table!r}: {exc}") from exc
        tables.setdefault((model, table), []).append(point_row)

    _CACHE[cache_key] = tables
    return tables


def load_thresholds(tables_dir: Path | None = None) -> dict[str, list[ThresholdBand]]:
    """Load category bands from thresholds.csv, in file order."""
    tables_dir = _get_tables_dir(tables_dir)
    cache_key = f"thresholds_{tables_dir}"
    if cache_key in _CACHE:
        return _CACHE[cache_key]

    thresholds: dict[str, list[ThresholdBand]] = {}

    df = _read_csv(tables_dir / "thresholds.csv")
    for row in df.iter_rows(named=True):
        model = str(row["model"]).strip()
        thresholds.setdefault(model, []).append(
            ThresholdBand(
                category=str(row["category"]).strip(),
                low=float(row["low"]),
                high=_opt_float(row.get("high")),
            )
        )

    _CACHE[cache_key] = thresholds
    return thresholds


def load_interpolation_knots(
    tables_dir: Path | None = None,
) -> dict[tuple[str, str], list[tuple[float, float]]]:
    """Load (score, outcome) knots from interpolation_knots.csv, in file order."""
    tables_dir = _get_tables_dir(tables_dir)
    cache_key = f"knots_{tables_dir}"
    if cache_key in _CACHE:
        return _CACHE[cache_key]

    knots: dict[tuple[str, str], list[tuple[float, float]]] = {}

    df = _read_csv(tables_dir / "interpolation_knots.csv")
    for row in df.iter_rows(named=True):
        key = (str(row["model"]).strip(), str(row["table"]).strip())
        knots.setdefault(key, []).append((float(row["score"]), float(row["outcome"])))

    _CACHE[cache_key] = knots
    return knots


def _field_spec(model_id: str, spec: dict[str, Any]) -> FieldSpec:
    # YAML 1.1 reads unquoted 51_85 as the int 5185; options must stay text
    for option in spec.get("options") or []:
        if not isinstance(option, str):
            raise MalformedModelDefinitionError(
                model_id,
                f"field {spec.get('name')!r} option {option!r} is not a string "
                "(quote numeric-looking options in models.yaml)",
            )
    return FieldSpec(**spec)


def _build_definition(
    model_id: str,
    entry: dict[str, Any],
    terms: dict[tuple[str, str], list[CoefficientTerm]],
    point_tables: dict[tuple[str, str], list[PointRow]],
    thresholds: dict[str, list[ThresholdBand]],
    knots: dict[tuple[str, str], list[tuple[float, float]]],
) -> ModelDefinition:
    coefficient_sets = {}
    for subgroup, params in (entry.get("coefficient_sets") or {}).items():
        coefficient_sets[subgroup] = CoefficientSet(
            subgroup=subgroup,
            terms=tuple(terms.get((model_id, subgroup), [])),
            **(params or {}),
        )

    tables = {
        name: PointTable(name=name, rows=tuple(rows))
        for (model, name), rows in point_tables.items()
        if model == model_id
    }
    interpolation = {
        name: InterpolationTable(name=name, knots=tuple(points))
        for (model, name), points in knots.items()
        if model == model_id
    }
    subgroups = entry.get("subgroups")

    return ModelDefinition(
        model_id=model_id,
        title=entry.get("title", model_id),
        algorithm=entry["algorithm"],
        reference=entry.get("reference", ""),
        fields=tuple(_field_spec(model_id, spec) for spec in entry.get("fields") or []),
        subgroups=SubgroupMapping(**subgroups) if subgroups else None,
        coefficient_sets=coefficient_sets,
        point_tables=tables,
        scoring_table=entry.get("scoring_table", "score"),
        score_field=entry.get("score_field"),
        interpolation_tables=interpolation,
        thresholds=tuple(thresholds.get(model_id, [])),
        calibration=tuple(CalibrationRule(**rule) for rule in entry.get("calibration") or []),
        auxiliary=tuple(AuxiliaryOutputSpec(**aux) for aux in entry.get("auxiliary") or []),
        recommendations=RecommendationRules(**(entry.get("recommendations") or {})),
        classify_on=entry.get("classify_on", "final_value"),
        output=OutputSpec(**(entry.get("output") or {})),
    )


def load_model_definitions(tables_dir: Path | None = None) -> dict[str, ModelDefinition]:
    """Assemble every model definition from the catalog and CSV tables.

    Args:
        tables_dir: Table directory (defaults to the packaged ``model_tables``)

    Returns:
        Dictionary mapping model id to its frozen definition, in catalog order
    """
    tables_dir = _get_tables_dir(tables_dir)
    cache_key = f"definitions_{tables_dir}"
    if cache_key in _CACHE:
        return _CACHE[cache_key]

    catalog = load_catalog(tables_dir)
    terms = load_coefficient_terms(tables_dir)
    point_tables = load_point_tables(tables_dir)
    thresholds = load_thresholds(tables_dir)
    knots = load_interpolation_knots(tables_dir)

    definitions: dict[str, ModelDefinition] = {}
    for model_id, entry in catalog.items():
        try:
            definitions[model_id] = _build_definition(
                model_id, entry or {}, terms, point_tables, thresholds, knots
            )
        except (ValidationError, KeyError, TypeError) as exc:
            raise MalformedModelDefinitionError(model_id, str(exc)) from exc

    # Table rows for models the catalog does not declare are a data error
    orphans = {model for model, _ in terms} | {model for model, _ in point_tables}
    orphans |= set(thresholds) | {model for model, _ in knots}
    orphans -= set(definitions)
    if orphans:
        raise MalformedModelDefinitionError(
            sorted(orphans)[0], "table rows present for a model missing from models.yaml"
        )

    logger.info("Loaded %d model definitions from %s", len(definitions), tables_dir)
    _CACHE[cache_key] = definitions
    return definitions


def clear_cache() -> None:
    """Clear the table cache."""
    _CACHE.clear()
