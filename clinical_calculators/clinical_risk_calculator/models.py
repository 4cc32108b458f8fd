"""Data models for the clinical risk calculator.

Model definitions are loaded once from the static tables in ``model_tables/``
and are frozen afterwards. Inputs and outputs are per-call values.
"""

from enum import Enum
from types import MappingProxyType
from typing import Any, Literal, Mapping

from pydantic import BaseModel, ConfigDict, Field, field_serializer, field_validator

from clinical_calculators.clinical_risk_calculator.exceptions import ErrorCode

FieldKind = Literal["integer", "number", "boolean", "choice"]
Closure = Literal["left", "right", "both", "neither"]


class AlgorithmKind(str, Enum):
    """Score computation strategies."""

    logistic_coefficient_sum = "logistic_coefficient_sum"
    weighted_logistic_sum = "weighted_logistic_sum"
    additive_points = "additive_points"
    piecewise_interpolation = "piecewise_interpolation"
    weighted_sum = "weighted_sum"


class _Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


# ── Model definition tables ──────────────────────────────────────────────────


class FieldSpec(_Frozen):
    """Declared input field.

    Attributes:
        name: Field name as sent by the form layer
        kind: 'integer' (parseInt), 'number' (parseFloat), 'boolean' or 'choice'
        required: Whether a value must be supplied
        minimum: Inclusive lower bound for numeric fields
        maximum: Inclusive upper bound for numeric fields
        options: Allowed values for choice fields
        default: Value used when a non-required field is absent
        unit: Unit the published formula expects (informational)
    """

    name: str
    kind: FieldKind
    required: bool = True
    minimum: float | None = None
    maximum: float | None = None
    options: tuple[str, ...] = ()
    default: bool | str | None = None
    unit: str = ""


class Factor(_Frozen):
    """One multiplicative factor of a coefficient term, e.g. ``ln(age)``."""

    transform: Literal["ln", "value", "flag", "not", "is", "offset_floor"]
    field: str
    args: tuple[str, ...] = ()


class CoefficientTerm(_Frozen):
    name: str
    coefficient: float
    expression: str
    factors: tuple[Factor, ...]


class CoefficientSet(_Frozen):
    """Coefficients for one demographic subgroup.

    ``baseline_survival`` and ``mean_coefficient_sum`` are only used by the
    Pooled Cohort (survival) link; ``constant`` by the logistic link.
    """

    subgroup: str
    terms: tuple[CoefficientTerm, ...] = ()
    constant: float = 0.0
    baseline_survival: float | None = None
    mean_coefficient_sum: float | None = None


class PointRow(_Frozen):
    """One bucket of a point table.

    ``match`` selects how ``field`` is tested: a boolean flag, a choice
    option, a numeric range, or unconditionally. Range rows may also carry a
    band on a second field (two-key lookup).
    """

    contributor: str
    field: str | None = None
    match: Literal["flag", "option", "range", "always"]
    value: str | None = None
    low: float | None = None
    high: float | None = None
    closed: Closure = "left"
    band_field: str | None = None
    band_low: float | None = None
    band_high: float | None = None
    points: float


class PointTable(_Frozen):
    name: str
    rows: tuple[PointRow, ...]


class ThresholdBand(_Frozen):
    """Half-open ``[low, high)`` band; ``high`` is None for the last band."""

    category: str
    low: float
    high: float | None = None


class InterpolationTable(_Frozen):
    """Ordered (score, outcome) knots."""

    name: str
    knots: tuple[tuple[float, float], ...]


class CalibrationRule(_Frozen):
    """Post-hoc rescaling of a computed value for a subgroup.

    The rule fires when every ``when`` item matches the raw input and the raw
    value lies inside the (optional) ``above``/``below`` window.
    """

    rule_id: str
    when: dict[str, str | bool] = Field(default_factory=dict)
    above: float | None = None
    above_inclusive: bool = False
    below: float | None = None
    below_inclusive: bool = True
    operation: Literal["divide", "multiply"] = "divide"
    factor: float
    enabled: bool = True
    clinical_review: bool = False
    note: str = ""


class FactorRecommendation(_Frozen):
    when: dict[str, str | bool] = Field(default_factory=dict)
    min_value: float | None = None
    add: tuple[str, ...]


class RecommendationRules(_Frozen):
    base: tuple[str, ...] = ()
    by_category: dict[str, tuple[str, ...]] = Field(default_factory=dict)
    by_factor: tuple[FactorRecommendation, ...] = ()


class AuxiliaryOutputSpec(_Frozen):
    """Model-specific secondary output.

    Attributes:
        name: Output key in ``ScoreOutput.auxiliary``
        kind: 'interpolation', 'category_lookup', 'point_sum' or 'scaled_contributions'
        table: Interpolation or point table name
        values: Category -> value mapping (category_lookup)
        only_if_field: Output is only produced when this field lies in [only_if_min, only_if_max]
        base: Starting value for point_sum
        cap: Upper cap for point_sum
    """

    name: str
    kind: Literal["interpolation", "category_lookup", "point_sum", "scaled_contributions"]
    table: str | None = None
    values: dict[str, Any] = Field(default_factory=dict)
    only_if_field: str | None = None
    only_if_min: float | None = None
    only_if_max: float | None = None
    base: float = 0.0
    cap: float | None = None


class SubgroupKey(_Frozen):
    match: dict[str, str]
    key: str


class SubgroupMapping(_Frozen):
    fields: tuple[str, ...]
    keys: tuple[SubgroupKey, ...]


class OutputSpec(_Frozen):
    """Declared output range of the final value."""

    unit: str = "points"
    minimum: float = 0.0
    scale: float = 1.0
    bounds: tuple[float, float] | None = None


class ModelDefinition(_Frozen):
    """Everything needed to score one clinical model."""

    model_id: str
    title: str
    algorithm: AlgorithmKind
    fields: tuple[FieldSpec, ...]
    subgroups: SubgroupMapping | None = None
    coefficient_sets: dict[str, CoefficientSet] = Field(default_factory=dict)
    point_tables: dict[str, PointTable] = Field(default_factory=dict)
    scoring_table: str = "score"
    score_field: str | None = None
    interpolation_tables: dict[str, InterpolationTable] = Field(default_factory=dict)
    thresholds: tuple[ThresholdBand, ...]
    calibration: tuple[CalibrationRule, ...] = ()
    auxiliary: tuple[AuxiliaryOutputSpec, ...] = ()
    recommendations: RecommendationRules = RecommendationRules()
    classify_on: str = "final_value"
    output: OutputSpec = OutputSpec()
    reference: str = ""

    @property
    def categories(self) -> list[str]:
        return [band.category for band in self.thresholds]

    @property
    def field_names(self) -> list[str]:
        return [f.name for f in self.fields]

    def field(self, name: str) -> FieldSpec | None:
        for spec in self.fields:
            if spec.name == name:
                return spec
        return None


# ── Per-call inputs and outputs ──────────────────────────────────────────────


def _freeze(value: Any) -> Any:
    """Return a read-only copy: mappings become proxies, lists become tuples."""
    if isinstance(value, Mapping):
        return MappingProxyType({key: _freeze(item) for key, item in value.items()})
    if isinstance(value, (list, tuple)):
        return tuple(_freeze(item) for item in value)
    return value


def _thaw(value: Any) -> Any:
    """Inverse of ``_freeze`` for serialization."""
    if isinstance(value, Mapping):
        return {key: _thaw(item) for key, item in value.items()}
    if isinstance(value, tuple):
        return [_thaw(item) for item in value]
    return value


class ValidatedInput(_Frozen):
    """Type- and range-checked values, produced only by the validator."""

    model_id: str
    values: dict[str, bool | int | float | str]

    @field_validator("values", mode="after")
    @classmethod
    def _read_only(cls, value: dict[str, Any]) -> Mapping[str, Any]:
        return _freeze(value)

    @field_serializer("values")
    def _serialize_values(self, value: Mapping[str, Any]) -> dict[str, Any]:
        return _thaw(value)


class FieldError(_Frozen):
    """A single field-level validation failure.

    Attributes:
        field: Field name
        code: Error code
        value: Raw value that failed (None when missing)
        minimum: Declared minimum (out_of_range only)
        maximum: Declared maximum (out_of_range only)
        options: Allowed options (invalid_option only)
    """

    field: str
    code: ErrorCode
    value: Any = None
    minimum: float | None = None
    maximum: float | None = None
    options: tuple[str, ...] = ()


class ScoreComponent(_Frozen):
    """Individual score contribution for the result breakdown.

    Attributes:
        component_type: 'coefficient', 'constant' or 'points'
        component_code: Term or contributor label (e.g. 'ln_age', 'ef_20_24')
        coefficient: Coefficient or point value from the table
        contribution: Amount this component added to the raw score
        source_data: Input values that selected this component
    """

    component_type: str = Field(..., pattern="^(coefficient|constant|points)$")
    component_code: str
    coefficient: float
    contribution: float
    source_data: list[str] = Field(default_factory=list)


class CalibrationApplied(_Frozen):
    rule_id: str
    operation: str
    factor: float
    raw_value: float
    adjusted_value: float
    clinical_review: bool = False


class ScoreOutput(_Frozen):
    """Result of one calculation.

    Attributes:
        model_id: Model identifier
        raw_score: Algorithm output before calibration and clamping
        final_value: Value after calibration and clamping
        classified_value: The value the threshold table was applied to
        risk_category: Category label from the model's threshold table
        recommendations: Ordered recommendation identifiers
        components: Breakdown of the raw score
        calibration: Calibration rules that fired, in order
        auxiliary: Model-specific secondary outputs
        details: Subgroup, algorithm and unit information
    """

    model_id: str
    raw_score: float
    final_value: float
    classified_value: float
    risk_category: str
    recommendations: tuple[str, ...] = ()
    components: tuple[ScoreComponent, ...] = ()
    calibration: tuple[CalibrationApplied, ...] = ()
    auxiliary: dict[str, Any] = Field(default_factory=dict)
    details: dict[str, Any] = Field(default_factory=dict)

    @field_validator("auxiliary", "details", mode="after")
    @classmethod
    def _read_only(cls, value: dict[str, Any]) -> Mapping[str, Any]:
        return _freeze(value)

    @field_serializer("auxiliary", "details")
    def _serialize_mapping(self, value: Mapping[str, Any]) -> dict[str, Any]:
        return _thaw(value)

    @property
    def calibrated(self) -> bool:
        return bool(self.calibration)
