"""Model-specific secondary outputs.

Value outputs (interpolation, point_sum, scaled_contributions) depend only on
the inputs and the score, so they are available before classification; a
model may classify on one of them. Category lookups need the risk category
and are evaluated afterwards.
"""

from typing import Any, Mapping

from clinical_calculators.clinical_risk_calculator.algorithms import row_matches, sum_points
from clinical_calculators.clinical_risk_calculator.interpolation import interpolate
from clinical_calculators.clinical_risk_calculator.models import (
    AuxiliaryOutputSpec,
    ModelDefinition,
)

# Names point rows may reference besides declared input fields
DERIVED_FIELDS = ("final_value", "raw_score")

VALUE_KINDS = ("interpolation", "point_sum", "scaled_contributions")


def _applicable(spec: AuxiliaryOutputSpec, values: Mapping[str, Any]) -> bool:
    if spec.only_if_field is None:
        return True
    value = values.get(spec.only_if_field)
    if value is None:
        return False
    if spec.only_if_min is not None and value < spec.only_if_min:
        return False
    if spec.only_if_max is not None and value > spec.only_if_max:
        return False
    return True


def _evaluate_value(
    definition: ModelDefinition,
    spec: AuxiliaryOutputSpec,
    values: Mapping[str, Any],
    final_value: float,
) -> Any:
    if spec.kind == "interpolation":
        return interpolate(definition.interpolation_tables[spec.table], final_value)

    rows = definition.point_tables[spec.table].rows
    if spec.kind == "point_sum":
        total, _ = sum_points(rows, values)
        total += spec.base
        return min(total, spec.cap) if spec.cap is not None else total

    # scaled_contributions
    benefits = {row.contributor: 0.0 for row in rows}
    for row in rows:
        if row_matches(row, values):
            benefits[row.contributor] += row.points * final_value
    return benefits


def evaluate_value_outputs(
    definition: ModelDefinition,
    values: Mapping[str, Any],
    raw_score: float,
    final_value: float,
) -> dict[str, Any]:
    """Evaluate every non-category auxiliary output that applies to this input."""
    scope = {**values, "raw_score": raw_score, "final_value": final_value}
    outputs: dict[str, Any] = {}
    for spec in definition.auxiliary:
        if spec.kind not in VALUE_KINDS or not _applicable(spec, values):
            continue
        outputs[spec.name] = _evaluate_value(definition, spec, scope, final_value)
    return outputs


def evaluate_category_outputs(definition: ModelDefinition, category: str) -> dict[str, Any]:
    """Evaluate every category lookup for the classified category."""
    return {
        spec.name: spec.values[category]
        for spec in definition.auxiliary
        if spec.kind == "category_lookup" and category in spec.values
    }
