"""Post-hoc calibration of computed values.

Calibration rules are data on the model definition. A rule fires when its
subgroup conditions hold for the raw input and the uncalibrated value lies in
its window; firing rules are applied in declaration order.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping

from clinical_calculators.clinical_risk_calculator.algorithms import conditions_match
from clinical_calculators.clinical_risk_calculator.models import (
    CalibrationApplied,
    CalibrationRule,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CalibrationOutcome:
    value: float
    applied: list[CalibrationApplied] = field(default_factory=list)


def in_window(rule: CalibrationRule, value: float) -> bool:
    """Check ``value`` against the rule's above/below bounds."""
    if rule.above is not None:
        if rule.above_inclusive:
            if value < rule.above:
                return False
        elif value <= rule.above:
            return False
    if rule.below is not None:
        if rule.below_inclusive:
            if value > rule.below:
                return False
        elif value >= rule.below:
            return False
    return True


def rule_applies(rule: CalibrationRule, values: Mapping[str, Any], raw_value: float) -> bool:
    return rule.enabled and conditions_match(rule.when, values) and in_window(rule, raw_value)


def adjust(
    rules: Iterable[CalibrationRule],
    values: Mapping[str, Any],
    raw_value: float,
    enabled: bool = True,
) -> CalibrationOutcome:
    """Apply every matching calibration rule to ``raw_value``.

    Args:
        rules: Rules in declaration order
        values: Validated input values the subgroup conditions are tested on
        raw_value: Uncalibrated value; every rule window is tested against it
        enabled: Global switch; when False the value is returned unchanged

    Returns:
        CalibrationOutcome with the adjusted value and every rule that fired
    """
    if not enabled:
        return CalibrationOutcome(value=raw_value)

    value = raw_value
    applied: list[CalibrationApplied] = []
    for rule in rules:
        if not rule_applies(rule, values, raw_value):
            continue

        before = value
        value = value / rule.factor if rule.operation == "divide" else value * rule.factor
        applied.append(
            CalibrationApplied(
                rule_id=rule.rule_id,
                operation=rule.operation,
                factor=rule.factor,
                raw_value=before,
                adjusted_value=value,
                clinical_review=rule.clinical_review,
            )
        )
        if rule.clinical_review:
            logger.warning(
                "Calibration rule %s (flagged for clinical review) changed %.4f to %.4f",
                rule.rule_id,
                before,
                value,
            )

    return CalibrationOutcome(value=value, applied=applied)
