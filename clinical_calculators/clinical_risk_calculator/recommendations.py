"""Ordered recommendation identifiers for a scored result."""

from typing import Any, Mapping

from clinical_calculators.clinical_risk_calculator.algorithms import conditions_match
from clinical_calculators.clinical_risk_calculator.models import RecommendationRules


def recommend(
    rules: RecommendationRules,
    category: str,
    values: Mapping[str, Any],
    final_value: float,
) -> list[str]:
    """Build the ordered recommendation identifiers for a result.

    Order is base set, then the category set, then each factor rule whose
    conditions hold (and whose ``min_value``, if any, is reached). Repeated
    identifiers keep their first position.
    """
    ordered: list[str] = list(rules.base)
    ordered.extend(rules.by_category.get(category, ()))

    for factor in rules.by_factor:
        if factor.min_value is not None and final_value < factor.min_value:
            continue
        if conditions_match(factor.when, values):
            ordered.extend(factor.add)

    return list(dict.fromkeys(ordered))
