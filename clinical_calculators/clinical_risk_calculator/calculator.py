"""Clinical Risk Calculator.

This module implements the calculator facade that:
1. Validates the raw input against the model's declared fields
2. Resolves the model definition and demographic subgroup
3. Runs the algorithm the model is tagged with
4. Applies calibration rules, then clamps to the declared bounds
5. Evaluates auxiliary outputs, classifies and builds recommendations

Model definitions are loaded from the packaged tables in ``model_tables/``.
"""

import logging
from typing import Any, Iterable, Mapping

from clinical_calculators.clinical_risk_calculator.algorithms import (
    compute_raw_score,
    resolve_subgroup,
)
from clinical_calculators.clinical_risk_calculator.auxiliary import (
    evaluate_category_outputs,
    evaluate_value_outputs,
)
from clinical_calculators.clinical_risk_calculator.calibration import adjust
from clinical_calculators.clinical_risk_calculator.classifier import classify
from clinical_calculators.clinical_risk_calculator.models import (
    FieldError,
    ModelDefinition,
    ScoreOutput,
)
from clinical_calculators.clinical_risk_calculator.recommendations import recommend
from clinical_calculators.clinical_risk_calculator.registry import ModelRegistry
from clinical_calculators.clinical_risk_calculator.validation import (
    build_validated_input,
    validate_input,
)
from clinical_calculators.settings import CalculatorSettings

logger = logging.getLogger(__name__)


def clamp(definition: ModelDefinition, value: float) -> float:
    """Clamp a value to the model's declared output bounds, if any."""
    bounds = definition.output.bounds
    if bounds is None:
        return value
    low, high = bounds
    return min(max(value, low), high)


class ClinicalRiskCalculator:
    """Generic calculator for every registered clinical model.

    Example:
        >>> calculator = ClinicalRiskCalculator()
        >>> result = calculator.score(
        ...     "precise_dapt",
        ...     {"age": "80", "creatinine": "2.1", "hemoglobin": "9.5",
        ...      "white_blood_count": "13", "previous_bleed": True},
        ... )
        >>> result.final_value, result.risk_category
        (7.5, 'low')
    """

    def __init__(
        self,
        registry: ModelRegistry | None = None,
        settings: CalculatorSettings | None = None,
    ):
        """Initialize calculator.

        Args:
            registry: Model registry (loaded from the configured tables when omitted)
            settings: Runtime settings (read from the environment when omitted)
        """
        self.settings = settings or CalculatorSettings.from_env()
        self.registry = registry or ModelRegistry.from_tables(self.settings.tables_dir)

    def validate(self, model_id: str, clinical_input: Mapping[str, Any]) -> list[FieldError]:
        """Return every field error for the input (empty list when valid).

        Raises:
            UnknownModelError: If ``model_id`` is not registered
        """
        return validate_input(self.registry.get(model_id), clinical_input)

    def score(self, model_id: str, clinical_input: Mapping[str, Any]) -> ScoreOutput:
        """Calculate the risk result for one input.

        Args:
            model_id: Registered model identifier (e.g. "ascvd")
            clinical_input: Raw field values keyed by field name

        Returns:
            ScoreOutput with raw and final values, category, recommendations
            and auxiliary outputs

        Raises:
            UnknownModelError: If ``model_id`` is not registered
            InputValidationError: If any field fails validation
        """
        definition = self.registry.get(model_id)
        validated = build_validated_input(definition, clinical_input)
        values = validated.values

        subgroup = resolve_subgroup(definition, values)
        raw = compute_raw_score(definition, values, subgroup)
        logger.debug("%s: subgroup=%s raw=%.6f", model_id, subgroup, raw.value)

        calibration = adjust(
            definition.calibration,
            values,
            raw.value,
            enabled=self.settings.apply_calibration,
        )
        final_value = clamp(definition, calibration.value)
        if final_value != calibration.value:
            logger.debug("%s: clamped %.6f to %.6f", model_id, calibration.value, final_value)

        value_outputs = evaluate_value_outputs(definition, values, raw.value, final_value)
        if definition.classify_on == "final_value":
            classified_value = final_value
        else:
            classified_value = value_outputs[definition.classify_on]
        category = classify(definition.thresholds, classified_value)

        category_outputs = evaluate_category_outputs(definition, category)
        auxiliary = {
            spec.name: {**value_outputs, **category_outputs}[spec.name]
            for spec in definition.auxiliary
            if spec.name in value_outputs or spec.name in category_outputs
        }
        recommendations = recommend(definition.recommendations, category, values, final_value)
        logger.debug("%s: final=%.6f category=%s", model_id, final_value, category)

        return ScoreOutput(
            model_id=model_id,
            raw_score=raw.value,
            final_value=final_value,
            classified_value=classified_value,
            risk_category=category,
            recommendations=recommendations,
            components=raw.components,
            calibration=calibration.applied,
            auxiliary=auxiliary,
            details={
                "title": definition.title,
                "algorithm": definition.algorithm.value,
                "subgroup": subgroup,
                "unit": definition.output.unit,
                "classify_on": definition.classify_on,
            },
        )

    def score_batch(
        self, requests: Iterable[tuple[str, Mapping[str, Any]]]
    ) -> list[ScoreOutput]:
        """Calculate results for several (model_id, input) pairs.

        Returns:
            List of score outputs in same order as inputs
        """
        return [self.score(model_id, clinical_input) for model_id, clinical_input in requests]


_default_calculator: ClinicalRiskCalculator | None = None


def get_calculator() -> ClinicalRiskCalculator:
    """Return the process-wide calculator, creating it on first use."""
    global _default_calculator
    if _default_calculator is None:
        _default_calculator = ClinicalRiskCalculator()
    return _default_calculator


def validate(model_id: str, clinical_input: Mapping[str, Any]) -> list[FieldError]:
    """Validate ``clinical_input`` for ``model_id`` with the default calculator."""
    return get_calculator().validate(model_id, clinical_input)


def calculate(model_id: str, clinical_input: Mapping[str, Any]) -> ScoreOutput:
    """Calculate a result for ``model_id`` with the default calculator."""
    return get_calculator().score(model_id, clinical_input)
