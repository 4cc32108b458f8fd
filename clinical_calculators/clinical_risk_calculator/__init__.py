"""Clinical Risk Calculator.

Implements the numeric core of several published clinical risk models
(ASCVD Pooled Cohort Equations, EuroSCORE II, MAGGIC, PRECISE-DAPT, PPH,
TIMI UA/NSTEMI). Loads model tables from model_tables/.
"""

from clinical_calculators.clinical_risk_calculator.calculator import (
    ClinicalRiskCalculator,
    calculate,
    validate,
)
from clinical_calculators.clinical_risk_calculator.exceptions import (
    ClinicalCalculatorError,
    ErrorCode,
    InputValidationError,
    MalformedModelDefinitionError,
    UnknownModelError,
)
from clinical_calculators.clinical_risk_calculator.models import (
    FieldError,
    ModelDefinition,
    ScoreComponent,
    ScoreOutput,
    ValidatedInput,
)
from clinical_calculators.clinical_risk_calculator.registry import ModelRegistry

__all__ = [
    "ClinicalCalculatorError",
    "ClinicalRiskCalculator",
    "ErrorCode",
    "FieldError",
    "InputValidationError",
    "MalformedModelDefinitionError",
    "ModelDefinition",
    "ModelRegistry",
    "ScoreComponent",
    "ScoreOutput",
    "UnknownModelError",
    "ValidatedInput",
    "calculate",
    "validate",
]
