"""Clinical calculators - risk model implementations.

Available calculators:
    - ClinicalRiskCalculator: generic engine for every registered clinical model
"""

from clinical_calculators.clinical_risk_calculator import (
    ClinicalRiskCalculator,
    ScoreOutput,
    calculate,
    validate,
)

__all__ = ["ClinicalRiskCalculator", "ScoreOutput", "calculate", "validate"]
