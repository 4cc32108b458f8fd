"""Exception hierarchy for the clinical risk calculator.

Field-level problems are collected into ``FieldError`` records and raised
together as one ``InputValidationError``. Everything else (unknown model ids,
broken table data) aborts the calculation immediately.
"""

from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Field-level validation error codes."""

    missing_field = "missing_field"
    not_a_number = "not_a_number"
    out_of_range = "out_of_range"
    invalid_option = "invalid_option"


class ClinicalCalculatorError(Exception):
    """Base exception for all calculator errors."""

    def __init__(
        self,
        message: str,
        code: str = "CALCULATOR_ERROR",
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert exception to a plain dictionary for callers."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class UnknownModelError(ClinicalCalculatorError, LookupError):
    """Raised when a model identifier is not in the registry."""

    def __init__(self, model_id: str, known: list[str] | None = None):
        super().__init__(
            message=f"Unknown model identifier: {model_id!r}",
            code="UNKNOWN_MODEL",
            details={"model_id": model_id, "known_models": sorted(known or [])},
        )
        self.model_id = model_id


class InputValidationError(ClinicalCalculatorError, ValueError):
    """Raised by ``calculate`` when the input has one or more field errors."""

    def __init__(self, model_id: str, errors: list[Any]):
        fields = ", ".join(e.field for e in errors)
        super().__init__(
            message=f"Invalid input for model {model_id!r}: {fields}",
            code="VALIDATION_ERROR",
            details={
                "model_id": model_id,
                "errors": [e.model_dump(mode="json") for e in errors],
            },
        )
        self.model_id = model_id
        self.errors = errors


class MalformedModelDefinitionError(ClinicalCalculatorError, ValueError):
    """Raised when static model tables violate a structural invariant."""

    def __init__(self, model_id: str, problem: str):
        super().__init__(
            message=f"Malformed definition for model {model_id!r}: {problem}",
            code="MALFORMED_MODEL_DEFINITION",
            details={"model_id": model_id, "problem": problem},
        )
        self.model_id = model_id
        self.problem = problem
