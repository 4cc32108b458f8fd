"""Field validation for clinical inputs.

Numeric fields follow the browser's ``parseInt``/``parseFloat`` rules: a
leading number is read and any trailing text is ignored ("55 years" -> 55).
Every declared field is checked and all failures are reported together.
"""

import logging
import math
import re
from typing import Any, Mapping

from clinical_calculators.clinical_risk_calculator.exceptions import (
    ErrorCode,
    InputValidationError,
)
from clinical_calculators.clinical_risk_calculator.models import (
    FieldError,
    FieldSpec,
    ModelDefinition,
    ValidatedInput,
)

logger = logging.getLogger(__name__)

_INT_PREFIX = re.compile(r"^\s*([+-]?\d+)")
_FLOAT_PREFIX = re.compile(r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)")


def parse_number(raw: Any, integer: bool = False) -> int | float | None:
    """Parse a raw field value the way parseInt/parseFloat would.

    Returns:
        The parsed number, or None when no finite leading number exists
    """
    if isinstance(raw, bool) or raw is None:
        return None

    if isinstance(raw, (int, float)):
        if isinstance(raw, float) and not math.isfinite(raw):
            return None
        return math.trunc(raw) if integer else float(raw)

    text = str(raw)
    match = (_INT_PREFIX if integer else _FLOAT_PREFIX).match(text)
    if not match:
        return None
    if integer:
        return int(match.group(1))
    number = float(match.group(1))
    return number if math.isfinite(number) else None


def _is_missing(raw: Any) -> bool:
    return raw is None or (isinstance(raw, str) and not raw.strip())


def _check_field(spec: FieldSpec, raw: Any) -> tuple[Any, FieldError | None]:
    """Check one present value; returns the typed value or an error."""
    if spec.kind in ("integer", "number"):
        number = parse_number(raw, integer=spec.kind == "integer")
        if number is None:
            return None, FieldError(field=spec.name, code=ErrorCode.not_a_number, value=raw)
        too_low = spec.minimum is not None and number < spec.minimum
        too_high = spec.maximum is not None and number > spec.maximum
        if too_low or too_high:
            return None, FieldError(
                field=spec.name,
                code=ErrorCode.out_of_range,
                value=raw,
                minimum=spec.minimum,
                maximum=spec.maximum,
            )
        return number, None

    if spec.kind == "boolean":
        if not isinstance(raw, bool):
            return None, FieldError(field=spec.name, code=ErrorCode.invalid_option, value=raw)
        return raw, None

    # choice
    text = raw.strip() if isinstance(raw, str) else str(raw)
    if isinstance(raw, bool) or text not in spec.options:
        return None, FieldError(
            field=spec.name, code=ErrorCode.invalid_option, value=raw, options=spec.options
        )
    return text, None


def check_input(
    definition: ModelDefinition, clinical_input: Mapping[str, Any]
) -> tuple[dict[str, Any], list[FieldError]]:
    """Check every declared field of ``definition`` against ``clinical_input``.

    Args:
        definition: Model whose fields are checked
        clinical_input: Raw values keyed by field name (never modified)

    Returns:
        Tuple of (typed values for the fields that passed, field errors)
    """
    values: dict[str, Any] = {}
    errors: list[FieldError] = []

    for spec in definition.fields:
        raw = clinical_input.get(spec.name)
        if _is_missing(raw):
            if spec.required:
                errors.append(FieldError(field=spec.name, code=ErrorCode.missing_field))
            elif spec.default is not None:
                values[spec.name] = spec.default
            continue

        value, error = _check_field(spec, raw)
        if error is not None:
            errors.append(error)
        else:
            values[spec.name] = value

    if errors:
        logger.debug(
            "Validation for %s failed: %s",
            definition.model_id,
            ", ".join(f"{e.field}:{e.code.value}" for e in errors),
        )
    return values, errors


def validate_input(
    definition: ModelDefinition, clinical_input: Mapping[str, Any]
) -> list[FieldError]:
    """Return every field error for ``clinical_input`` (empty when valid)."""
    _, errors = check_input(definition, clinical_input)
    return errors


def build_validated_input(
    definition: ModelDefinition, clinical_input: Mapping[str, Any]
) -> ValidatedInput:
    """Produce a ValidatedInput, or raise InputValidationError with every field error."""
    values, errors = check_input(definition, clinical_input)
    if errors:
        raise InputValidationError(definition.model_id, errors)
    return ValidatedInput(model_id=definition.model_id, values=values)
