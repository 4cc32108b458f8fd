"""Tests for field validation."""

import math

import pytest
from pydantic import ValidationError

from clinical_calculators.clinical_risk_calculator import ErrorCode, InputValidationError
from clinical_calculators.clinical_risk_calculator.validation import (
    build_validated_input,
    parse_number,
    validate_input,
)


def ascvd_input(**overrides):
    values = {
        "age": "55",
        "sex": "male",
        "race": "white",
        "total_cholesterol": "213",
        "hdl_cholesterol": "50",
        "systolic_bp": "120",
        "on_htn_meds": False,
        "diabetes": False,
        "smoker": False,
    }
    values.update(overrides)
    return values


class TestParseNumber:
    """Tests for parseInt/parseFloat prefix semantics."""

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("55", 55),
            ("55 years", 55),
            ("55.9", 55),
            ("  7", 7),
            ("-3", -3),
            ("1e3", 1),
            (42, 42),
            (42.8, 42),
        ],
    )
    def test_integer_prefix(self, raw, expected):
        """Test integer parsing keeps the leading integer only."""
        assert parse_number(raw, integer=True) == expected

    @pytest.mark.parametrize(
        "raw,expected",
        [
            ("5.5", 5.5),
            ("5.5mg", 5.5),
            (".5", 0.5),
            ("1e3", 1000.0),
            ("2.", 2.0),
            (3, 3.0),
        ],
    )
    def test_float_prefix(self, raw, expected):
        """Test float parsing keeps the leading number only."""
        assert parse_number(raw) == pytest.approx(expected)

    @pytest.mark.parametrize("raw", ["abc", "", "years 55", "Infinity", "NaN", True, None])
    def test_not_a_number(self, raw):
        """Test values without a finite leading number."""
        assert parse_number(raw) is None
        assert parse_number(raw, integer=True) is None

    def test_non_finite_floats(self):
        """Test NaN and infinity are rejected."""
        assert parse_number(math.nan) is None
        assert parse_number(math.inf) is None
        assert parse_number("1e999") is None


class TestValidateInput:
    """Tests for validate_input against the ASCVD definition."""

    @pytest.fixture
    def ascvd(self, registry):
        return registry.get("ascvd")

    def test_valid_input(self, ascvd):
        """Test a complete, in-range input has no errors."""
        assert validate_input(ascvd, ascvd_input()) == []

    def test_missing_age_only(self, ascvd):
        """Test that an absent field yields exactly one missing_field error."""
        data = ascvd_input()
        del data["age"]
        errors = validate_input(ascvd, data)
        assert [(e.field, e.code) for e in errors] == [("age", ErrorCode.missing_field)]

    @pytest.mark.parametrize("blank", [None, "", "   "])
    def test_blank_is_missing(self, ascvd, blank):
        """Test None and blank strings count as missing."""
        errors = validate_input(ascvd, ascvd_input(age=blank))
        assert [e.code for e in errors] == [ErrorCode.missing_field]

    def test_not_a_number(self, ascvd):
        """Test non-numeric text yields not_a_number."""
        errors = validate_input(ascvd, ascvd_input(total_cholesterol="abc"))
        assert errors[0].field == "total_cholesterol"
        assert errors[0].code == ErrorCode.not_a_number

    def test_trailing_text_is_accepted(self, ascvd):
        """Test '55 years' parses like parseInt would."""
        assert validate_input(ascvd, ascvd_input(age="55 years")) == []

    @pytest.mark.parametrize("age", ["20", "79"])
    def test_range_is_inclusive(self, ascvd, age):
        """Test range bounds are inclusive."""
        assert validate_input(ascvd, ascvd_input(age=age)) == []

    @pytest.mark.parametrize("age", ["19", "80"])
    def test_out_of_range(self, ascvd, age):
        """Test values outside the declared range."""
        errors = validate_input(ascvd, ascvd_input(age=age))
        assert len(errors) == 1
        assert errors[0].code == ErrorCode.out_of_range
        assert errors[0].minimum == 20
        assert errors[0].maximum == 79

    def test_invalid_option(self, ascvd):
        """Test an undeclared choice value."""
        errors = validate_input(ascvd, ascvd_input(race="martian"))
        assert errors[0].code == ErrorCode.invalid_option
        assert errors[0].options == ("white", "african_american", "other")

    def test_flag_must_be_boolean(self, ascvd):
        """Test a string in a flag field is an invalid option."""
        errors = validate_input(ascvd, ascvd_input(smoker="yes"))
        assert [(e.field, e.code) for e in errors] == [("smoker", ErrorCode.invalid_option)]

    def test_all_errors_are_aggregated(self, ascvd):
        """Test every failing field is reported in declaration order."""
        data = ascvd_input(age="abc", sex="unknown", systolic_bp="300")
        del data["hdl_cholesterol"]
        errors = validate_input(ascvd, data)
        assert [(e.field, e.code) for e in errors] == [
            ("age", ErrorCode.not_a_number),
            ("sex", ErrorCode.invalid_option),
            ("hdl_cholesterol", ErrorCode.missing_field),
            ("systolic_bp", ErrorCode.out_of_range),
        ]

    def test_absent_flags_use_defaults(self, ascvd):
        """Test unchecked flags default to False."""
        data = ascvd_input()
        for flag in ("on_htn_meds", "diabetes", "smoker"):
            del data[flag]
        validated = build_validated_input(ascvd, data)
        assert validated.values["smoker"] is False
        assert validated.values["on_htn_meds"] is False

    def test_extra_keys_ignored(self, ascvd):
        """Test unknown keys neither fail nor reach the validated values."""
        validated = build_validated_input(ascvd, ascvd_input(favourite_colour="blue"))
        assert "favourite_colour" not in validated.values

    def test_input_not_mutated(self, ascvd):
        """Test the caller's mapping is left untouched."""
        data = ascvd_input()
        del data["smoker"]
        snapshot = dict(data)
        build_validated_input(ascvd, data)
        assert data == snapshot


class TestBuildValidatedInput:
    """Tests for ValidatedInput construction."""

    def test_typed_values(self, registry):
        """Test numeric strings become int or float by field kind."""
        validated = build_validated_input(
            registry.get("maggic"),
            {
                "age": "70",
                "sex": "female",
                "lv_ejection_fraction": "35",
                "nyha_class": "2",
                "systolic_bp": "125",
                "bmi": "27.5",
                "creatinine": "98",
            },
        )
        assert validated.values["age"] == 70
        assert isinstance(validated.values["age"], int)
        assert validated.values["bmi"] == pytest.approx(27.5)
        assert validated.values["beta_blocker"] is True
        assert validated.values["nyha_class"] == "2"

    def test_validated_input_is_frozen(self, registry):
        """Test ValidatedInput cannot be reassigned."""
        validated = build_validated_input(registry.get("ascvd"), ascvd_input())
        with pytest.raises(ValidationError):
            validated.model_id = "other"

    def test_values_are_read_only(self, registry):
        """Test the validated values cannot be changed after checking."""
        validated = build_validated_input(registry.get("ascvd"), ascvd_input())
        with pytest.raises(TypeError):
            validated.values["age"] = 200
        assert validated.values["age"] == 55
        assert validated.model_dump()["values"]["age"] == 55

    def test_repeatable(self, registry):
        """Test the same input always gives the same values and errors."""
        ascvd = registry.get("ascvd")
        data = ascvd_input(age="55 years", hdl_cholesterol="abc")
        snapshot = dict(data)
        assert validate_input(ascvd, data) == validate_input(ascvd, data)
        valid = ascvd_input()
        assert build_validated_input(ascvd, valid) == build_validated_input(ascvd, valid)
        assert data == snapshot

    def test_raises_with_all_errors(self, registry):
        """Test InputValidationError carries every field error."""
        with pytest.raises(InputValidationError) as exc_info:
            build_validated_input(registry.get("ascvd"), {"age": "abc"})
        exc = exc_info.value
        assert exc.model_id == "ascvd"
        assert {e.field for e in exc.errors} == {
            "age",
            "sex",
            "race",
            "total_cholesterol",
            "hdl_cholesterol",
            "systolic_bp",
        }
        assert exc.to_dict()["error"] == "VALIDATION_ERROR"
        assert isinstance(exc, ValueError)
