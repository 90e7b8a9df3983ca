"""Unit tests for posture/fields.py -- input coercion at the mutation boundary.

Covers:
- probability accepts numbers and numeric strings in [0, 1]
- impact accepts "7", "7.0", 7.0 and rejects "7.5" (no truncation)
- blank input returns None without an error
- raise_if() reports one message per field
"""

import pytest

from core.errors import ValidationError
from posture.fields import (
    check_choice,
    check_text,
    coerce_impact,
    coerce_number,
    coerce_probability,
    raise_if,
    reject_cleared,
    require,
)


class TestCoerceProbability:
    @pytest.mark.parametrize("raw,expected", [(0.8, 0.8), ("0.8", 0.8), (" 0.25 ", 0.25), (0, 0.0), (1, 1.0)])
    def test_valid(self, raw, expected) -> None:
        errors: list = []
        assert coerce_probability(raw, errors) == expected
        assert errors == []

    @pytest.mark.parametrize("raw", ["abc", 1.5, -0.1, "nan", True])
    def test_invalid(self, raw) -> None:
        errors: list = []
        assert coerce_probability(raw, errors) is None
        assert errors and errors[0]["field"] == "probability"

    @pytest.mark.parametrize("raw", [None, "", "   "])
    def test_blank_is_none_without_error(self, raw) -> None:
        errors: list = []
        assert coerce_probability(raw, errors) is None
        assert errors == []

    def test_custom_field_name(self) -> None:
        errors: list = []
        coerce_probability("2", errors, field="residual_probability")
        assert errors[0]["field"] == "residual_probability"


class TestCoerceImpact:
    @pytest.mark.parametrize("raw,expected", [(7, 7), ("7", 7), ("7.0", 7), (7.0, 7), (1, 1), (10, 10)])
    def test_whole_values_accepted(self, raw, expected) -> None:
        errors: list = []
        value = coerce_impact(raw, errors)
        assert value == expected and isinstance(value, int), f"{raw!r} -> {value!r}"
        assert errors == []

    @pytest.mark.parametrize("raw", ["7.5", 7.5, "seven", 0, 11])
    def test_rejected(self, raw) -> None:
        errors: list = []
        assert coerce_impact(raw, errors) is None
        assert [e["field"] for e in errors] == ["impact"]


class TestOtherHelpers:
    def test_coerce_number_range(self) -> None:
        errors: list = []
        assert coerce_number("9.8", errors, "cvss_score", 0.0, 10.0) == 9.8
        assert coerce_number(10.1, errors, "cvss_score", 0.0, 10.0) is None
        assert errors == [{"field": "cvss_score", "message": "cvss_score must be a number between 0 and 10"}]

    def test_check_choice(self) -> None:
        errors: list = []
        assert check_choice("high", ("high", "low"), errors, "severity") == "high"
        assert check_choice(None, ("high", "low"), errors, "severity") is None
        assert errors == []
        assert check_choice("extreme", ("high", "low"), errors, "severity") is None
        assert errors == [{"field": "severity", "message": "Invalid severity"}]

    def test_check_text(self) -> None:
        errors: list = []
        assert check_text("  Laptop theft  ", errors, "name") == "Laptop theft"
        check_text("x" * 201, errors, "name")
        check_text("", errors, "name", required=True)
        assert [e["message"] for e in errors] == [
            "Name must not exceed 200 characters",
            "Name is required",
        ]

    def test_require_and_reject_cleared(self) -> None:
        errors: list = []
        require({"name": "x", "category": ""}, ("name", "category", "impact"), errors)
        assert [e["field"] for e in errors] == ["category", "impact"]

        errors = []
        patch = {"probability": None, "status": "closed", "name": " "}
        reject_cleared(patch, ("probability", "status", "name"), errors)
        assert errors == [
            {"field": "probability", "message": "Probability cannot be cleared"},
            {"field": "name", "message": "Name cannot be cleared"},
        ]


class TestRaiseIf:
    def test_no_errors_is_silent(self) -> None:
        raise_if([])

    def test_one_message_per_field(self) -> None:
        errors = [
            {"field": "impact", "message": "Impact is required"},
            {"field": "impact", "message": "Impact must be between 1 and 10"},
            {"field": "name", "message": "Name is required"},
        ]
        with pytest.raises(ValidationError) as exc_info:
            raise_if(errors, "Bad input")
        assert exc_info.value.message == "Bad input"
        assert exc_info.value.errors == [
            {"field": "impact", "message": "Impact is required"},
            {"field": "name", "message": "Name is required"},
        ]
