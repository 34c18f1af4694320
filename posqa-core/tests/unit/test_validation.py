"""Tests for declarative input validation."""

import pytest

from posqa_core.errors import ValidationFailed
from posqa_core.validation import FieldRule, IssueType, validate

PURCHASE_RULES = [
    FieldRule("ingredient_id", required=True),
    FieldRule("qty_buy", required=True, kind=float, minimum=0.01),
    FieldRule("total_price", required=True, kind=float, minimum=0),
    FieldRule("discount", kind=float, minimum=0, maximum=100),
]


class TestValidate:
    """Tests for validate()."""

    def test_valid_input(self) -> None:
        """A complete purchase passes."""
        result = validate(
            {"ingredient_id": "ING-1", "qty_buy": "2.5", "total_price": 100},
            PURCHASE_RULES,
        )
        assert result.valid
        assert result.highlighted_fields == ()

    def test_required_fields(self) -> None:
        """Missing and blank fields are reported as required."""
        result = validate({"ingredient_id": "  "}, PURCHASE_RULES)
        assert not result.valid
        assert [e.type for e in result.errors] == [IssueType.REQUIRED] * 3
        assert result.highlighted_fields == ("ingredient_id", "qty_buy", "total_price")

    def test_type_error(self) -> None:
        """Non-numeric strings are type errors."""
        result = validate(
            {"ingredient_id": "ING-1", "qty_buy": "lots", "total_price": 10}, PURCHASE_RULES
        )
        (issue,) = result.errors
        assert issue.field == "qty_buy"
        assert issue.type == IssueType.TYPE

    def test_booleans_are_not_numbers(self) -> None:
        """True is not accepted as a quantity."""
        result = validate(
            {"ingredient_id": "ING-1", "qty_buy": True, "total_price": 10}, PURCHASE_RULES
        )
        assert result.for_field("qty_buy")[0].type == IssueType.TYPE

    @pytest.mark.parametrize(("discount", "valid"), [(0, True), (100, True), (101, False), (-1, False)])
    def test_range(self, discount: float, valid: bool) -> None:
        """Bounds are inclusive."""
        result = validate(
            {"ingredient_id": "ING-1", "qty_buy": 1, "total_price": 10, "discount": discount},
            PURCHASE_RULES,
        )
        assert result.valid is valid
        if not valid:
            assert result.errors[0].type == IssueType.RANGE

    def test_highlighted_fields_are_deduplicated(self) -> None:
        """A field with several rules is highlighted once."""
        rules = [FieldRule("qty", required=True), FieldRule("qty", required=True, kind=int)]
        result = validate({}, rules)
        assert len(result.errors) == 2
        assert result.highlighted_fields == ("qty",)

    def test_to_dict(self) -> None:
        """Issues serialize as field/message/type."""
        data = validate({}, [FieldRule("menu_id", required=True)]).to_dict()
        assert data == {
            "valid": False,
            "errors": [{"field": "menu_id", "message": "menu id is required", "type": "required"}],
            "highlighted_fields": ["menu_id"],
        }

    def test_raise_for_errors(self) -> None:
        """raise_for_errors raises ValidationFailed carrying the result."""
        result = validate({}, [FieldRule("menu_id", required=True)])
        with pytest.raises(ValidationFailed) as exc_info:
            result.raise_for_errors()
        assert exc_info.value.result is result
