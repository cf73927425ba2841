"""Unit tests for order and tax validation."""

import pytest

from ordersync.config import LimitsConfig
from ordersync.validation import (
    OrderValidationError,
    round_money,
    validate_order,
    validate_tax,
)


@pytest.fixture
def limits() -> LimitsConfig:
    return LimitsConfig()


class TestValidateOrder:
    """Test add_order payload validation."""

    def test_minimal_order(self, limits: LimitsConfig) -> None:
        """Test an order with only an item name gets quantity 1."""
        order = validate_order({"item": "Pizza"}, limits)
        assert order.item == "Pizza"
        assert order.quantity == 1
        assert order.price is None
        assert order.notes is None
        assert order.name is None

    def test_full_order_is_trimmed(self, limits: LimitsConfig) -> None:
        """Test text fields are trimmed and blank optionals become None."""
        order = validate_order(
            {"item": "  Pizza ", "name": " Sam ", "notes": "   ", "quantity": 2, "price": 12.5},
            limits,
        )
        assert order.item == "Pizza"
        assert order.name == "Sam"
        assert order.notes is None
        assert order.quantity == 2
        assert order.price == 12.5

    @pytest.mark.parametrize("item", [None, "", "   "])
    def test_missing_item_rejected(self, limits: LimitsConfig, item: str | None) -> None:
        with pytest.raises(OrderValidationError) as exc_info:
            validate_order({"item": item}, limits)
        assert exc_info.value.code == "INVALID_ITEM"
        assert "25 characters or less" in exc_info.value.message

    def test_item_length_boundary(self, limits: LimitsConfig) -> None:
        """Test 25 characters pass and 26 fail, measured after trimming."""
        assert validate_order({"item": " " + "x" * 25 + " "}, limits).item == "x" * 25

        with pytest.raises(OrderValidationError) as exc_info:
            validate_order({"item": "x" * 26}, limits)
        assert exc_info.value.code == "INVALID_ITEM"

    def test_notes_length_boundary(self, limits: LimitsConfig) -> None:
        assert validate_order({"item": "Tea", "notes": "n" * 30}, limits).notes == "n" * 30

        with pytest.raises(OrderValidationError) as exc_info:
            validate_order({"item": "Tea", "notes": "n" * 31}, limits)
        assert exc_info.value.code == "INVALID_NOTES"
        assert exc_info.value.message == "Notes must be 30 characters or less"

    def test_name_too_long(self, limits: LimitsConfig) -> None:
        with pytest.raises(OrderValidationError) as exc_info:
            validate_order({"item": "Tea", "name": "n" * 41}, limits)
        assert exc_info.value.code == "INVALID_NAME"

    @pytest.mark.parametrize("price", [0, "0", 50000, "49999.99"])
    def test_price_in_range(self, limits: LimitsConfig, price: object) -> None:
        order = validate_order({"item": "Tea", "price": price}, limits)
        assert order.price is not None
        assert 0 <= order.price <= 50000

    @pytest.mark.parametrize("price", [-0.01, 50000.01, "abc", "nan", float("inf"), True, [1]])
    def test_price_rejected(self, limits: LimitsConfig, price: object) -> None:
        with pytest.raises(OrderValidationError) as exc_info:
            validate_order({"item": "Tea", "price": price}, limits)
        assert exc_info.value.code == "INVALID_PRICE"
        assert exc_info.value.message == "Invalid price. Must be between 0 and 50000"

    def test_price_rounded_half_up(self, limits: LimitsConfig) -> None:
        assert validate_order({"item": "Tea", "price": 2.675}, limits).price == 2.68
        assert validate_order({"item": "Tea", "price": "3.14159"}, limits).price == 3.14

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "two", True, 1000])
    def test_quantity_rejected(self, limits: LimitsConfig, quantity: object) -> None:
        with pytest.raises(OrderValidationError) as exc_info:
            validate_order({"item": "Tea", "quantity": quantity}, limits)
        assert exc_info.value.code == "INVALID_QUANTITY"

    def test_quantity_numeric_string_accepted(self, limits: LimitsConfig) -> None:
        assert validate_order({"item": "Tea", "quantity": "3"}, limits).quantity == 3
        assert validate_order({"item": "Tea", "quantity": 4.0}, limits).quantity == 4

    def test_item_checked_before_price(self, limits: LimitsConfig) -> None:
        """Test the first violation in field order is the one reported."""
        with pytest.raises(OrderValidationError) as exc_info:
            validate_order({"item": "", "price": -5}, limits)
        assert exc_info.value.code == "INVALID_ITEM"

    def test_custom_limits(self) -> None:
        limits = LimitsConfig(max_item_name_length=5, max_price=10)
        with pytest.raises(OrderValidationError, match="5 characters or less"):
            validate_order({"item": "Burger"}, limits)
        with pytest.raises(OrderValidationError, match="between 0 and 10"):
            validate_order({"item": "Tea", "price": 11}, limits)


class TestValidateTax:
    """Test set_tax validation."""

    @pytest.mark.parametrize(
        ("value", "expected"),
        [(0, 0.0), (13, 13.0), ("8.875", 8.88), (50, 50.0), (12.344, 12.34)],
    )
    def test_valid_tax(self, limits: LimitsConfig, value: object, expected: float) -> None:
        assert validate_tax(value, limits) == expected

    @pytest.mark.parametrize("value", [-1, 50.01, "abc", None, "", False, {"v": 1}])
    def test_invalid_tax(self, limits: LimitsConfig, value: object) -> None:
        with pytest.raises(OrderValidationError) as exc_info:
            validate_tax(value, limits)
        assert exc_info.value.code == "INVALID_TAX"
        assert exc_info.value.message == "Invalid tax percent. Must be between 0 and 50"


def test_round_money() -> None:
    assert round_money(12.5) == 12.5
    assert round_money(1.005) == 1.01
    assert round_money(0.004) == 0.0
