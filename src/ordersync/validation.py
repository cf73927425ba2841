"""Validation of order items and tax rates.

All checks run before any session mutation so that a rejected message leaves
the session untouched.
"""

import math
from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from ordersync.config import LimitsConfig


class OrderValidationError(ValueError):
    """Raised when a client payload violates a bound.

    Attributes:
        message: Human-readable reason sent back to the client
        code: Machine-readable error code
    """

    def __init__(self, message: str, code: str) -> None:
        super().__init__(message)
        self.message = message
        self.code = code


@dataclass(frozen=True)
class ValidatedOrder:
    """Order fields after trimming, bounds checking and rounding."""

    item: str
    quantity: int
    name: str | None = None
    price: float | None = None
    notes: str | None = None


def round_money(value: float) -> float:
    """Round half-up to 2 decimal places."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def _to_number(value: Any) -> float | None:
    """Coerce a JSON number or numeric string to float, or None if not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, int | float):
        number = float(value)
    elif isinstance(value, str):
        try:
            number = float(value.strip())
        except ValueError:
            return None
    else:
        return None
    if not math.isfinite(number):
        return None
    return number


def _clean_text(value: Any) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        value = str(value)
    value = value.strip()
    return value or None


def validate_item_name(value: Any, limits: LimitsConfig) -> str:
    item = _clean_text(value)
    if item is None or len(item) > limits.max_item_name_length:
        raise OrderValidationError(
            f"Item name must be {limits.max_item_name_length} characters or less",
            code="INVALID_ITEM",
        )
    return item


def validate_notes(value: Any, limits: LimitsConfig) -> str | None:
    notes = _clean_text(value)
    if notes is not None and len(notes) > limits.max_notes_length:
        raise OrderValidationError(
            f"Notes must be {limits.max_notes_length} characters or less",
            code="INVALID_NOTES",
        )
    return notes


def validate_name(value: Any, limits: LimitsConfig) -> str | None:
    name = _clean_text(value)
    if name is not None and len(name) > limits.max_name_length:
        raise OrderValidationError(
            f"Name must be {limits.max_name_length} characters or less",
            code="INVALID_NAME",
        )
    return name


def validate_quantity(value: Any, limits: LimitsConfig) -> int:
    if value is None:
        return 1
    number = _to_number(value)
    if number is None or not number.is_integer() or not 1 <= number <= limits.max_quantity:
        raise OrderValidationError(
            f"Quantity must be a whole number between 1 and {limits.max_quantity}",
            code="INVALID_QUANTITY",
        )
    return int(number)


def validate_price(value: Any, limits: LimitsConfig) -> float | None:
    if value is None:
        return None
    number = _to_number(value)
    if number is None or number < 0 or number > limits.max_price:
        raise OrderValidationError(
            f"Invalid price. Must be between 0 and {limits.max_price:g}",
            code="INVALID_PRICE",
        )
    return round_money(number)


def validate_order(payload: dict[str, Any], limits: LimitsConfig) -> ValidatedOrder:
    """Validate the fields of an ``add_order`` payload.

    Checks run in a fixed order (item, notes, name, quantity, price) and the
    first violation is reported.

    Args:
        payload: Raw order fields as sent by the client
        limits: Configured bounds

    Returns:
        Cleaned order fields

    Raises:
        OrderValidationError: If any field is out of bounds
    """
    item = validate_item_name(payload.get("item"), limits)
    notes = validate_notes(payload.get("notes"), limits)
    name = validate_name(payload.get("name"), limits)
    quantity = validate_quantity(payload.get("quantity"), limits)
    price = validate_price(payload.get("price"), limits)
    return ValidatedOrder(item=item, quantity=quantity, name=name, price=price, notes=notes)


def validate_tax(value: Any, limits: LimitsConfig) -> float:
    """Validate a proposed tax percentage.

    Args:
        value: Number or numeric string from the client
        limits: Configured bounds

    Returns:
        Tax percentage rounded to 2 decimals

    Raises:
        OrderValidationError: If the value is not numeric or out of range
    """
    number = _to_number(value)
    if number is None or number < 0 or number > limits.max_tax_percent:
        raise OrderValidationError(
            f"Invalid tax percent. Must be between 0 and {limits.max_tax_percent:g}",
            code="INVALID_TAX",
        )
    return round_money(number)
