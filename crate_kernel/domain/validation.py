"""
Lightweight input validation helpers.

Pure checks with no I/O, run by services before their first write so a
rejected call leaves nothing behind.
"""

from __future__ import annotations

from decimal import Decimal
from typing import Any

from crate_kernel.db.types import MONEY_DECIMAL_PLACES, MONEY_INTEGER_DIGITS, to_money
from crate_kernel.exceptions import InvalidQuantityError, ValidationError

# Scale of StockAccount.alert_threshold_pct
PERCENT_DECIMAL_PLACES = 4


def _require_int(value: Any, field: str) -> int:
    # bool is an int subclass; True crates is a caller bug
    if isinstance(value, bool) or not isinstance(value, int):
        raise InvalidQuantityError(field, value, "must be an integer")
    return value


def require_positive_quantity(value: Any, field: str = "quantity") -> int:
    quantity = _require_int(value, field)
    if quantity <= 0:
        raise InvalidQuantityError(field, value)
    return quantity


def require_non_negative_quantity(value: Any, field: str = "quantity") -> int:
    quantity = _require_int(value, field)
    if quantity < 0:
        raise InvalidQuantityError(field, value, "must not be negative")
    return quantity


def require_non_zero_quantity(value: Any, field: str = "delta") -> int:
    quantity = _require_int(value, field)
    if quantity == 0:
        raise InvalidQuantityError(field, value, "must not be zero")
    return quantity


def _decimal_places(amount: Decimal) -> int:
    # Significant places only: 1.500 has one
    _, digits, exponent = amount.as_tuple()
    trailing_zeros = len(digits) - len("".join(map(str, digits)).rstrip("0"))
    return max(0, -(exponent + trailing_zeros))


def require_positive_amount(value: Any, field: str = "amount") -> Decimal:
    """
    Convert to Decimal and require > 0.

    The amount must fit the Money column exactly; extra decimal places are
    refused rather than rounded away on flush.
    """
    try:
        amount = to_money(value)
    except ValueError:
        raise InvalidQuantityError(field, value, "must be a number") from None
    if amount <= 0:
        raise InvalidQuantityError(field, value)
    if _decimal_places(amount) > MONEY_DECIMAL_PLACES:
        raise InvalidQuantityError(
            field, value, f"has more than {MONEY_DECIMAL_PLACES} decimal places"
        )
    if amount.adjusted() >= MONEY_INTEGER_DIGITS:
        raise InvalidQuantityError(field, value, "is too large")
    return amount


def require_percentage(value: Any, field: str = "alert_threshold_pct") -> Decimal:
    """Convert to Decimal and require 0 <= value <= 100."""
    try:
        pct = to_money(value)
    except ValueError:
        raise InvalidQuantityError(field, value, "must be a number") from None
    if pct < 0 or pct > 100:
        raise InvalidQuantityError(field, value, "must be between 0 and 100")
    if _decimal_places(pct) > PERCENT_DECIMAL_PLACES:
        raise InvalidQuantityError(
            field, value, f"has more than {PERCENT_DECIMAL_PLACES} decimal places"
        )
    return pct


def require_text(value: str | None, field: str = "reason") -> str:
    """Require a non-blank string; returns it stripped."""
    if value is None or not str(value).strip():
        raise ValidationError(field, "is required")
    return str(value).strip()
