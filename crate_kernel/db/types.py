"""
Module: crate_kernel.db.types
Responsibility: Annotated type aliases and conversion helpers for crate
    counts and monetary amounts.  Centralizes precision and rounding so that
    every model and service uses identical definitions.
Architecture position: Kernel > DB.  May be imported by models/, domain/,
    services/ and selectors/.  MUST NOT import from any of those layers.

Invariants enforced:
    - No floats for money.  to_money() converts floats through their string
      form so 0.1 stays 0.1.
    - round_money() is the only rounding function for display and stored
      monetary values.
"""

from decimal import ROUND_FLOOR, ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Annotated

from sqlalchemy import Integer, Numeric, String

# Monetary amount: 38 digits total, 9 decimal places
Money = Annotated[Decimal, Numeric(38, 9)]

# Signed crate count
Quantity = Annotated[int, Integer]

# Short identifier strings (enum values, keys)
ShortCode = Annotated[str, String(50)]

# Free-text notes
LongText = Annotated[str, String(2000)]

MONEY_DECIMAL_PLACES = 9
MONEY_INTEGER_DIGITS = 38 - MONEY_DECIMAL_PLACES
DISPLAY_DECIMAL_PLACES = 2
DEFAULT_ROUNDING = ROUND_HALF_UP


def to_money(value: object) -> Decimal:
    """
    Convert caller input to a Decimal amount.

    Accepts Decimal, int, float and numeric strings.  bool is rejected
    (it is an int subclass but never a meaningful amount).

    Raises:
        ValueError: If the value is not a finite number.
    """
    if isinstance(value, bool):
        raise ValueError(f"Not a monetary amount: {value!r}")
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, int):
        result = Decimal(value)
    elif isinstance(value, float):
        result = Decimal(str(value))
    elif isinstance(value, str):
        try:
            result = Decimal(value.strip())
        except InvalidOperation:
            raise ValueError(f"Not a monetary amount: {value!r}") from None
    else:
        raise ValueError(f"Not a monetary amount: {value!r}")

    if not result.is_finite():
        raise ValueError(f"Not a finite amount: {value!r}")
    return result


def round_money(
    value: Decimal,
    decimal_places: int = DISPLAY_DECIMAL_PLACES,
    rounding: str = DEFAULT_ROUNDING,
) -> Decimal:
    """Round a monetary value to the given number of decimal places."""
    quantize_str = "0." + "0" * decimal_places if decimal_places else "0"
    return value.quantize(Decimal(quantize_str), rounding=rounding)


def floor_div(amount: Decimal, unit: Decimal) -> int:
    """Number of whole units covered by an amount (floor division)."""
    return int((amount / unit).to_integral_value(rounding=ROUND_FLOOR))


def format_money(value: Decimal) -> str:
    """Two-decimal string form used in user-facing messages."""
    return f"{round_money(value):.2f}"
