"""
Settlement -- pure completion rule for crate shortages.

Responsibility:
    Computes the outstanding balance of a conflict (crates and money), its
    progress and whether it is fully settled.  No I/O, no ORM: the service
    layer passes plain numbers in and persists what comes out.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.

Invariants enforced:
    - Value-based completion: a conflict is settled when every lost crate is
      back, or when the value of returned crates plus the money paid covers
      the value of the loss.
    - Decimal arithmetic throughout; unit_value is always passed in, never
      looked up.

Rule:
    total_value    = quantity_lost * unit_value
    settled_value  = quantity_returned * unit_value + amount_paid
    resolved      <=> quantity_returned == quantity_lost
                      or settled_value >= total_value
    progress_pct   = min(100, settled_value / total_value * 100)
                     (100 when total_value == 0)
    remaining_amount = max(0, remaining_crates * unit_value - amount_paid)
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Any
from uuid import UUID

from crate_kernel.db.types import floor_div, format_money

HUNDRED = Decimal("100")


@dataclass(frozen=True)
class ConflictState:
    """Outstanding balance of one conflict at a given unit value."""

    remaining_crates: int
    remaining_amount: Decimal
    progress_pct: Decimal
    is_resolved: bool
    unit_value: Decimal

    def to_dict(self) -> dict[str, Any]:
        return {
            "remaining_crates": self.remaining_crates,
            "remaining_amount": str(self.remaining_amount),
            "progress_pct": str(self.progress_pct),
            "is_resolved": self.is_resolved,
            "unit_value": str(self.unit_value),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ConflictState":
        return cls(
            remaining_crates=int(data["remaining_crates"]),
            remaining_amount=Decimal(data["remaining_amount"]),
            progress_pct=Decimal(data["progress_pct"]),
            is_resolved=bool(data["is_resolved"]),
            unit_value=Decimal(data["unit_value"]),
        )


@dataclass(frozen=True)
class SettlementResult:
    """
    Outcome of one settlement action (crate return or payment).

    ``message`` is the human-readable summary shown to the operator.
    """

    conflict_id: UUID
    resolved: bool
    state: ConflictState
    message: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "conflict_id": str(self.conflict_id),
            "resolved": self.resolved,
            "state": self.state.to_dict(),
            "message": self.message,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SettlementResult":
        return cls(
            conflict_id=UUID(data["conflict_id"]),
            resolved=bool(data["resolved"]),
            state=ConflictState.from_dict(data["state"]),
            message=data["message"],
        )


def total_value(quantity_lost: int, unit_value: Decimal) -> Decimal:
    return quantity_lost * unit_value


def settled_value(
    quantity_returned: int,
    amount_paid: Decimal,
    unit_value: Decimal,
) -> Decimal:
    return quantity_returned * unit_value + amount_paid


def remaining_value(
    quantity_lost: int,
    quantity_returned: int,
    amount_paid: Decimal,
    unit_value: Decimal,
) -> Decimal:
    """
    Money still owed before clamping.

    Negative when payments already exceed the value of the crates still
    missing (possible after the unit value is lowered).
    """
    return (quantity_lost - quantity_returned) * unit_value - amount_paid


def crates_covered_by_payment(amount: Decimal, unit_value: Decimal) -> int:
    """Whole crates a payment pays for (floor division)."""
    return floor_div(amount, unit_value)


def compute_conflict_state(
    quantity_lost: int,
    quantity_returned: int,
    amount_paid: Decimal,
    unit_value: Decimal,
) -> ConflictState:
    """
    Evaluate the completion rule.

    Preconditions:
        0 <= quantity_returned <= quantity_lost, amount_paid >= 0,
        unit_value > 0.
    """
    remaining_crates = quantity_lost - quantity_returned
    total = total_value(quantity_lost, unit_value)
    settled = settled_value(quantity_returned, amount_paid, unit_value)

    if total > 0:
        progress = min(HUNDRED, settled / total * HUNDRED)
    else:
        progress = HUNDRED

    remaining_amount = max(
        Decimal("0"),
        remaining_value(quantity_lost, quantity_returned, amount_paid, unit_value),
    )

    return ConflictState(
        remaining_crates=remaining_crates,
        remaining_amount=remaining_amount,
        progress_pct=progress,
        is_resolved=remaining_crates == 0 or settled >= total,
        unit_value=unit_value,
    )


def crate_return_message(quantity: int, state: ConflictState, currency: str) -> str:
    if state.is_resolved:
        return f"{quantity} crates returned. Conflict resolved!"
    return (
        f"{quantity} crates returned. {state.remaining_crates} crates or "
        f"{format_money(state.remaining_amount)} {currency} remaining."
    )


def payment_message(amount: Decimal, state: ConflictState, currency: str) -> str:
    head = f"Payment of {format_money(amount)} {currency} recorded."
    if state.is_resolved:
        return f"{head} Conflict resolved!"
    return f"{head} {format_money(state.remaining_amount)} {currency} remaining."
