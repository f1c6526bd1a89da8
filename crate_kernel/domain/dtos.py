"""
DTOs -- Immutable data transfer objects for the crate kernel.

Responsibility:
    Defines the frozen results handed back to callers: ledger outcomes,
    account snapshots, the aggregated stock state, movement and conflict
    views.  Services and selectors never return ORM instances across the
    coordinator boundary.

Architecture position:
    Kernel > Domain -- pure functional core, zero I/O.
    from_model() class methods exist as boundary converters and are only
    invoked from the service and selector layers.

Serialization:
    Results of keyed mutating calls are stored as JSON by the idempotency
    layer.  Those DTOs implement to_dict()/from_dict() with Decimal and UUID
    rendered as strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from crate_kernel.domain.settlement import ConflictState

if TYPE_CHECKING:
    from crate_kernel.models.conflict import Conflict, ResolutionRecord
    from crate_kernel.models.stock import MovementRecord, StockAccount


@dataclass(frozen=True)
class ReturnOutcome:
    """
    Result of registering a tour return.

    Guarantees:
        - surplus and loss are never both positive.
    """

    surplus: int
    loss: int

    def __post_init__(self) -> None:
        if self.surplus > 0 and self.loss > 0:
            raise ValueError("A return cannot report both a surplus and a loss")

    def to_dict(self) -> dict[str, Any]:
        return {"surplus": self.surplus, "loss": self.loss}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ReturnOutcome:
        return cls(surplus=int(data["surplus"]), loss=int(data["loss"]))


@dataclass(frozen=True)
class AccountSnapshot:
    """Stock account fields after a ledger operation."""

    initialized: bool
    stock_initial: int
    stock_current: int
    last_alert_reference: int
    alert_threshold_pct: Decimal

    @classmethod
    def from_model(cls, account: StockAccount) -> AccountSnapshot:
        return cls(
            initialized=account.initialized,
            stock_initial=account.stock_initial,
            stock_current=account.stock_current,
            last_alert_reference=account.last_alert_reference,
            alert_threshold_pct=Decimal(account.alert_threshold_pct),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "initialized": self.initialized,
            "stock_initial": self.stock_initial,
            "stock_current": self.stock_current,
            "last_alert_reference": self.last_alert_reference,
            "alert_threshold_pct": str(self.alert_threshold_pct),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AccountSnapshot:
        return cls(
            initialized=bool(data["initialized"]),
            stock_initial=int(data["stock_initial"]),
            stock_current=int(data["stock_current"]),
            last_alert_reference=int(data["last_alert_reference"]),
            alert_threshold_pct=Decimal(data["alert_threshold_pct"]),
        )


@dataclass(frozen=True)
class StockState:
    """
    Aggregated, read-only view of the crate stock.

    Contract:
        stock_available equals stock_current: crates in transit already left
        the on-hand balance when they departed.  stock_lost_to_date counts
        the part of resolved losses that was settled by payment.
    """

    initialized: bool
    stock_initial: int
    stock_current: int
    stock_available: int
    stock_in_transit: int
    stock_lost_to_date: int
    alert_reference: int
    alert_threshold_pct: Decimal
    drawdown_pct: Decimal
    alert_active: bool
    alert_message: str | None = None

    @classmethod
    def not_initialized(cls, alert_threshold_pct: Decimal) -> StockState:
        """The well-defined state reported before initialize()."""
        return cls(
            initialized=False,
            stock_initial=0,
            stock_current=0,
            stock_available=0,
            stock_in_transit=0,
            stock_lost_to_date=0,
            alert_reference=0,
            alert_threshold_pct=alert_threshold_pct,
            drawdown_pct=Decimal("0"),
            alert_active=False,
            alert_message=None,
        )


@dataclass(frozen=True)
class MovementView:
    """Read-side view of one ledger movement."""

    id: UUID
    seq: int
    movement_type: str
    quantity: int
    balance_after: int
    tour_id: UUID | None
    conflict_id: UUID | None
    actor_id: UUID | None
    notes: str | None
    recorded_at: datetime

    @classmethod
    def from_model(cls, record: MovementRecord) -> MovementView:
        return cls(
            id=record.id,
            seq=record.seq,
            movement_type=record.movement_type,
            quantity=record.quantity,
            balance_after=record.balance_after,
            tour_id=record.tour_id,
            conflict_id=record.conflict_id,
            actor_id=record.actor_id,
            notes=record.notes,
            recorded_at=record.recorded_at,
        )


@dataclass(frozen=True)
class ResolutionView:
    """Read-side view of one settlement action."""

    id: UUID
    seq: int
    resolution_type: str
    quantity: int | None
    amount: Decimal | None
    payment_mode: str | None
    actor_id: UUID
    notes: str | None
    recorded_at: datetime

    @classmethod
    def from_model(cls, record: ResolutionRecord) -> ResolutionView:
        return cls(
            id=record.id,
            seq=record.seq,
            resolution_type=record.resolution_type,
            quantity=record.quantity,
            amount=record.amount,
            payment_mode=record.payment_mode,
            actor_id=record.actor_id,
            notes=record.notes,
            recorded_at=record.recorded_at,
        )


@dataclass(frozen=True)
class ConflictView:
    """A conflict with its computed state and resolution history."""

    id: UUID
    tour_id: UUID | None
    quantity_lost: int
    quantity_returned: int
    amount_paid: Decimal
    status: str
    resolved_at: datetime | None
    state: ConflictState
    resolutions: tuple[ResolutionView, ...]

    @classmethod
    def from_model(
        cls,
        conflict: Conflict,
        state: ConflictState,
        resolutions: tuple[ResolutionView, ...],
    ) -> ConflictView:
        return cls(
            id=conflict.id,
            tour_id=conflict.tour_id,
            quantity_lost=conflict.quantity_lost,
            quantity_returned=conflict.quantity_returned,
            amount_paid=conflict.amount_paid,
            status=conflict.status,
            resolved_at=conflict.resolved_at,
            state=state,
            resolutions=resolutions,
        )


@dataclass(frozen=True)
class ConflictOpened:
    """Result of recording a new conflict."""

    conflict_id: UUID
    quantity_lost: int
    state: ConflictState

    def to_dict(self) -> dict[str, Any]:
        return {
            "conflict_id": str(self.conflict_id),
            "quantity_lost": self.quantity_lost,
            "state": self.state.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConflictOpened:
        return cls(
            conflict_id=UUID(data["conflict_id"]),
            quantity_lost=int(data["quantity_lost"]),
            state=ConflictState.from_dict(data["state"]),
        )


@dataclass(frozen=True)
class LedgerAuditReport:
    """Summary returned by a successful ledger audit."""

    movement_count: int
    movement_sum: int
    stock_current: int
