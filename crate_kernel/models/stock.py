"""
Module: crate_kernel.models.stock
Responsibility: ORM persistence for the stock account (the single running
    crate balance) and its append-only movement log.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - Singleton: exactly one StockAccount row, identified by the unique
      account_key "stock-principal".
    - Ledger consistency: stock_current == sum(MovementRecord.quantity) over
      all movements (the INITIALIZE movement carries the setup quantity).
    - Audit snapshot: MovementRecord.balance_after is the account balance
      immediately after that movement; movements are totally ordered by seq.
    - Append-only: MovementRecord rows are never updated or deleted (ORM
      listeners in db/immutability.py).

Failure modes:
    - IntegrityError on a second StockAccount row with the same account_key.
    - IntegrityError on a duplicate movement seq.
    - ImmutabilityViolationError on UPDATE/DELETE of a MovementRecord.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import Boolean, DateTime, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from crate_kernel.db.base import Base, TrackedBase, UUIDString

PRINCIPAL_ACCOUNT_KEY = "stock-principal"


class MovementType(str, Enum):
    """Kind of balance-affecting (or audit-only) event.

    Contract: The sign of MovementRecord.quantity follows the type:
    DEPART is negative, CONFLICT_LOSS_CONFIRMED is zero, ADJUSTMENT and
    INITIALIZE may carry either sign, every other type is positive.
    """

    INITIALIZE = "initialize"
    DEPART = "depart"
    RETURN = "return"
    SURPLUS = "surplus"
    ADJUSTMENT = "adjustment"
    PURCHASE = "purchase"
    CONFLICT_RETURN = "conflict_return"
    CONFLICT_LOSS_CONFIRMED = "conflict_loss_confirmed"


class StockAccount(TrackedBase):
    """
    The crate stock account.

    Contract:
        One row ever exists.  Every mutation locks this row
        (SELECT ... FOR UPDATE) and appends exactly the MovementRecords that
        explain the change, in the same transaction.

    Guarantees:
        - stock_current is the authoritative on-hand balance.
        - last_alert_reference is the balance at the last alert
          acknowledgement (or purchase); the drawdown alert is measured
          against it.
        - initialized gates every mutating operation except initialize.
    """

    __tablename__ = "stock_accounts"

    __table_args__ = (
        UniqueConstraint("account_key", name="uq_stock_account_key"),
    )

    account_key: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=PRINCIPAL_ACCOUNT_KEY,
    )

    # Reference fleet size: setup quantity plus every purchase
    stock_initial: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # Authoritative running balance
    stock_current: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    last_alert_reference: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # Percentage drop since last_alert_reference that raises the alert
    alert_threshold_pct: Mapped[Decimal] = mapped_column(
        Numeric(9, 4),
        nullable=False,
        default=Decimal("10"),
    )

    initialized: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
    )

    def __repr__(self) -> str:
        return (
            f"<StockAccount {self.account_key}: current={self.stock_current} "
            f"initial={self.stock_initial}>"
        )


class MovementRecord(Base):
    """
    One immutable ledger movement.

    Contract:
        Created only by MovementLedger, inside the transaction that changed
        the StockAccount.  Never updated or deleted.

    Guarantees:
        - seq is unique and strictly increasing in creation order.
        - balance_after == previous balance_after + quantity.
        - Foreign references (tour, conflict, actor) are informational;
          tours and conflicts are owned elsewhere.
    """

    __tablename__ = "crate_movements"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_crate_movement_seq"),
        Index("idx_crate_movement_type", "movement_type"),
        Index("idx_crate_movement_tour", "tour_id"),
        Index("idx_crate_movement_conflict", "conflict_id"),
    )

    seq: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    movement_type: Mapped[MovementType] = mapped_column(
        String(30),
        nullable=False,
    )

    # Signed delta applied to the balance
    quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    balance_after: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    tour_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    conflict_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    actor_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(
        String(2000),
        nullable=True,
    )

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    @property
    def movement_type_enum(self) -> MovementType:
        return MovementType(self.movement_type)

    def __repr__(self) -> str:
        return (
            f"<MovementRecord #{self.seq} {self.movement_type} "
            f"{self.quantity:+d} -> {self.balance_after}>"
        )
