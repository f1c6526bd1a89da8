"""
Module: crate_kernel.models.conflict
Responsibility: ORM persistence for crate shortages ("conflicts") and the
    append-only log of settlement actions taken against them.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - quantity_lost is fixed at creation.
    - quantity_returned and amount_paid only ever grow, and only through
      ConflictSettlement.
    - quantity_returned <= quantity_lost (DB check constraint as a backstop
      to the service-level validation).
    - ResolutionRecord rows are append-only (ORM listeners in
      db/immutability.py).

Failure modes:
    - IntegrityError if quantity_returned would exceed quantity_lost.
    - ImmutabilityViolationError on UPDATE/DELETE of a ResolutionRecord.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crate_kernel.db.base import Base, TrackedBase, UUIDString


class ConflictStatus(str, Enum):
    """Settlement status of a shortage.

    Contract: The settlement engine only moves PENDING -> RESOLVED.  PAID
    and CANCELLED are set by the external direction-approval workflow.
    Every status other than PENDING is terminal for settlement.
    """

    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    RESOLVED = "resolved"


class ResolutionType(str, Enum):
    """Kind of settlement action."""

    CRATE_RETURN = "crate_return"
    PAYMENT = "payment"


class PaymentMode(str, Enum):
    """How a driver pays for lost crates."""

    CASH = "cash"
    SALARY_DEDUCTION = "salary_deduction"


class Conflict(TrackedBase):
    """
    A crate shortage detected on a tour.

    Contract:
        Opened by the tour workflow with quantity_lost > 0.  Settled
        incrementally by crate returns and payments until the value of
        returns plus payments covers the value of the loss.

    Guarantees:
        - status is a ConflictStatus value.
        - resolutions are ordered by seq.
    """

    __tablename__ = "conflicts"

    __table_args__ = (
        CheckConstraint("quantity_lost >= 0", name="ck_conflict_lost_nonneg"),
        CheckConstraint(
            "quantity_returned >= 0 AND quantity_returned <= quantity_lost",
            name="ck_conflict_returned_bounds",
        ),
        CheckConstraint("amount_paid >= 0", name="ck_conflict_paid_nonneg"),
        Index("idx_conflict_status", "status"),
        Index("idx_conflict_tour", "tour_id"),
    )

    tour_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("tours.id"),
        nullable=True,
    )

    quantity_lost: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    quantity_returned: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    amount_paid: Mapped[Decimal] = mapped_column(
        Numeric(38, 9),
        nullable=False,
        default=Decimal("0"),
    )

    status: Mapped[ConflictStatus] = mapped_column(
        String(20),
        nullable=False,
        default=ConflictStatus.PENDING.value,
    )

    resolved_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )

    resolutions: Mapped[list["ResolutionRecord"]] = relationship(
        back_populates="conflict",
        order_by="ResolutionRecord.seq",
        lazy="selectin",
    )

    @property
    def status_enum(self) -> ConflictStatus:
        return ConflictStatus(self.status)

    @property
    def is_open(self) -> bool:
        return self.status_enum == ConflictStatus.PENDING

    def __repr__(self) -> str:
        return (
            f"<Conflict {self.id} {self.status}: lost={self.quantity_lost} "
            f"returned={self.quantity_returned} paid={self.amount_paid}>"
        )


class ResolutionRecord(Base):
    """
    One immutable settlement action against a conflict.

    Contract:
        CRATE_RETURN rows carry quantity; PAYMENT rows carry amount and
        payment_mode.  The Conflict's quantity_returned / amount_paid are
        the running sums of these rows.
    """

    __tablename__ = "conflict_resolutions"

    __table_args__ = (
        UniqueConstraint("seq", name="uq_conflict_resolution_seq"),
        Index("idx_conflict_resolution_conflict", "conflict_id"),
    )

    seq: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    conflict_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("conflicts.id"),
        nullable=False,
    )

    resolution_type: Mapped[ResolutionType] = mapped_column(
        String(20),
        nullable=False,
    )

    quantity: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    amount: Mapped[Decimal | None] = mapped_column(
        Numeric(38, 9),
        nullable=True,
    )

    payment_mode: Mapped[PaymentMode | None] = mapped_column(
        String(20),
        nullable=True,
    )

    actor_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        nullable=False,
    )

    notes: Mapped[str | None] = mapped_column(
        String(2000),
        nullable=True,
    )

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )

    conflict: Mapped[Conflict] = relationship(back_populates="resolutions")

    def __repr__(self) -> str:
        return f"<ResolutionRecord #{self.seq} {self.resolution_type} conflict={self.conflict_id}>"
