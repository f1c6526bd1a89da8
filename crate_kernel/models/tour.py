"""
Module: crate_kernel.models.tour
Responsibility: ORM mapping of delivery tours as far as the crate ledger
    needs them: how many crates left and how many came back.
Architecture position: Kernel > Models.  May import from db/ only.

Tours are owned by the external tour workflow.  The kernel never creates,
updates or deletes them; the stock aggregator reads them to compute the
number of crates currently on the road.
"""

from enum import Enum

from sqlalchemy import Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from crate_kernel.db.base import TrackedBase


class TourStatus(str, Enum):
    """Lifecycle of a delivery tour, as driven by the tour workflow."""

    PREPARATION = "preparation"
    READY_TO_DEPART = "ready_to_depart"
    IN_TOUR = "in_tour"
    AWAITING_UNLOADING = "awaiting_unloading"
    AWAITING_HYGIENE = "awaiting_hygiene"
    COMPLETED = "completed"


class Tour(TrackedBase):
    """A delivery tour (read-only for the kernel)."""

    __tablename__ = "tours"

    __table_args__ = (
        Index("idx_tour_status", "status"),
    )

    reference: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    status: Mapped[TourStatus] = mapped_column(
        String(30),
        nullable=False,
        default=TourStatus.PREPARATION.value,
    )

    crates_departed: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    # Counted so far; None until unloading starts
    crates_returned: Mapped[int | None] = mapped_column(
        Integer,
        nullable=True,
    )

    @property
    def crates_out(self) -> int:
        """Crates still outside the warehouse for this tour."""
        return self.crates_departed - (self.crates_returned or 0)

    def __repr__(self) -> str:
        return f"<Tour {self.reference} {self.status}>"
