"""
Module: crate_kernel.selectors.conflict_selector
Responsibility: Read-only access to a conflict, its computed settlement
    state and its resolution history.
Architecture position: Kernel > Selectors.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from crate_kernel.domain.dtos import ConflictView, ResolutionView
from crate_kernel.domain.settlement import compute_conflict_state
from crate_kernel.exceptions import ConflictNotFoundError
from crate_kernel.models.conflict import Conflict, ConflictStatus, ResolutionRecord
from crate_kernel.selectors.base import BaseSelector


class ConflictSelector(BaseSelector):
    """Conflicts with their state, evaluated at a given unit value."""

    def __init__(self, session: Session, unit_value: Decimal):
        super().__init__(session)
        self._unit_value = Decimal(unit_value)

    def get_resolution_history(self, conflict_id: UUID) -> tuple[ResolutionView, ...]:
        """Settlement actions of a conflict, oldest first."""
        records = self.session.execute(
            select(ResolutionRecord)
            .where(ResolutionRecord.conflict_id == conflict_id)
            .order_by(ResolutionRecord.seq)
        ).scalars()
        return tuple(ResolutionView.from_model(r) for r in records)

    def get_conflict_with_state(self, conflict_id: UUID) -> ConflictView:
        """
        Raises:
            ConflictNotFoundError: Unknown conflict.
        """
        conflict = self.session.get(Conflict, conflict_id)
        if conflict is None:
            raise ConflictNotFoundError(str(conflict_id))

        state = compute_conflict_state(
            conflict.quantity_lost,
            conflict.quantity_returned,
            Decimal(conflict.amount_paid),
            self._unit_value,
        )
        return ConflictView.from_model(
            conflict, state, self.get_resolution_history(conflict.id)
        )

    def list_open_conflicts(self, tour_id: UUID | None = None) -> list[ConflictView]:
        """PENDING conflicts, oldest first, optionally for one tour."""
        stmt = select(Conflict).where(Conflict.status == ConflictStatus.PENDING.value)
        if tour_id is not None:
            stmt = stmt.where(Conflict.tour_id == tour_id)
        stmt = stmt.order_by(Conflict.created_at, Conflict.id)

        views = []
        for conflict in self.session.execute(stmt).scalars():
            state = compute_conflict_state(
                conflict.quantity_lost,
                conflict.quantity_returned,
                Decimal(conflict.amount_paid),
                self._unit_value,
            )
            views.append(
                ConflictView.from_model(
                    conflict, state, self.get_resolution_history(conflict.id)
                )
            )
        return views
