"""
ConflictSettlement -- incremental settlement of crate shortages.

Responsibility:
    Records conflicts opened by the tour workflow and settles them through
    partial crate returns and partial payments until the value of what came
    back plus what was paid covers the value of what was lost.  Every action
    appends a ResolutionRecord and calls back into MovementLedger in the
    same session.

Architecture position:
    Kernel > Services -- imperative shell around the pure rule in
    ``crate_kernel.domain.settlement``.

Invariants enforced:
    - No double settlement: quantity_returned <= quantity_lost and
      amount_paid <= remaining value + tolerance at the time of payment.
    - Terminal states are final: only PENDING conflicts accept actions;
      RESOLVED, PAID and CANCELLED raise AlreadyResolvedError.
    - Atomicity: the conflict update, its resolution record and the stock
      movement share one transaction.
    - Lock order: conflict row, resolution counter, then (through the
      ledger) account row and movement counter.  Every settlement path
      takes them in this order.

Failure modes:
    - ConflictNotFoundError, AlreadyResolvedError, InvalidQuantityError,
      ExceedsRemainingError.  All raised before the first write.

Unit value:
    Injected at construction, never looked up inside the transaction.  The
    state is always evaluated at the injected value, so lowering the unit
    value can make an open conflict's payments exceed the value of its
    missing crates; such a conflict resolves on its next action.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from crate_kernel.domain.clock import Clock, SystemClock
from crate_kernel.domain.dtos import ConflictOpened
from crate_kernel.domain.settlement import (
    ConflictState,
    SettlementResult,
    compute_conflict_state,
    crate_return_message,
    crates_covered_by_payment,
    payment_message,
    remaining_value,
)
from crate_kernel.domain.validation import (
    require_positive_amount,
    require_positive_quantity,
)
from crate_kernel.exceptions import (
    AlreadyResolvedError,
    ConflictNotFoundError,
    ExceedsRemainingError,
    InvalidQuantityError,
)
from crate_kernel.logging_config import get_logger
from crate_kernel.models.conflict import (
    Conflict,
    ConflictStatus,
    PaymentMode,
    ResolutionRecord,
    ResolutionType,
)
from crate_kernel.services.base import BaseService
from crate_kernel.services.movement_ledger import MovementLedger
from crate_kernel.services.sequence_service import SequenceService

logger = get_logger("services.conflict_settlement")

DEFAULT_PAYMENT_TOLERANCE = Decimal("0.01")

_PAYMENT_NOTES = {
    PaymentMode.CASH: "Payment in cash",
    PaymentMode.SALARY_DEDUCTION: "Payment by salary deduction",
}


class ConflictSettlement(BaseService):
    """
    Settlement state machine for conflicts.

    Contract:
        PENDING --(return/payment covering the loss)--> RESOLVED.
        Flush-only; shares the session of the MovementLedger it is given.
    """

    def __init__(
        self,
        session: Session,
        ledger: MovementLedger,
        unit_value: Decimal,
        clock: Clock | None = None,
        tolerance: Decimal = DEFAULT_PAYMENT_TOLERANCE,
        currency: str = "TND",
        sequence_service: SequenceService | None = None,
    ):
        super().__init__(session)
        unit_value = Decimal(unit_value)
        if unit_value <= 0:
            raise ValueError(f"unit_value must be positive, got {unit_value}")
        self._ledger = ledger
        self._unit_value = unit_value
        self._clock = clock or SystemClock()
        self._tolerance = Decimal(tolerance)
        self._currency = currency
        self._sequence_service = sequence_service or SequenceService(session)

    @property
    def unit_value(self) -> Decimal:
        return self._unit_value

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _lock_open_conflict(self, conflict_id: UUID) -> Conflict:
        conflict = self.session.execute(
            select(Conflict)
            .where(Conflict.id == conflict_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

        if conflict is None:
            raise ConflictNotFoundError(str(conflict_id))
        if conflict.status != ConflictStatus.PENDING.value:
            raise AlreadyResolvedError(str(conflict_id), conflict.status)
        return conflict

    def _append_resolution(
        self,
        conflict: Conflict,
        resolution_type: ResolutionType,
        actor_id: UUID,
        *,
        quantity: int | None = None,
        amount: Decimal | None = None,
        payment_mode: PaymentMode | None = None,
        notes: str | None = None,
    ) -> ResolutionRecord:
        record = ResolutionRecord(
            seq=self._sequence_service.next_value(SequenceService.CONFLICT_RESOLUTION),
            conflict_id=conflict.id,
            resolution_type=resolution_type.value,
            quantity=quantity,
            amount=amount,
            payment_mode=payment_mode.value if payment_mode else None,
            actor_id=actor_id,
            notes=notes,
            recorded_at=self._clock.now(),
        )
        self.session.add(record)
        return record

    def _settle_if_covered(self, conflict: Conflict, actor_id: UUID) -> ConflictState:
        state = self.get_state(conflict)
        if state.is_resolved:
            conflict.status = ConflictStatus.RESOLVED.value
            conflict.resolved_at = self._clock.now()
            logger.info(
                "conflict_resolved",
                extra={
                    "conflict_id": str(conflict.id),
                    "quantity_lost": conflict.quantity_lost,
                    "quantity_returned": conflict.quantity_returned,
                    "amount_paid": conflict.amount_paid,
                },
            )
        conflict.updated_by_id = actor_id
        self.session.flush()
        return state

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def get_state(self, conflict: Conflict) -> ConflictState:
        """Outstanding balance of a conflict at the injected unit value."""
        return compute_conflict_state(
            conflict.quantity_lost,
            conflict.quantity_returned,
            Decimal(conflict.amount_paid),
            self._unit_value,
        )

    def open_conflict(
        self,
        tour_id: UUID | None,
        quantity_lost: int,
        actor_id: UUID,
    ) -> ConflictOpened:
        """
        Record a shortage reported by the tour workflow.

        Detection is the workflow's decision; this only persists the
        conflict so it can be settled.
        """
        quantity_lost = require_positive_quantity(quantity_lost, "quantity_lost")

        conflict = Conflict(
            tour_id=tour_id,
            quantity_lost=quantity_lost,
            quantity_returned=0,
            amount_paid=Decimal("0"),
            status=ConflictStatus.PENDING.value,
            created_by_id=actor_id,
        )
        self.session.add(conflict)
        self.session.flush()

        logger.info(
            "conflict_opened",
            extra={
                "conflict_id": str(conflict.id),
                "tour_id": str(tour_id) if tour_id else None,
                "quantity_lost": quantity_lost,
            },
        )
        return ConflictOpened(
            conflict_id=conflict.id,
            quantity_lost=quantity_lost,
            state=self.get_state(conflict),
        )

    def register_crate_return(
        self,
        conflict_id: UUID,
        quantity: int,
        actor_id: UUID,
        notes: str | None = None,
    ) -> SettlementResult:
        """
        Settle part of a conflict with physically returned crates.

        Raises:
            ConflictNotFoundError, AlreadyResolvedError,
            InvalidQuantityError, ExceedsRemainingError.
        """
        conflict = self._lock_open_conflict(conflict_id)

        remaining = conflict.quantity_lost - conflict.quantity_returned
        quantity = require_positive_quantity(quantity)
        if quantity > remaining:
            raise ExceedsRemainingError(str(conflict_id), quantity, remaining, "crates")

        conflict.quantity_returned += quantity
        self._append_resolution(
            conflict,
            ResolutionType.CRATE_RETURN,
            actor_id,
            quantity=quantity,
            notes=notes,
        )
        self._ledger.register_conflict_return(conflict.id, quantity, actor_id, notes)

        state = self._settle_if_covered(conflict, actor_id)

        logger.info(
            "conflict_crates_returned",
            extra={
                "conflict_id": str(conflict.id),
                "quantity": quantity,
                "remaining_crates": state.remaining_crates,
                "resolved": state.is_resolved,
            },
        )
        return SettlementResult(
            conflict_id=conflict.id,
            resolved=state.is_resolved,
            state=state,
            message=crate_return_message(quantity, state, self._currency),
        )

    def register_payment(
        self,
        conflict_id: UUID,
        amount: Decimal,
        payment_mode: PaymentMode | str,
        actor_id: UUID,
        notes: str | None = None,
    ) -> SettlementResult:
        """
        Settle part of a conflict with money.

        The payment may exceed the remaining value by at most the tolerance.
        Payments covering at least one whole crate are also written to the
        movement log as a zero-quantity confirmed loss.

        Raises:
            ConflictNotFoundError, AlreadyResolvedError,
            InvalidQuantityError, ExceedsRemainingError.
        """
        conflict = self._lock_open_conflict(conflict_id)

        try:
            mode = PaymentMode(payment_mode)
        except ValueError:
            raise InvalidQuantityError(
                "payment_mode", payment_mode, "unknown payment mode"
            ) from None

        amount = require_positive_amount(amount)
        owed = remaining_value(
            conflict.quantity_lost,
            conflict.quantity_returned,
            Decimal(conflict.amount_paid),
            self._unit_value,
        )
        if amount > owed + self._tolerance:
            raise ExceedsRemainingError(
                str(conflict_id), amount, max(Decimal("0"), owed), self._currency
            )

        conflict.amount_paid = Decimal(conflict.amount_paid) + amount
        self._append_resolution(
            conflict,
            ResolutionType.PAYMENT,
            actor_id,
            amount=amount,
            payment_mode=mode,
            notes=notes or _PAYMENT_NOTES[mode],
        )

        crates_covered = crates_covered_by_payment(amount, self._unit_value)
        if crates_covered > 0:
            self._ledger.register_confirmed_loss(
                conflict.id,
                crates_covered,
                amount,
                actor_id,
                f"Mode: {mode.value}",
            )

        state = self._settle_if_covered(conflict, actor_id)

        logger.info(
            "conflict_payment_registered",
            extra={
                "conflict_id": str(conflict.id),
                "amount": amount,
                "payment_mode": mode.value,
                "crates_covered": crates_covered,
                "remaining_amount": state.remaining_amount,
                "resolved": state.is_resolved,
            },
        )
        return SettlementResult(
            conflict_id=conflict.id,
            resolved=state.is_resolved,
            state=state,
            message=payment_message(amount, state, self._currency),
        )
