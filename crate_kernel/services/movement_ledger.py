"""
MovementLedger -- the crate stock account and its append-only movement log.

Responsibility:
    Owns the singleton StockAccount and every MovementRecord.  Each public
    operation locks the account row, applies one balance change, appends
    the movement record(s) that explain it and flushes, all inside the
    caller's transaction.

Architecture position:
    Kernel > Services -- imperative shell.
    Called by the TransactionCoordinator and by ConflictSettlement (which
    shares its session so a settlement and its stock movement commit
    together).

Invariants enforced:
    - Ledger consistency: stock_current == sum(MovementRecord.quantity).
      The INITIALIZE record carries the setup quantity (or, for a
      re-initialization, the delta to the new quantity).
    - balance_after of each record equals the account balance right after
      that record.  Records are ordered by seq from a locked counter.
    - Serialization: the account row is read with SELECT ... FOR UPDATE
      before any read-modify-write.  Lock order is account row, then the
      movement counter.
    - Implicit loss: a short return credits only what came back.  The
      missing crates are settled later through a conflict; the confirmed
      loss is recorded as a zero-quantity audit movement.

Failure modes:
    - NotInitializedError: any mutation before initialize().
    - AlreadyInitializedError: initialize() on an initialized account.
    - InvalidQuantityError: non-integer, non-positive (or negative where
      zero is allowed) quantities; zero adjustment delta; an alert
      threshold outside 0..100.
    - ValidationError: blank adjustment or re-initialization reason.
    All raised before the first write of the call.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from crate_kernel.db.types import format_money
from crate_kernel.domain.clock import Clock, SystemClock
from crate_kernel.domain.dtos import ReturnOutcome
from crate_kernel.domain.validation import (
    require_non_negative_quantity,
    require_non_zero_quantity,
    require_percentage,
    require_positive_amount,
    require_positive_quantity,
    require_text,
)
from crate_kernel.exceptions import AlreadyInitializedError, NotInitializedError
from crate_kernel.logging_config import get_logger
from crate_kernel.models.stock import (
    PRINCIPAL_ACCOUNT_KEY,
    MovementRecord,
    MovementType,
    StockAccount,
)
from crate_kernel.services.base import BaseService
from crate_kernel.services.sequence_service import SequenceService

logger = get_logger("services.movement_ledger")

DEFAULT_ALERT_THRESHOLD_PCT = Decimal("10")


class MovementLedger(BaseService):
    """
    Running crate balance plus its movement log.

    Contract:
        Flush-only.  Every method either raises before writing or leaves the
        account and its new movement records flushed in the session.

    Non-goals:
        - Does NOT validate conflict returns against the conflict's
          remaining balance; ConflictSettlement is the single owner of
          that check.
        - Does NOT commit.
    """

    def __init__(
        self,
        session: Session,
        clock: Clock | None = None,
        sequence_service: SequenceService | None = None,
        alert_threshold_pct: Decimal = DEFAULT_ALERT_THRESHOLD_PCT,
        currency: str = "TND",
    ):
        super().__init__(session)
        self._clock = clock or SystemClock()
        self._sequence_service = sequence_service or SequenceService(session)
        self._alert_threshold_pct = Decimal(alert_threshold_pct)
        self._currency = currency

    # ------------------------------------------------------------------
    # Account access
    # ------------------------------------------------------------------

    def _lock_account(self) -> StockAccount | None:
        return self.session.execute(
            select(StockAccount)
            .where(StockAccount.account_key == PRINCIPAL_ACCOUNT_KEY)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def _require_initialized(self, operation: str) -> StockAccount:
        account = self._lock_account()
        if account is None or not account.initialized:
            raise NotInitializedError(operation)
        return account

    def _create_account(self, actor_id: UUID) -> StockAccount:
        """Insert the singleton row, tolerating a concurrent insert."""
        savepoint = self.session.begin_nested()
        try:
            account = StockAccount(
                account_key=PRINCIPAL_ACCOUNT_KEY,
                stock_initial=0,
                stock_current=0,
                last_alert_reference=0,
                alert_threshold_pct=self._alert_threshold_pct,
                initialized=False,
                created_by_id=actor_id,
            )
            self.session.add(account)
            self.session.flush()
            savepoint.commit()
            return account
        except IntegrityError:
            savepoint.rollback()
            logger.info("stock_account_creation_race")
            account = self._lock_account()
            if account is None:
                raise
            return account

    def _append(
        self,
        account: StockAccount,
        movement_type: MovementType,
        quantity: int,
        actor_id: UUID | None,
        *,
        tour_id: UUID | None = None,
        conflict_id: UUID | None = None,
        notes: str | None = None,
    ) -> MovementRecord:
        """Apply quantity to the locked account and log it."""
        account.stock_current += quantity
        if actor_id is not None:
            account.updated_by_id = actor_id

        record = MovementRecord(
            seq=self._sequence_service.next_value(SequenceService.CRATE_MOVEMENT),
            movement_type=movement_type.value,
            quantity=quantity,
            balance_after=account.stock_current,
            tour_id=tour_id,
            conflict_id=conflict_id,
            actor_id=actor_id,
            notes=notes,
            recorded_at=self._clock.now(),
        )
        self.session.add(record)
        self.session.flush()
        return record

    # ------------------------------------------------------------------
    # Setup
    # ------------------------------------------------------------------

    def is_initialized(self) -> bool:
        account = self.session.execute(
            select(StockAccount).where(StockAccount.account_key == PRINCIPAL_ACCOUNT_KEY)
        ).scalar_one_or_none()
        return bool(account is not None and account.initialized)

    def _reset_to(
        self,
        account: StockAccount,
        quantity: int,
        actor_id: UUID,
        notes: str,
    ) -> MovementRecord:
        # Signed delta keeps sum(quantity) == stock_current across resets
        record = self._append(
            account,
            MovementType.INITIALIZE,
            quantity - account.stock_current,
            actor_id,
            notes=notes,
        )
        account.stock_initial = quantity
        account.last_alert_reference = quantity
        account.initialized = True
        self.session.flush()
        return record

    def initialize(self, quantity: int, actor_id: UUID) -> StockAccount:
        """
        First-time setup of the stock account.

        Postconditions:
            stock_initial == stock_current == last_alert_reference == quantity
            and one INITIALIZE record with balance_after == quantity.

        Raises:
            InvalidQuantityError: quantity is negative or not an integer.
            AlreadyInitializedError: the account is already initialized.
        """
        quantity = require_non_negative_quantity(quantity)

        account = self._lock_account()
        if account is not None and account.initialized:
            raise AlreadyInitializedError(account.stock_current)
        if account is None:
            account = self._create_account(actor_id)
            if account.initialized:
                raise AlreadyInitializedError(account.stock_current)

        record = self._reset_to(account, quantity, actor_id, "Stock initialization")

        logger.info(
            "stock_initialized",
            extra={"quantity": quantity, "seq": record.seq},
        )
        return account

    def reinitialize(self, quantity: int, actor_id: UUID, reason: str) -> StockAccount:
        """
        Administrative reset of an initialized account to a counted quantity.

        The INITIALIZE record carries the signed difference between the new
        quantity and the current balance.
        """
        quantity = require_non_negative_quantity(quantity)
        reason = require_text(reason, "reason")

        account = self._require_initialized("reinitialize")
        previous = account.stock_current
        record = self._reset_to(
            account, quantity, actor_id, f"Stock re-initialization: {reason}"
        )

        logger.warning(
            "stock_reinitialized",
            extra={
                "previous_balance": previous,
                "quantity": quantity,
                "seq": record.seq,
                "reason": reason,
            },
        )
        return account

    # ------------------------------------------------------------------
    # Tour movements
    # ------------------------------------------------------------------

    def register_departure(
        self,
        tour_id: UUID,
        quantity: int,
        actor_id: UUID,
    ) -> StockAccount:
        """Debit the crates loaded on a departing tour."""
        quantity = require_positive_quantity(quantity)
        account = self._require_initialized("register a departure")

        record = self._append(
            account, MovementType.DEPART, -quantity, actor_id, tour_id=tour_id,
        )

        logger.info(
            "departure_registered",
            extra={
                "tour_id": str(tour_id),
                "quantity": quantity,
                "balance_after": record.balance_after,
                "seq": record.seq,
            },
        )
        return account

    def register_return(
        self,
        tour_id: UUID,
        quantity_departed: int,
        quantity_returned: int,
        actor_id: UUID,
    ) -> ReturnOutcome:
        """
        Credit the crates that came back from a tour.

        A surplus is logged as RETURN (the departed quantity) followed by
        SURPLUS (the excess).  A shortfall is only noted on the RETURN
        record: it is not debited here, the caller opens a conflict for it.
        """
        quantity_departed = require_non_negative_quantity(
            quantity_departed, "quantity_departed"
        )
        quantity_returned = require_non_negative_quantity(
            quantity_returned, "quantity_returned"
        )
        account = self._require_initialized("register a return")

        difference = quantity_departed - quantity_returned
        surplus = 0
        loss = 0

        if difference < 0:
            surplus = -difference
            self._append(
                account,
                MovementType.RETURN,
                quantity_departed,
                actor_id,
                tour_id=tour_id,
            )
            self._append(
                account,
                MovementType.SURPLUS,
                surplus,
                actor_id,
                tour_id=tour_id,
                notes=f"{surplus} surplus crates",
            )
        else:
            loss = difference
            self._append(
                account,
                MovementType.RETURN,
                quantity_returned,
                actor_id,
                tour_id=tour_id,
                notes=f"{loss} crates missing" if loss > 0 else None,
            )

        logger.info(
            "return_registered",
            extra={
                "tour_id": str(tour_id),
                "quantity_departed": quantity_departed,
                "quantity_returned": quantity_returned,
                "surplus": surplus,
                "loss": loss,
                "balance_after": account.stock_current,
            },
        )
        return ReturnOutcome(surplus=surplus, loss=loss)

    # ------------------------------------------------------------------
    # Conflict movements (called by ConflictSettlement)
    # ------------------------------------------------------------------

    def register_conflict_return(
        self,
        conflict_id: UUID,
        quantity: int,
        actor_id: UUID,
        notes: str | None = None,
    ) -> MovementRecord:
        """Credit crates recovered while settling a conflict."""
        quantity = require_positive_quantity(quantity)
        account = self._require_initialized("register a conflict return")

        record = self._append(
            account,
            MovementType.CONFLICT_RETURN,
            quantity,
            actor_id,
            conflict_id=conflict_id,
            notes=notes,
        )
        logger.info(
            "conflict_return_registered",
            extra={
                "conflict_id": str(conflict_id),
                "quantity": quantity,
                "balance_after": record.balance_after,
            },
        )
        return record

    def register_confirmed_loss(
        self,
        conflict_id: UUID,
        quantity_crates: int,
        amount_paid: Decimal,
        actor_id: UUID,
        notes: str | None = None,
    ) -> MovementRecord:
        """
        Audit-only record of crates paid for instead of returned.

        Quantity is 0: the crates already left the balance when the tour
        came back short.  The account is still locked so the record takes
        its place in the movement order.
        """
        quantity_crates = require_non_negative_quantity(quantity_crates, "quantity_crates")
        amount_paid = require_positive_amount(amount_paid, "amount_paid")
        account = self._require_initialized("register a confirmed loss")

        text = (
            f"Payment {format_money(amount_paid)} {self._currency} "
            f"for {quantity_crates} crates."
        )
        if notes:
            text = f"{text} {notes}"

        record = self._append(
            account,
            MovementType.CONFLICT_LOSS_CONFIRMED,
            0,
            actor_id,
            conflict_id=conflict_id,
            notes=text,
        )
        logger.info(
            "confirmed_loss_registered",
            extra={
                "conflict_id": str(conflict_id),
                "quantity_crates": quantity_crates,
                "amount_paid": amount_paid,
            },
        )
        return record

    # ------------------------------------------------------------------
    # Administrative movements
    # ------------------------------------------------------------------

    def adjust(self, delta: int, actor_id: UUID, reason: str) -> StockAccount:
        """Manual correction; the only movement without a physical event."""
        reason = require_text(reason, "reason")
        delta = require_non_zero_quantity(delta, "delta")
        account = self._require_initialized("adjust the stock")

        record = self._append(
            account, MovementType.ADJUSTMENT, delta, actor_id, notes=reason,
        )
        logger.warning(
            "stock_adjusted",
            extra={
                "delta": delta,
                "reason": reason,
                "balance_after": record.balance_after,
            },
        )
        return account

    def purchase(
        self,
        quantity: int,
        actor_id: UUID,
        notes: str | None = None,
    ) -> StockAccount:
        """
        Add newly bought crates.

        Grows stock_initial as well and moves the alert reference to the
        new balance.
        """
        quantity = require_positive_quantity(quantity)
        account = self._require_initialized("register a purchase")

        record = self._append(
            account,
            MovementType.PURCHASE,
            quantity,
            actor_id,
            notes=notes or f"Purchase of {quantity} new crates",
        )
        account.stock_initial += quantity
        account.last_alert_reference = account.stock_current
        self.session.flush()

        logger.info(
            "purchase_registered",
            extra={"quantity": quantity, "balance_after": record.balance_after},
        )
        return account

    def reset_alert_reference(self, actor_id: UUID | None = None) -> StockAccount:
        """Acknowledge the alert: measure drawdown from the current balance."""
        account = self._require_initialized("reset the alert reference")
        account.last_alert_reference = account.stock_current
        if actor_id is not None:
            account.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "alert_reference_reset",
            extra={"alert_reference": account.last_alert_reference},
        )
        return account

    def set_alert_threshold(self, pct: Decimal | int, actor_id: UUID) -> StockAccount:
        """
        Change the drawdown percentage that raises the alert.

        The stored threshold is the one reads use, so the change applies
        immediately.  The alert reference is left where it is.
        """
        threshold = require_percentage(pct)
        account = self._require_initialized("set the alert threshold")
        previous = Decimal(account.alert_threshold_pct)
        account.alert_threshold_pct = threshold
        account.updated_by_id = actor_id
        self.session.flush()

        logger.info(
            "alert_threshold_set",
            extra={
                "previous_pct": str(previous),
                "alert_threshold_pct": str(threshold),
            },
        )
        return account
