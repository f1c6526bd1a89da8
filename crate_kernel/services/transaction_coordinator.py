"""
TransactionCoordinator -- one transaction per public operation.

Responsibility:
    The function-call surface of the crate kernel.  Each public method opens
    a session, runs the ledger and settlement services in it, commits on
    success and rolls back on any exception.  A settlement action and the
    stock movement it causes therefore commit together or not at all.

Architecture position:
    Kernel > Services -- imperative shell, owns transaction boundaries.
    Sits above MovementLedger, ConflictSettlement, StockAggregator,
    ConflictSelector and LedgerAuditor.

Invariants enforced:
    - Atomicity: services only flush; this class is the only place that
      commits or rolls back.
    - Idempotency: a mutating call carrying a client idempotency key stores
      its result under that key in the same transaction.  A replay with the
      same arguments returns the stored result without touching the ledger;
      a replay with different arguments raises IdempotencyKeyReuseError.
    - Retry discipline: transient failures (deadlock, serialization
      failure, SQLite busy, lock timeout) are retried a bounded
      number of times, and only for read-only calls or keyed mutating calls.
      Domain errors are never retried.

Failure modes:
    - Every CrateKernelError raised by the services propagates unchanged
      after rollback.
    - OperationalError / IntegrityError propagate once the retry budget
      is exhausted (or immediately for unkeyed mutating calls).

Audit relevance:
    Every call is logged with operation, actor_id, correlation_id and
    duration; rejected calls log the error code.
"""

from __future__ import annotations

import time
from collections.abc import Callable
from decimal import Decimal
from typing import Any, TypeVar
from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import Session, sessionmaker

from crate_kernel.domain.clock import Clock, SystemClock
from crate_kernel.domain.dtos import (
    AccountSnapshot,
    ConflictOpened,
    ConflictView,
    LedgerAuditReport,
    MovementView,
    ReturnOutcome,
    StockState,
)
from crate_kernel.domain.policy import LedgerPolicy
from crate_kernel.domain.settlement import SettlementResult
from crate_kernel.exceptions import CrateKernelError, IdempotencyKeyReuseError
from crate_kernel.logging_config import bind_context, current_context, get_logger
from crate_kernel.models.conflict import PaymentMode
from crate_kernel.models.idempotency import IdempotencyRecord
from crate_kernel.models.stock import MovementType
from crate_kernel.selectors.conflict_selector import ConflictSelector
from crate_kernel.selectors.stock_aggregator import DEFAULT_MOVEMENT_LIMIT, StockAggregator
from crate_kernel.services.conflict_settlement import ConflictSettlement
from crate_kernel.services.ledger_auditor import LedgerAuditor
from crate_kernel.services.movement_ledger import MovementLedger
from crate_kernel.utils.hashing import hash_request
from crate_kernel.utils.idempotency import generate_idempotency_key

logger = get_logger("services.transaction_coordinator")

T = TypeVar("T")

# Fragments of driver messages that mean "try the transaction again"
_TRANSIENT_MARKERS = (
    "deadlock detected",
    "could not serialize access",
    "database is locked",
    "lock timeout",
)


def is_transient_error(exc: BaseException, keyed: bool = False) -> bool:
    """
    Whether a failed transaction may be re-run.

    IntegrityError counts only for keyed calls: two first uses of the same
    idempotency key race on its unique constraint, and the retry finds the
    winner's stored result.
    """
    if isinstance(exc, OperationalError):
        message = str(exc.orig if exc.orig is not None else exc).lower()
        return any(marker in message for marker in _TRANSIENT_MARKERS)
    if keyed and isinstance(exc, IntegrityError):
        return True
    return False


def _to_response(result: Any) -> dict[str, Any] | None:
    if result is None:
        return None
    return result.to_dict()


class TransactionCoordinator:
    """
    Transactional entry point for the crate ledger.

    Contract:
        Every public method is one transaction.  Results are frozen DTOs;
        no ORM instance escapes a call.

    Usage:
        coordinator = TransactionCoordinator(get_session_factory(), policy)
        coordinator.initialize(1000, actor_id)
        coordinator.register_departure(tour_id, 50, actor_id)
        outcome = coordinator.register_return(tour_id, 50, 45, actor_id)
    """

    def __init__(
        self,
        session_factory: sessionmaker[Session] | Callable[[], Session],
        policy: LedgerPolicy | None = None,
        clock: Clock | None = None,
        policy_provider: Callable[[], LedgerPolicy] | None = None,
        retry_backoff_seconds: float = 0.05,
    ):
        self._session_factory = session_factory
        self._fixed_policy = policy or LedgerPolicy()
        self._policy_provider = policy_provider
        self._clock = clock or SystemClock()
        self._retry_backoff_seconds = retry_backoff_seconds

    # ------------------------------------------------------------------
    # Transaction machinery
    # ------------------------------------------------------------------

    def _policy(self) -> LedgerPolicy:
        # Read once per call, before the transaction opens
        if self._policy_provider is not None:
            return self._policy_provider()
        return self._fixed_policy

    def _ledger(self, session: Session, policy: LedgerPolicy) -> MovementLedger:
        return MovementLedger(
            session,
            self._clock,
            alert_threshold_pct=policy.alert_threshold_pct,
            currency=policy.currency,
        )

    def _settlement(self, session: Session, policy: LedgerPolicy) -> ConflictSettlement:
        return ConflictSettlement(
            session,
            self._ledger(session, policy),
            policy.unit_value,
            self._clock,
            tolerance=policy.payment_tolerance,
            currency=policy.currency,
        )

    def _run_keyed(
        self,
        session: Session,
        policy: LedgerPolicy,
        operation: str,
        key: str,
        request_hash: str,
        work: Callable[[Session, LedgerPolicy], T],
        result_type: type | None,
    ) -> T:
        existing = session.execute(
            select(IdempotencyRecord).where(IdempotencyRecord.key == key)
        ).scalar_one_or_none()

        if existing is not None:
            if existing.request_hash != request_hash:
                raise IdempotencyKeyReuseError(key, existing.request_hash, request_hash)
            logger.info("idempotent_replay", extra={"stored_key": key})
            if existing.response is None or result_type is None:
                return None
            return result_type.from_dict(existing.response)

        result = work(session, policy)
        session.add(
            IdempotencyRecord(
                key=key,
                operation=operation,
                request_hash=request_hash,
                response=_to_response(result),
                recorded_at=self._clock.now(),
            )
        )
        session.flush()
        return result

    def _execute(
        self,
        operation: str,
        work: Callable[[Session, LedgerPolicy], T],
        *,
        read_only: bool = False,
        actor_id: UUID | None = None,
        idempotency_key: str | None = None,
        request: dict[str, Any] | None = None,
        result_type: type | None = None,
        context: dict[str, Any] | None = None,
    ) -> T:
        policy = self._policy()
        keyed = idempotency_key is not None
        stored_key = generate_idempotency_key(operation, idempotency_key) if keyed else None
        request_hash = hash_request(operation, request or {}) if keyed else None

        retryable = read_only or keyed
        attempts = 1 + (policy.max_transaction_retries if retryable else 0)
        correlation_id = current_context().get("correlation_id") or str(uuid4())

        with bind_context(
            correlation_id=correlation_id,
            operation=operation,
            actor_id=actor_id,
            idempotency_key=stored_key,
            **(context or {}),
        ):
            for attempt in range(1, attempts + 1):
                t0 = time.monotonic()
                session = self._session_factory()
                try:
                    if keyed:
                        result = self._run_keyed(
                            session, policy, operation, stored_key,
                            request_hash, work, result_type,
                        )
                    else:
                        result = work(session, policy)
                    session.commit()
                    if not read_only:
                        logger.info(
                            "operation_committed",
                            extra={
                                "attempt": attempt,
                                "duration_ms": round((time.monotonic() - t0) * 1000, 2),
                            },
                        )
                    return result
                except CrateKernelError as exc:
                    session.rollback()
                    logger.warning(
                        "operation_rejected",
                        extra={"error_code": exc.code, "error": str(exc)},
                    )
                    raise
                except Exception as exc:
                    session.rollback()
                    if attempt < attempts and is_transient_error(exc, keyed):
                        self._log_retry(attempt, exc)
                        continue
                    logger.error(
                        "operation_failed",
                        extra={"attempt": attempt},
                        exc_info=True,
                    )
                    raise
                finally:
                    session.close()

        raise AssertionError("unreachable: retry loop exited without result")

    def _log_retry(self, attempt: int, exc: BaseException) -> None:
        delay = min(self._retry_backoff_seconds * (2 ** (attempt - 1)), 1.0)
        logger.warning(
            "transaction_retry",
            extra={
                "attempt": attempt,
                "error_type": type(exc).__name__,
                "delay_s": delay,
            },
        )
        if delay > 0:
            time.sleep(delay)

    # ------------------------------------------------------------------
    # Ledger operations
    # ------------------------------------------------------------------

    def initialize(
        self,
        quantity: int,
        actor_id: UUID,
        idempotency_key: str | None = None,
    ) -> AccountSnapshot:
        def work(session: Session, policy: LedgerPolicy) -> AccountSnapshot:
            account = self._ledger(session, policy).initialize(quantity, actor_id)
            return AccountSnapshot.from_model(account)

        return self._execute(
            "initialize", work,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            request={"quantity": quantity, "actor_id": actor_id},
            result_type=AccountSnapshot,
        )

    def reinitialize(
        self,
        quantity: int,
        actor_id: UUID,
        reason: str,
        idempotency_key: str | None = None,
    ) -> AccountSnapshot:
        def work(session: Session, policy: LedgerPolicy) -> AccountSnapshot:
            account = self._ledger(session, policy).reinitialize(quantity, actor_id, reason)
            return AccountSnapshot.from_model(account)

        return self._execute(
            "reinitialize", work,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            request={"quantity": quantity, "actor_id": actor_id, "reason": reason},
            result_type=AccountSnapshot,
        )

    def register_departure(
        self,
        tour_id: UUID,
        quantity: int,
        actor_id: UUID,
        idempotency_key: str | None = None,
    ) -> AccountSnapshot:
        def work(session: Session, policy: LedgerPolicy) -> AccountSnapshot:
            account = self._ledger(session, policy).register_departure(
                tour_id, quantity, actor_id
            )
            return AccountSnapshot.from_model(account)

        return self._execute(
            "register_departure", work,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            request={"tour_id": tour_id, "quantity": quantity, "actor_id": actor_id},
            result_type=AccountSnapshot,
            context={"tour_id": tour_id},
        )

    def register_return(
        self,
        tour_id: UUID,
        quantity_departed: int,
        quantity_returned: int,
        actor_id: UUID,
        idempotency_key: str | None = None,
    ) -> ReturnOutcome:
        def work(session: Session, policy: LedgerPolicy) -> ReturnOutcome:
            return self._ledger(session, policy).register_return(
                tour_id, quantity_departed, quantity_returned, actor_id
            )

        return self._execute(
            "register_return", work,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            request={
                "tour_id": tour_id,
                "quantity_departed": quantity_departed,
                "quantity_returned": quantity_returned,
                "actor_id": actor_id,
            },
            result_type=ReturnOutcome,
            context={"tour_id": tour_id},
        )

    def adjust(
        self,
        delta: int,
        actor_id: UUID,
        reason: str,
        idempotency_key: str | None = None,
    ) -> AccountSnapshot:
        def work(session: Session, policy: LedgerPolicy) -> AccountSnapshot:
            account = self._ledger(session, policy).adjust(delta, actor_id, reason)
            return AccountSnapshot.from_model(account)

        return self._execute(
            "adjust", work,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            request={"delta": delta, "actor_id": actor_id, "reason": reason},
            result_type=AccountSnapshot,
        )

    def purchase(
        self,
        quantity: int,
        actor_id: UUID,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> AccountSnapshot:
        def work(session: Session, policy: LedgerPolicy) -> AccountSnapshot:
            account = self._ledger(session, policy).purchase(quantity, actor_id, notes)
            return AccountSnapshot.from_model(account)

        return self._execute(
            "purchase", work,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            request={"quantity": quantity, "actor_id": actor_id, "notes": notes},
            result_type=AccountSnapshot,
        )

    def reset_alert_reference(self, actor_id: UUID | None = None) -> AccountSnapshot:
        def work(session: Session, policy: LedgerPolicy) -> AccountSnapshot:
            account = self._ledger(session, policy).reset_alert_reference(actor_id)
            return AccountSnapshot.from_model(account)

        return self._execute("reset_alert_reference", work, actor_id=actor_id)

    def set_alert_threshold(
        self,
        pct: Decimal | int,
        actor_id: UUID,
        idempotency_key: str | None = None,
    ) -> AccountSnapshot:
        def work(session: Session, policy: LedgerPolicy) -> AccountSnapshot:
            account = self._ledger(session, policy).set_alert_threshold(pct, actor_id)
            return AccountSnapshot.from_model(account)

        return self._execute(
            "set_alert_threshold", work,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            request={"alert_threshold_pct": pct, "actor_id": actor_id},
            result_type=AccountSnapshot,
        )

    # ------------------------------------------------------------------
    # Conflict operations
    # ------------------------------------------------------------------

    def open_conflict(
        self,
        tour_id: UUID | None,
        quantity_lost: int,
        actor_id: UUID,
        idempotency_key: str | None = None,
    ) -> ConflictOpened:
        def work(session: Session, policy: LedgerPolicy) -> ConflictOpened:
            return self._settlement(session, policy).open_conflict(
                tour_id, quantity_lost, actor_id
            )

        return self._execute(
            "open_conflict", work,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            request={"tour_id": tour_id, "quantity_lost": quantity_lost, "actor_id": actor_id},
            result_type=ConflictOpened,
            context={"tour_id": tour_id},
        )

    def register_crate_return(
        self,
        conflict_id: UUID,
        quantity: int,
        actor_id: UUID,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> SettlementResult:
        def work(session: Session, policy: LedgerPolicy) -> SettlementResult:
            return self._settlement(session, policy).register_crate_return(
                conflict_id, quantity, actor_id, notes
            )

        return self._execute(
            "register_crate_return", work,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            request={
                "conflict_id": conflict_id,
                "quantity": quantity,
                "actor_id": actor_id,
                "notes": notes,
            },
            result_type=SettlementResult,
            context={"conflict_id": conflict_id},
        )

    def register_payment(
        self,
        conflict_id: UUID,
        amount: Decimal,
        payment_mode: PaymentMode | str,
        actor_id: UUID,
        notes: str | None = None,
        idempotency_key: str | None = None,
    ) -> SettlementResult:
        def work(session: Session, policy: LedgerPolicy) -> SettlementResult:
            return self._settlement(session, policy).register_payment(
                conflict_id, amount, payment_mode, actor_id, notes
            )

        return self._execute(
            "register_payment", work,
            actor_id=actor_id,
            idempotency_key=idempotency_key,
            request={
                "conflict_id": conflict_id,
                "amount": amount,
                "payment_mode": payment_mode,
                "actor_id": actor_id,
                "notes": notes,
            },
            result_type=SettlementResult,
            context={"conflict_id": conflict_id},
        )

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_stock_state(self) -> StockState:
        def work(session: Session, policy: LedgerPolicy) -> StockState:
            return StockAggregator(
                session,
                active_tour_statuses=policy.active_tour_statuses,
                alert_threshold_pct=policy.alert_threshold_pct,
            ).get_state()

        return self._execute("get_stock_state", work, read_only=True)

    def is_initialized(self) -> bool:
        def work(session: Session, policy: LedgerPolicy) -> bool:
            return self._ledger(session, policy).is_initialized()

        return self._execute("is_initialized", work, read_only=True)

    def list_movements(
        self,
        movement_type: MovementType | str | None = None,
        limit: int = DEFAULT_MOVEMENT_LIMIT,
    ) -> list[MovementView]:
        def work(session: Session, policy: LedgerPolicy) -> list[MovementView]:
            return StockAggregator(session).list_movements(movement_type, limit)

        return self._execute("list_movements", work, read_only=True)

    def get_conflict(self, conflict_id: UUID) -> ConflictView:
        def work(session: Session, policy: LedgerPolicy) -> ConflictView:
            return ConflictSelector(session, policy.unit_value).get_conflict_with_state(
                conflict_id
            )

        return self._execute(
            "get_conflict", work, read_only=True, context={"conflict_id": conflict_id},
        )

    def list_open_conflicts(self, tour_id: UUID | None = None) -> list[ConflictView]:
        def work(session: Session, policy: LedgerPolicy) -> list[ConflictView]:
            return ConflictSelector(session, policy.unit_value).list_open_conflicts(tour_id)

        return self._execute("list_open_conflicts", work, read_only=True)

    def verify_ledger(self) -> LedgerAuditReport:
        def work(session: Session, policy: LedgerPolicy) -> LedgerAuditReport:
            return LedgerAuditor(session).verify()

        return self._execute("verify_ledger", work, read_only=True)
