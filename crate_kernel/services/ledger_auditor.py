"""
LedgerAuditor -- replays the movement log against the stock account.

Responsibility:
    Walks every MovementRecord in seq order and checks that the chain of
    balance snapshots is unbroken and that the account balance is exactly
    what the log explains.

Architecture position:
    Kernel > Services.  Read-only; lives with the services because its
    failure is an integrity alarm, not a report.

Checks:
    1. balance_after[0] == quantity[0]
    2. balance_after[n] == balance_after[n-1] + quantity[n]
    3. stock_current == balance_after[last] == sum(quantity)
    4. An uninitialized (or missing) account has no movements.

Failure modes:
    - LedgerInconsistencyError on the first broken check, logged at
      CRITICAL.
"""

from sqlalchemy import select
from sqlalchemy.orm import Session

from crate_kernel.domain.dtos import LedgerAuditReport
from crate_kernel.exceptions import LedgerInconsistencyError
from crate_kernel.logging_config import get_logger
from crate_kernel.models.stock import PRINCIPAL_ACCOUNT_KEY, MovementRecord, StockAccount

logger = get_logger("services.ledger_auditor")


class LedgerAuditor:
    """Verifies the ledger consistency and audit-trail invariants."""

    def __init__(self, session: Session):
        self._session = session

    def _fail(self, seq: int | None, expected: int, actual: int, reason: str):
        error = LedgerInconsistencyError(seq, expected, actual, reason)
        logger.critical(
            "ledger_inconsistent",
            extra={"seq": seq, "expected": expected, "actual": actual, "reason": reason},
        )
        raise error

    def verify(self) -> LedgerAuditReport:
        """
        Verify the whole movement chain.

        Returns:
            LedgerAuditReport when every check passes.

        Raises:
            LedgerInconsistencyError: On the first broken check.
        """
        account = self._session.execute(
            select(StockAccount).where(StockAccount.account_key == PRINCIPAL_ACCOUNT_KEY)
        ).scalar_one_or_none()

        movements = self._session.execute(
            select(MovementRecord).order_by(MovementRecord.seq)
        ).scalars().all()

        stock_current = account.stock_current if account is not None else 0

        if account is None or not account.initialized:
            if movements:
                self._fail(movements[0].seq, 0, len(movements), "movements on an uninitialized account")
            return LedgerAuditReport(movement_count=0, movement_sum=0, stock_current=stock_current)

        running = 0
        for movement in movements:
            running += movement.quantity
            if movement.balance_after != running:
                self._fail(movement.seq, running, movement.balance_after, "balance_after breaks the chain")

        if running != stock_current:
            last_seq = movements[-1].seq if movements else None
            self._fail(last_seq, running, stock_current, "account balance differs from the movement sum")

        report = LedgerAuditReport(
            movement_count=len(movements),
            movement_sum=running,
            stock_current=stock_current,
        )
        logger.info(
            "ledger_verified",
            extra={"movement_count": report.movement_count, "stock_current": stock_current},
        )
        return report
