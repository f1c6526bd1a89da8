"""
Module: crate_kernel.selectors.stock_aggregator
Responsibility: Composite, read-only view of the crate stock: on-hand
    balance from the stock account, crates on the road from live tour data,
    crates lost to date from resolved conflicts, and the drawdown alert.
Architecture position: Kernel > Selectors.

Invariants enforced:
    - Pure projection: no writes, no locks.
    - An uninitialized or missing account yields StockState.not_initialized()
      rather than an error.
    - drawdown_pct = (alert_reference - stock_current) / alert_reference * 100,
      0 when the reference is 0.  The alert is active when
      drawdown_pct >= alert_threshold_pct.

Failure modes:
    - None beyond database errors.
"""

from collections.abc import Iterable
from decimal import ROUND_HALF_UP, Decimal

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from crate_kernel.domain.dtos import MovementView, StockState
from crate_kernel.domain.policy import DEFAULT_ACTIVE_TOUR_STATUSES
from crate_kernel.models.conflict import Conflict, ConflictStatus
from crate_kernel.models.stock import (
    PRINCIPAL_ACCOUNT_KEY,
    MovementRecord,
    MovementType,
    StockAccount,
)
from crate_kernel.models.tour import Tour
from crate_kernel.selectors.base import BaseSelector

DEFAULT_MOVEMENT_LIMIT = 50


def drawdown_pct(alert_reference: int, stock_current: int) -> Decimal:
    """Percentage drop of the balance since the alert reference."""
    if alert_reference <= 0:
        return Decimal("0")
    return Decimal(alert_reference - stock_current) / Decimal(alert_reference) * 100


def alert_message(drawdown: Decimal) -> str:
    one_place = drawdown.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)
    return f"Stock down {one_place}% since last check"


class StockAggregator(BaseSelector):
    """Read path for the aggregated stock state and the movement log."""

    def __init__(
        self,
        session: Session,
        active_tour_statuses: Iterable[str] = DEFAULT_ACTIVE_TOUR_STATUSES,
        alert_threshold_pct: Decimal = Decimal("10"),
    ):
        super().__init__(session)
        self._active_tour_statuses = tuple(active_tour_statuses)
        self._alert_threshold_pct = Decimal(alert_threshold_pct)

    def _account(self) -> StockAccount | None:
        return self.session.execute(
            select(StockAccount).where(StockAccount.account_key == PRINCIPAL_ACCOUNT_KEY)
        ).scalar_one_or_none()

    def stock_in_transit(self) -> int:
        """Crates departed and not yet back, over tours in an active status."""
        total = self.session.execute(
            select(
                func.coalesce(
                    func.sum(
                        Tour.crates_departed - func.coalesce(Tour.crates_returned, 0)
                    ),
                    0,
                )
            ).where(Tour.status.in_(self._active_tour_statuses))
        ).scalar_one()
        return int(total)

    def stock_lost_to_date(self) -> int:
        """Part of resolved losses that was settled by payment, not returned."""
        total = self.session.execute(
            select(
                func.coalesce(
                    func.sum(Conflict.quantity_lost - Conflict.quantity_returned),
                    0,
                )
            ).where(Conflict.status == ConflictStatus.RESOLVED.value)
        ).scalar_one()
        return int(total)

    def get_state(self) -> StockState:
        account = self._account()
        if account is None or not account.initialized:
            threshold = (
                Decimal(account.alert_threshold_pct)
                if account is not None
                else self._alert_threshold_pct
            )
            return StockState.not_initialized(threshold)

        threshold = Decimal(account.alert_threshold_pct)
        drawdown = drawdown_pct(account.last_alert_reference, account.stock_current)
        active = drawdown >= threshold

        return StockState(
            initialized=True,
            stock_initial=account.stock_initial,
            stock_current=account.stock_current,
            stock_available=account.stock_current,
            stock_in_transit=self.stock_in_transit(),
            stock_lost_to_date=self.stock_lost_to_date(),
            alert_reference=account.last_alert_reference,
            alert_threshold_pct=threshold,
            drawdown_pct=drawdown,
            alert_active=active,
            alert_message=alert_message(drawdown) if active else None,
        )

    def list_movements(
        self,
        movement_type: MovementType | str | None = None,
        limit: int = DEFAULT_MOVEMENT_LIMIT,
    ) -> list[MovementView]:
        """Most recent movements first, optionally of a single type."""
        stmt = select(MovementRecord)
        if movement_type is not None:
            stmt = stmt.where(
                MovementRecord.movement_type == MovementType(movement_type).value
            )
        stmt = stmt.order_by(MovementRecord.seq.desc()).limit(limit)

        return [
            MovementView.from_model(record)
            for record in self.session.execute(stmt).scalars()
        ]
