"""
Unit tests for policy, clock and DTO invariants.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from crate_kernel.domain.clock import DeterministicClock, SystemClock
from crate_kernel.domain.dtos import (
    AccountSnapshot,
    ConflictOpened,
    ReturnOutcome,
    StockState,
)
from crate_kernel.domain.policy import DEFAULT_ACTIVE_TOUR_STATUSES, LedgerPolicy
from crate_kernel.domain.settlement import compute_conflict_state
from crate_kernel.models.tour import TourStatus


class TestLedgerPolicy:

    def test_defaults(self):
        policy = LedgerPolicy()
        assert policy.unit_value == Decimal("50")
        assert policy.currency == "TND"
        assert policy.alert_threshold_pct == Decimal("10")
        assert policy.payment_tolerance == Decimal("0.01")
        assert policy.active_tour_statuses == DEFAULT_ACTIVE_TOUR_STATUSES
        assert policy.max_transaction_retries == 3

    def test_active_statuses_are_tour_statuses(self):
        known = {status.value for status in TourStatus}
        assert set(DEFAULT_ACTIVE_TOUR_STATUSES) <= known
        assert TourStatus.COMPLETED.value not in DEFAULT_ACTIVE_TOUR_STATUSES

    @pytest.mark.parametrize(
        "kwargs",
        [
            {"unit_value": Decimal("0")},
            {"unit_value": Decimal("-5")},
            {"alert_threshold_pct": Decimal("-1")},
            {"payment_tolerance": Decimal("-0.01")},
            {"max_transaction_retries": -1},
        ],
    )
    def test_invalid_values_rejected(self, kwargs):
        with pytest.raises(ValueError):
            LedgerPolicy(**kwargs)


class TestClock:

    def test_deterministic_clock_is_stable(self):
        clock = DeterministicClock()
        assert clock.now() == clock.now()
        assert clock.now().tzinfo is not None

    def test_tick_and_advance(self):
        clock = DeterministicClock()
        start = clock.now()
        assert clock.tick() == start + timedelta(seconds=1)
        clock.advance(59)
        assert clock.now() == start + timedelta(minutes=1)

    def test_set_time_resets_advance(self):
        clock = DeterministicClock()
        clock.advance(10)
        target = datetime(2026, 3, 1, tzinfo=timezone.utc)
        clock.set_time(target)
        assert clock.now() == target

    def test_system_clock_is_utc(self):
        assert SystemClock().now_utc().utcoffset() == timedelta(0)


class TestReturnOutcome:

    def test_surplus_and_loss_exclusive(self):
        with pytest.raises(ValueError):
            ReturnOutcome(surplus=1, loss=1)

    def test_from_dict(self):
        outcome = ReturnOutcome(surplus=0, loss=5)
        assert ReturnOutcome.from_dict(outcome.to_dict()) == outcome


class TestSnapshots:

    def test_account_snapshot_from_dict(self):
        snapshot = AccountSnapshot(
            initialized=True,
            stock_initial=1000,
            stock_current=950,
            last_alert_reference=1000,
            alert_threshold_pct=Decimal("10"),
        )
        data = snapshot.to_dict()
        assert data["alert_threshold_pct"] == "10"
        assert AccountSnapshot.from_dict(data) == snapshot

    def test_conflict_opened_from_dict(self):
        opened = ConflictOpened(
            conflict_id=uuid4(),
            quantity_lost=5,
            state=compute_conflict_state(5, 0, Decimal("0"), Decimal("50")),
        )
        assert ConflictOpened.from_dict(opened.to_dict()) == opened

    def test_not_initialized_state(self):
        state = StockState.not_initialized(Decimal("10"))
        assert state.initialized is False
        assert state.stock_current == 0
        assert state.alert_active is False
        assert state.alert_message is None
        assert state.alert_threshold_pct == Decimal("10")
