"""
Tests for StockAggregator: the composite stock view and the movement log.
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from crate_kernel.domain.dtos import StockState
from crate_kernel.models.conflict import ConflictStatus, PaymentMode
from crate_kernel.models.stock import MovementType
from crate_kernel.models.tour import TourStatus
from crate_kernel.selectors.stock_aggregator import (
    StockAggregator,
    alert_message,
    drawdown_pct,
)


class TestDrawdown:

    def test_drawdown(self):
        assert drawdown_pct(1000, 850) == Decimal("15")

    def test_zero_reference(self):
        assert drawdown_pct(0, -5) == Decimal("0")

    def test_growth_is_negative_drawdown(self):
        assert drawdown_pct(100, 120) < 0

    def test_alert_message_rounds_to_one_place(self):
        assert alert_message(Decimal("12.345")) == "Stock down 12.3% since last check"
        assert alert_message(Decimal("12.35")) == "Stock down 12.4% since last check"


class TestStockState:

    def test_uninitialized(self, session):
        state = StockAggregator(session).get_state()

        assert state == StockState.not_initialized(Decimal("10"))
        assert state.initialized is False
        assert state.stock_current == 0
        assert state.alert_active is False

    def test_initialized_without_activity(self, initialized_ledger, session):
        state = StockAggregator(session).get_state()

        assert state.initialized
        assert state.stock_initial == 1000
        assert state.stock_current == state.stock_available == 1000
        assert state.stock_in_transit == 0
        assert state.stock_lost_to_date == 0
        assert state.drawdown_pct == Decimal("0")
        assert state.alert_message is None

    def test_in_transit_counts_active_tours_only(self, initialized_ledger, session, make_tour):
        make_tour(TourStatus.IN_TOUR, crates_departed=40)
        make_tour(TourStatus.AWAITING_UNLOADING, crates_departed=30, crates_returned=25)
        make_tour(TourStatus.AWAITING_HYGIENE, crates_departed=10, crates_returned=10)
        make_tour(TourStatus.COMPLETED, crates_departed=60, crates_returned=50)
        make_tour(TourStatus.PREPARATION, crates_departed=20)

        assert StockAggregator(session).get_state().stock_in_transit == 45

    def test_in_transit_statuses_are_configurable(self, initialized_ledger, session, make_tour):
        make_tour(TourStatus.IN_TOUR, crates_departed=40)
        make_tour(TourStatus.AWAITING_UNLOADING, crates_departed=30)

        aggregator = StockAggregator(session, active_tour_statuses=["in_tour"])
        assert aggregator.get_state().stock_in_transit == 40

    def test_lost_to_date_counts_resolved_conflicts(
        self, initialized_ledger, settlement, make_conflict, close_conflict_externally, session, test_actor_id
    ):
        paid_off = make_conflict(quantity_lost=5)
        settlement.register_crate_return(paid_off.id, 2, test_actor_id)
        settlement.register_payment(paid_off.id, Decimal("150"), PaymentMode.CASH, test_actor_id)

        returned = make_conflict(quantity_lost=3)
        settlement.register_crate_return(returned.id, 3, test_actor_id)

        make_conflict(quantity_lost=7)
        close_conflict_externally(make_conflict(quantity_lost=4), ConflictStatus.CANCELLED)

        assert StockAggregator(session).get_state().stock_lost_to_date == 3

    def test_alert_after_drawdown(self, initialized_ledger, session, test_actor_id):
        initialized_ledger.register_departure(uuid4(), 100, test_actor_id)

        state = StockAggregator(session).get_state()
        assert state.drawdown_pct == Decimal("10")
        assert state.alert_active
        assert state.alert_message == "Stock down 10.0% since last check"

    def test_no_alert_below_threshold(self, initialized_ledger, session, test_actor_id):
        initialized_ledger.register_departure(uuid4(), 99, test_actor_id)
        assert not StockAggregator(session).get_state().alert_active

    def test_stored_threshold_is_used(self, initialized_ledger, session, test_actor_id):
        initialized_ledger.register_departure(uuid4(), 100, test_actor_id)

        # the account was seeded at 10%; a different read default has no effect
        aggregator = StockAggregator(session, alert_threshold_pct=Decimal("50"))
        assert aggregator.get_state().alert_active

    def test_reset_reference_clears_alert(self, initialized_ledger, session, test_actor_id):
        initialized_ledger.register_departure(uuid4(), 200, test_actor_id)
        initialized_ledger.reset_alert_reference(test_actor_id)

        state = StockAggregator(session).get_state()
        assert state.alert_reference == 800
        assert not state.alert_active


class TestListMovements:

    @pytest.fixture
    def history(self, initialized_ledger, test_actor_id):
        tour_id = uuid4()
        initialized_ledger.register_departure(tour_id, 10, test_actor_id)
        initialized_ledger.register_return(tour_id, 10, 12, test_actor_id)
        initialized_ledger.adjust(-1, test_actor_id, "broken")
        return initialized_ledger

    def test_newest_first(self, history, session):
        movements = StockAggregator(session).list_movements()

        assert [m.movement_type for m in movements] == [
            "adjustment", "surplus", "return", "depart", "initialize",
        ]
        assert movements[0].balance_after == 1001

    def test_filter_by_type(self, history, session):
        movements = StockAggregator(session).list_movements(MovementType.SURPLUS)
        assert len(movements) == 1
        assert movements[0].quantity == 2

    def test_filter_accepts_string(self, history, session):
        assert len(StockAggregator(session).list_movements("depart")) == 1

    def test_unknown_type_rejected(self, history, session):
        with pytest.raises(ValueError):
            StockAggregator(session).list_movements("teleport")

    def test_limit(self, history, session):
        movements = StockAggregator(session).list_movements(limit=2)
        assert [m.movement_type for m in movements] == ["adjustment", "surplus"]
