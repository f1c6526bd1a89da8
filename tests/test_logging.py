"""
Tests for the JSON log lines the ledger writes (crate_kernel/logging_config.py).

The assertions are on real ledger events: what a departure, a rejected call,
a refused settlement and a failed transaction look like in the log.
"""

import json
import logging
from io import StringIO
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from crate_kernel.exceptions import ExceedsRemainingError
from crate_kernel.logging_config import (
    JsonLineFormatter,
    bind_context,
    configure_logging,
    current_context,
    get_logger,
)
from crate_kernel.services.movement_ledger import MovementLedger


def _events(captured_logs, message: str) -> list[dict]:
    return [r for r in captured_logs() if r["message"] == message]


class TestLedgerEvents:

    def test_departure_line(self, initialized_ledger, test_actor_id, captured_logs):
        tour_id = uuid4()
        initialized_ledger.register_departure(tour_id, 40, test_actor_id)

        [line] = _events(captured_logs, "departure_registered")
        assert line["level"] == "INFO"
        assert line["logger"] == "crate_kernel.services.movement_ledger"
        assert line["tour_id"] == str(tour_id)
        assert line["quantity"] == 40
        assert line["balance_after"] == 960
        assert "ts" in line
        # no coordinator around the call, so no context fields
        assert "correlation_id" not in line

    def test_coordinator_call_carries_context(self, coordinator, test_actor_id, captured_logs):
        coordinator.initialize(500, test_actor_id)
        tour_id = uuid4()
        coordinator.register_departure(tour_id, 25, test_actor_id, idempotency_key="dep-7")

        [line] = _events(captured_logs, "departure_registered")
        assert line["operation"] == "register_departure"
        assert line["actor_id"] == str(test_actor_id)
        assert line["idempotency_key"] == "register_departure:dep-7"
        assert line["correlation_id"]

        committed = [
            r for r in _events(captured_logs, "operation_committed")
            if r["operation"] == "register_departure"
        ]
        assert committed[0]["correlation_id"] == line["correlation_id"]
        assert committed[0]["attempt"] == 1

    def test_caller_correlation_id_is_kept(self, coordinator, test_actor_id, captured_logs):
        with bind_context(correlation_id="req-42"):
            coordinator.initialize(100, test_actor_id)

        [line] = _events(captured_logs, "stock_initialized")
        assert line["correlation_id"] == "req-42"
        assert current_context() == {}

    def test_rejected_call_logs_error_code(self, coordinator, test_actor_id, captured_logs):
        coordinator.initialize(100, test_actor_id)
        opened = coordinator.open_conflict(None, 2, test_actor_id)

        with pytest.raises(ExceedsRemainingError):
            coordinator.register_crate_return(opened.conflict_id, 3, test_actor_id)

        [line] = _events(captured_logs, "operation_rejected")
        assert line["level"] == "WARNING"
        assert line["error_code"] == "EXCEEDS_REMAINING"
        assert line["operation"] == "register_crate_return"
        assert line["conflict_id"] == str(opened.conflict_id)

    def test_failed_transaction_logs_exception(self, coordinator, test_actor_id, captured_logs, monkeypatch):
        coordinator.initialize(100, test_actor_id)

        def broken_purchase(self, quantity, actor_id, notes=None):
            raise OperationalError("UPDATE stock_accounts", {}, Exception("disk I/O error"))

        monkeypatch.setattr(MovementLedger, "purchase", broken_purchase)
        with pytest.raises(OperationalError):
            coordinator.purchase(10, test_actor_id)

        [line] = _events(captured_logs, "operation_failed")
        assert line["level"] == "ERROR"
        assert line["exc_type"] == "OperationalError"
        assert "disk I/O error" in line["exc_message"]
        assert "Traceback" in line["traceback"]


class TestExceptionFields:

    def test_refused_settlement_fields(self, settlement, make_conflict, initialized_ledger, test_actor_id):
        conflict = make_conflict(quantity_lost=2)
        with pytest.raises(ExceedsRemainingError) as exc_info:
            settlement.register_crate_return(conflict.id, 5, test_actor_id)

        exc = exc_info.value
        record = logging.LogRecord(
            "crate_kernel.services.conflict_settlement", logging.WARNING, __file__, 0,
            "settlement_refused", (), (type(exc), exc, exc.__traceback__),
        )
        line = json.loads(JsonLineFormatter().format(record))

        assert line["exc_code"] == "EXCEEDS_REMAINING"
        assert line["exc_conflict_id"] == str(conflict.id)
        assert line["exc_requested"] == 5
        assert line["exc_remaining"] == 2
        assert line["exc_unit"] == "crates"


class TestBindContext:

    def test_nested_binds_restore(self):
        with bind_context(operation="adjust", actor_id=uuid4()):
            outer = current_context()
            with bind_context(operation="purchase", tour_id=None):
                assert current_context()["operation"] == "purchase"
                assert "tour_id" not in current_context()
            assert current_context() == outer
        assert current_context() == {}

    def test_restored_after_exception(self):
        with pytest.raises(RuntimeError):
            with bind_context(conflict_id="c-1"):
                raise RuntimeError("boom")
        assert current_context() == {}

    def test_unknown_field_rejected(self):
        with pytest.raises(ValueError, match="warehouse"):
            with bind_context(warehouse="north"):
                pass


class TestConfigureLogging:

    def test_second_call_keeps_active_handler(self):
        active = configure_logging()
        assert configure_logging(level=logging.ERROR) is active
        assert logging.getLogger("crate_kernel").propagate is False

    def test_force_replaces_handler(self):
        previous = configure_logging()
        stream = StringIO()
        try:
            configure_logging(level=logging.DEBUG, handler=logging.StreamHandler(stream), force=True)
            assert previous not in logging.getLogger("crate_kernel").handlers

            get_logger("services.movement_ledger").info("alert_reference_reset", extra={"alert_reference": 850})
            line = json.loads(stream.getvalue().strip())
            assert line["message"] == "alert_reference_reset"
            assert line["alert_reference"] == 850
        finally:
            configure_logging(level=logging.DEBUG, handler=previous, force=True)
