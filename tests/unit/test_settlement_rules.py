"""
Unit tests for the pure settlement rule.

Verifies:
- Value-based completion (returns and payments combine)
- Progress and remaining amount computation
- Operator messages
- DTO serialization used by the idempotency store
"""

from decimal import Decimal
from uuid import uuid4

import pytest

from crate_kernel.domain.settlement import (
    ConflictState,
    SettlementResult,
    compute_conflict_state,
    crate_return_message,
    crates_covered_by_payment,
    payment_message,
    remaining_value,
    settled_value,
    total_value,
)

UV = Decimal("50")


class TestComputeConflictState:

    def test_fresh_conflict(self):
        state = compute_conflict_state(5, 0, Decimal("0"), UV)

        assert state.remaining_crates == 5
        assert state.remaining_amount == Decimal("250")
        assert state.progress_pct == Decimal("0")
        assert state.is_resolved is False
        assert state.unit_value == UV

    def test_partial_return(self):
        state = compute_conflict_state(5, 3, Decimal("0"), UV)

        assert state.remaining_crates == 2
        assert state.remaining_amount == Decimal("100")
        assert state.progress_pct == Decimal("60")
        assert not state.is_resolved

    def test_returns_plus_payment_resolve(self):
        state = compute_conflict_state(5, 3, Decimal("100"), UV)

        assert state.is_resolved
        assert state.remaining_amount == Decimal("0")
        assert state.progress_pct == Decimal("100")
        # crates never came back, but their value is covered
        assert state.remaining_crates == 2

    def test_all_crates_returned_resolves(self):
        state = compute_conflict_state(4, 4, Decimal("0"), UV)
        assert state.is_resolved
        assert state.remaining_crates == 0

    def test_partial_payment(self):
        state = compute_conflict_state(5, 0, Decimal("75.50"), UV)

        assert not state.is_resolved
        assert state.remaining_amount == Decimal("174.50")
        assert state.progress_pct == Decimal("30.2")

    def test_overpayment_clamps_remaining_and_progress(self):
        state = compute_conflict_state(2, 0, Decimal("100.01"), UV)

        assert state.is_resolved
        assert state.remaining_amount == Decimal("0")
        assert state.progress_pct == Decimal("100")

    def test_zero_loss_is_resolved_with_full_progress(self):
        state = compute_conflict_state(0, 0, Decimal("0"), UV)
        assert state.is_resolved
        assert state.progress_pct == Decimal("100")

    def test_lower_unit_value_changes_the_outcome(self):
        # 60 paid against 2 missing crates: short at 50, covered at 30
        assert not compute_conflict_state(2, 0, Decimal("60"), Decimal("50")).is_resolved
        assert compute_conflict_state(2, 0, Decimal("60"), Decimal("30")).is_resolved


class TestValueHelpers:

    def test_total_and_settled(self):
        assert total_value(5, UV) == Decimal("250")
        assert settled_value(3, Decimal("20"), UV) == Decimal("170")

    def test_remaining_value_is_not_clamped(self):
        assert remaining_value(2, 0, Decimal("120"), UV) == Decimal("-20")

    @pytest.mark.parametrize(
        "amount,expected",
        [
            (Decimal("49.99"), 0),
            (Decimal("50"), 1),
            (Decimal("100"), 2),
            (Decimal("149.99"), 2),
        ],
    )
    def test_crates_covered_by_payment_floors(self, amount, expected):
        assert crates_covered_by_payment(amount, UV) == expected


class TestMessages:

    def test_crate_return_resolved(self):
        state = compute_conflict_state(5, 5, Decimal("0"), UV)
        assert crate_return_message(2, state, "TND") == "2 crates returned. Conflict resolved!"

    def test_crate_return_remaining(self):
        state = compute_conflict_state(5, 3, Decimal("0"), UV)
        assert (
            crate_return_message(3, state, "TND")
            == "3 crates returned. 2 crates or 100.00 TND remaining."
        )

    def test_payment_resolved(self):
        state = compute_conflict_state(5, 3, Decimal("100"), UV)
        assert (
            payment_message(Decimal("100"), state, "TND")
            == "Payment of 100.00 TND recorded. Conflict resolved!"
        )

    def test_payment_remaining(self):
        state = compute_conflict_state(5, 0, Decimal("30"), UV)
        assert (
            payment_message(Decimal("30"), state, "TND")
            == "Payment of 30.00 TND recorded. 220.00 TND remaining."
        )


class TestSerialization:

    def test_conflict_state_from_dict(self):
        state = compute_conflict_state(5, 3, Decimal("10"), UV)
        assert ConflictState.from_dict(state.to_dict()) == state

    def test_settlement_result_from_dict(self):
        state = compute_conflict_state(5, 3, Decimal("0"), UV)
        result = SettlementResult(
            conflict_id=uuid4(),
            resolved=False,
            state=state,
            message=crate_return_message(3, state, "TND"),
        )
        data = result.to_dict()

        assert isinstance(data["conflict_id"], str)
        assert data["state"]["remaining_amount"] == "100"
        assert SettlementResult.from_dict(data) == result
