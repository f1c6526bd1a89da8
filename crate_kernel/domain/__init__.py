"""
Pure domain layer.

Data transfer objects and the settlement completion rule, with NO
dependencies on sessions, the database or wall-clock time (the Clock
abstraction lives here; only SystemClock touches real time).
"""

from crate_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from crate_kernel.domain.dtos import (
    AccountSnapshot,
    ConflictOpened,
    ConflictView,
    LedgerAuditReport,
    MovementView,
    ResolutionView,
    ReturnOutcome,
    StockState,
)
from crate_kernel.domain.settlement import (
    ConflictState,
    SettlementResult,
    compute_conflict_state,
    crates_covered_by_payment,
    remaining_value,
)

__all__ = [
    "Clock",
    "DeterministicClock",
    "SystemClock",
    "AccountSnapshot",
    "ConflictOpened",
    "ConflictView",
    "LedgerAuditReport",
    "MovementView",
    "ResolutionView",
    "ReturnOutcome",
    "StockState",
    "ConflictState",
    "SettlementResult",
    "compute_conflict_state",
    "crates_covered_by_payment",
    "remaining_value",
]
