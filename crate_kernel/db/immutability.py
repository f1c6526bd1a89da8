"""
ORM-Level Immutability Enforcement for the crate ledger.

===============================================================================
WHY THIS EXISTS
===============================================================================

The movement log is the audit trail that explains every change of the crate
balance, and the resolution log is the audit trail behind every conflict's
running totals.  Both are only useful if nobody can quietly rewrite them.
Corrections are new records (an ADJUSTMENT movement), never edits.

SQLAlchemy fires mapper events before UPDATE/DELETE statements reach the
database.  The listeners below intercept those events and abort the flush:

    session.flush()
         |
         v
    [before_update] --> _check_*_immutability() --> ImmutabilityViolationError
    [before_delete] --> _check_*_delete() ---------/

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity            | When Immutable          | Why
------------------|-------------------------|---------------------------------
MovementRecord    | ALWAYS (from creation)  | Ledger audit trail
ResolutionRecord  | ALWAYS (from creation)  | Settlement audit trail
StockAccount      | DELETE only             | The singleton is never removed

Bulk statements (session.execute(update(...))) and raw SQL bypass mapper
events.  On PostgreSQL the triggers of db/triggers.py refuse them too.

===============================================================================
USAGE
===============================================================================

    from crate_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()  # once at startup

To temporarily disable (TESTS ONLY):

    unregister_immutability_listeners()
"""

from sqlalchemy import event

from crate_kernel.exceptions import ImmutabilityViolationError
from crate_kernel.logging_config import get_logger

logger = get_logger("db.immutability")


def _block(entity_type: str, target, operation: str, reason: str) -> None:
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(target.id),
            "operation": operation,
        },
    )
    raise ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(target.id),
        reason=reason,
    )


def _check_movement_immutability(mapper, connection, target):
    """Prevent any UPDATE of a MovementRecord."""
    _block("MovementRecord", target, "UPDATE", "movement records are append-only")


def _check_movement_delete(mapper, connection, target):
    """Prevent any DELETE of a MovementRecord."""
    _block("MovementRecord", target, "DELETE", "movement records cannot be deleted")


def _check_resolution_immutability(mapper, connection, target):
    """Prevent any UPDATE of a ResolutionRecord."""
    _block("ResolutionRecord", target, "UPDATE", "resolution records are append-only")


def _check_resolution_delete(mapper, connection, target):
    """Prevent any DELETE of a ResolutionRecord."""
    _block("ResolutionRecord", target, "DELETE", "resolution records cannot be deleted")


def _check_stock_account_delete(mapper, connection, target):
    """Prevent deletion of the stock account."""
    _block("StockAccount", target, "DELETE", "the stock account is never deleted")


_LISTENERS = (
    ("MovementRecord", "before_update", _check_movement_immutability),
    ("MovementRecord", "before_delete", _check_movement_delete),
    ("ResolutionRecord", "before_update", _check_resolution_immutability),
    ("ResolutionRecord", "before_delete", _check_resolution_delete),
    ("StockAccount", "before_delete", _check_stock_account_delete),
)


def _models() -> dict:
    # Inline import: models import from db, db must not import models at load time.
    from crate_kernel.models.conflict import ResolutionRecord
    from crate_kernel.models.stock import MovementRecord, StockAccount

    return {
        "MovementRecord": MovementRecord,
        "ResolutionRecord": ResolutionRecord,
        "StockAccount": StockAccount,
    }


def register_immutability_listeners():
    """
    Register all immutability enforcement event listeners.

    Idempotent: listeners already registered are left alone.
    """
    models = _models()
    for name, event_name, listener in _LISTENERS:
        target = models[name]
        if not event.contains(target, event_name, listener):
            event.listen(target, event_name, listener)


def unregister_immutability_listeners():
    """
    Remove immutability enforcement event listeners.

    WARNING: Only use this in tests that need to violate the rules on
    purpose (e.g. to prove the ledger auditor detects tampering).
    """
    models = _models()
    for name, event_name, listener in _LISTENERS:
        target = models[name]
        if event.contains(target, event_name, listener):
            event.remove(target, event_name, listener)
