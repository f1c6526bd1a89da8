"""Services for the crate kernel (write side)."""

from crate_kernel.services.conflict_settlement import ConflictSettlement
from crate_kernel.services.ledger_auditor import LedgerAuditor
from crate_kernel.services.movement_ledger import MovementLedger
from crate_kernel.services.sequence_service import SequenceService
from crate_kernel.services.transaction_coordinator import TransactionCoordinator

__all__ = [
    "ConflictSettlement",
    "LedgerAuditor",
    "MovementLedger",
    "SequenceService",
    "TransactionCoordinator",
]
