"""Domain models for the crate kernel."""

from crate_kernel.models.conflict import (
    Conflict,
    ConflictStatus,
    PaymentMode,
    ResolutionRecord,
    ResolutionType,
)
from crate_kernel.models.idempotency import IdempotencyRecord
from crate_kernel.models.stock import (
    PRINCIPAL_ACCOUNT_KEY,
    MovementRecord,
    MovementType,
    StockAccount,
)
from crate_kernel.models.tour import Tour, TourStatus

__all__ = [
    "StockAccount",
    "MovementRecord",
    "MovementType",
    "PRINCIPAL_ACCOUNT_KEY",
    "Tour",
    "TourStatus",
    "Conflict",
    "ConflictStatus",
    "ResolutionRecord",
    "ResolutionType",
    "PaymentMode",
    "IdempotencyRecord",
]
