"""
LedgerPolicy -- the runtime parameters the kernel is given, never reads.

The kernel does not import the configuration package.  ``crate_config``
builds a LedgerPolicy from the active settings (see
``crate_config.bridges``) and hands it to the TransactionCoordinator, which
passes the individual values into the services it constructs.
"""

from dataclasses import dataclass
from decimal import Decimal

# TourStatus values of tours whose departed crates are not back yet
DEFAULT_ACTIVE_TOUR_STATUSES: tuple[str, ...] = (
    "in_tour",
    "awaiting_unloading",
    "awaiting_hygiene",
)


@dataclass(frozen=True)
class LedgerPolicy:
    """
    Unit value, currency, alert threshold, payment tolerance, the tour
    statuses counted as in transit, and the transient-failure retry budget.
    """

    unit_value: Decimal = Decimal("50")
    currency: str = "TND"
    alert_threshold_pct: Decimal = Decimal("10")
    payment_tolerance: Decimal = Decimal("0.01")
    active_tour_statuses: tuple[str, ...] = DEFAULT_ACTIVE_TOUR_STATUSES
    max_transaction_retries: int = 3

    def __post_init__(self) -> None:
        if self.unit_value <= 0:
            raise ValueError(f"unit_value must be positive, got {self.unit_value}")
        if self.alert_threshold_pct < 0:
            raise ValueError(
                f"alert_threshold_pct must not be negative, got {self.alert_threshold_pct}"
            )
        if self.payment_tolerance < 0:
            raise ValueError(
                f"payment_tolerance must not be negative, got {self.payment_tolerance}"
            )
        if self.max_transaction_retries < 0:
            raise ValueError(
                f"max_transaction_retries must not be negative, got {self.max_transaction_retries}"
            )
