"""
Config -> Kernel Bridges.

Functions that convert CrateSettings into kernel inputs.  They live here
(the producer) because the kernel never imports crate_config.

Usage:
    settings = get_active_settings()
    coordinator = TransactionCoordinator(
        get_session_factory(), build_ledger_policy(settings)
    )
"""

from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

from crate_config.schema import CrateSettings
from crate_kernel.domain.policy import LedgerPolicy


def build_ledger_policy(settings: CrateSettings) -> LedgerPolicy:
    """Translate settings into the kernel's LedgerPolicy."""
    return LedgerPolicy(
        unit_value=settings.unit_value,
        currency=settings.currency,
        alert_threshold_pct=settings.alert_threshold_pct,
        payment_tolerance=settings.payment_tolerance,
        active_tour_statuses=settings.active_tour_statuses,
        max_transaction_retries=settings.max_transaction_retries,
    )


def ledger_policy_provider(path: Path | None = None) -> Callable[[], LedgerPolicy]:
    """
    A provider that re-reads the active settings on every call.

    Hand it to TransactionCoordinator(policy_provider=...) so a changed
    unit value applies from the next operation on.
    """
    from crate_config import get_active_settings

    def provider() -> LedgerPolicy:
        return build_ledger_policy(get_active_settings(path))

    return provider
