"""
crate_config -- single public entrypoint for crate ledger settings.

Responsibility:
    Provides the ONLY way to obtain settings at runtime, through
    ``get_active_settings()``.  No other component reads settings files or
    CRATE_* environment variables directly.

Architecture position:
    Configuration.  Sits above ``crate_kernel``: the kernel MUST NEVER
    import from ``crate_config``; ``crate_config.bridges`` translates
    settings into kernel inputs.

Resolution order:
    1. CrateSettings defaults
    2. The YAML file at ``path``, else ``$CRATE_CONFIG_PATH``, else the
       packaged ``defaults.yaml``
    3. CRATE_DATABASE_URL / CRATE_UNIT_VALUE environment overrides

Audit relevance:
    Every successful call emits a ``crate_config_loaded`` log entry with
    the source file and the settings checksum.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from crate_config.loader import load_settings
from crate_config.schema import CrateSettings

_logger = logging.getLogger("crate_kernel.config")

CONFIG_PATH_ENV = "CRATE_CONFIG_PATH"
_DEFAULT_CONFIG_FILE = Path(__file__).parent / "defaults.yaml"


def get_active_settings(path: Path | str | None = None) -> CrateSettings:
    """
    The ONLY public settings entrypoint.

    Raises:
        FileNotFoundError: The selected settings file does not exist.
        ValueError: A setting is invalid or unknown.
    """
    if path is not None:
        source = Path(path)
    elif os.environ.get(CONFIG_PATH_ENV):
        source = Path(os.environ[CONFIG_PATH_ENV])
    else:
        source = _DEFAULT_CONFIG_FILE

    settings = load_settings(source)

    _logger.info(
        "crate_config_loaded",
        extra={
            "config_source": str(source),
            "checksum": settings.checksum,
            "unit_value": str(settings.unit_value),
            "currency": settings.currency,
            "alert_threshold_pct": str(settings.alert_threshold_pct),
        },
    )
    return settings


__all__ = ["CrateSettings", "get_active_settings", "load_settings"]
