"""
Configuration Loader (``crate_config.loader``).

Responsibility
--------------
Reads a YAML settings file, layers environment overrides on top and
validates the result into a frozen ``CrateSettings``.  The single runtime
entry point is ``crate_config.get_active_settings()``.

Invariants enforced
-------------------
* Unknown keys are rejected: a typo in a settings file must not silently
  fall back to a default.
* Every numeric setting is parsed as Decimal (never float).
* Invalid values raise ``ValueError`` naming the offending key.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid value or unknown key  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from crate_config.schema import KNOWN_TOUR_STATUSES, CrateSettings

# Environment variables that override file values
ENV_OVERRIDES: dict[str, str] = {
    "CRATE_DATABASE_URL": "database_url",
    "CRATE_UNIT_VALUE": "unit_value",
}

_KNOWN_KEYS = frozenset({
    "unit_value",
    "currency",
    "alert_threshold_pct",
    "payment_tolerance",
    "database_url",
    "active_tour_statuses",
    "max_transaction_retries",
})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of data."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def _decimal(key: str, value: Any) -> Decimal:
    if isinstance(value, bool):
        raise ValueError(f"{key}: expected a number, got {value!r}")
    try:
        # Floats from YAML go through str so 0.01 stays 0.01
        result = Decimal(str(value))
    except InvalidOperation:
        raise ValueError(f"{key}: expected a number, got {value!r}") from None
    if not result.is_finite():
        raise ValueError(f"{key}: expected a finite number, got {value!r}")
    return result


def parse_settings(data: Mapping[str, Any]) -> CrateSettings:
    """
    Build validated settings from a mapping (file contents plus overrides).

    Missing keys take the CrateSettings defaults.
    """
    unknown = set(data) - _KNOWN_KEYS
    if unknown:
        raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")

    defaults = CrateSettings()
    values: dict[str, Any] = {}

    unit_value = _decimal("unit_value", data.get("unit_value", defaults.unit_value))
    if unit_value <= 0:
        raise ValueError(f"unit_value: must be positive, got {unit_value}")
    values["unit_value"] = unit_value

    threshold = _decimal(
        "alert_threshold_pct", data.get("alert_threshold_pct", defaults.alert_threshold_pct)
    )
    if not Decimal("0") <= threshold <= Decimal("100"):
        raise ValueError(f"alert_threshold_pct: must be between 0 and 100, got {threshold}")
    values["alert_threshold_pct"] = threshold

    tolerance = _decimal(
        "payment_tolerance", data.get("payment_tolerance", defaults.payment_tolerance)
    )
    if tolerance < 0:
        raise ValueError(f"payment_tolerance: must not be negative, got {tolerance}")
    values["payment_tolerance"] = tolerance

    currency = str(data.get("currency", defaults.currency)).strip()
    if not currency:
        raise ValueError("currency: must not be empty")
    values["currency"] = currency

    database_url = str(data.get("database_url", defaults.database_url)).strip()
    if not database_url:
        raise ValueError("database_url: must not be empty")
    values["database_url"] = database_url

    statuses = data.get("active_tour_statuses", defaults.active_tour_statuses)
    if isinstance(statuses, str) or not isinstance(statuses, (list, tuple)):
        raise ValueError(f"active_tour_statuses: expected a list, got {statuses!r}")
    statuses = tuple(str(s) for s in statuses)
    invalid = [s for s in statuses if s not in KNOWN_TOUR_STATUSES]
    if invalid:
        raise ValueError(f"active_tour_statuses: unknown status(es) {', '.join(invalid)}")
    values["active_tour_statuses"] = statuses

    retries = data.get("max_transaction_retries", defaults.max_transaction_retries)
    if isinstance(retries, bool) or not isinstance(retries, int) or retries < 0:
        raise ValueError(
            f"max_transaction_retries: expected a non-negative integer, got {retries!r}"
        )
    values["max_transaction_retries"] = retries

    settings = CrateSettings(**values)
    return CrateSettings(**values, checksum=compute_checksum(settings.as_dict()))


def apply_env_overrides(
    data: Mapping[str, Any],
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Return a copy of data with CRATE_* environment overrides applied."""
    env = os.environ if environ is None else environ
    merged = dict(data)
    for var, key in ENV_OVERRIDES.items():
        value = env.get(var)
        if value:
            merged[key] = value
    return merged


def load_settings(
    path: Path,
    environ: Mapping[str, str] | None = None,
) -> CrateSettings:
    """
    Load settings from a YAML file with environment overrides applied.

    Raises:
        FileNotFoundError, yaml.YAMLError, ValueError.
    """
    return parse_settings(apply_env_overrides(load_yaml_file(Path(path)), environ))
