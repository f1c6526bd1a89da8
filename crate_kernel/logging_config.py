"""
Structured JSON logging for the crate kernel.

Every record under the ``crate_kernel`` logger becomes one JSON line:
timestamp, level, logger, message, the call context bound by the
TransactionCoordinator (correlation id, operation, actor, tour, conflict,
idempotency key), the record's ``extra`` fields and, for a logged
exception, its type, message, error code and public attributes.
"""

__all__ = [
    "CONTEXT_FIELDS",
    "JsonLineFormatter",
    "bind_context",
    "configure_logging",
    "current_context",
    "get_logger",
]

import json
import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping
from uuid import UUID

LOGGER_NAMESPACE = "crate_kernel"

CONTEXT_FIELDS = (
    "correlation_id",
    "operation",
    "actor_id",
    "tour_id",
    "conflict_id",
    "idempotency_key",
)

_EMPTY: Mapping[str, str] = MappingProxyType({})

# One immutable mapping per context; bind_context swaps it, never mutates it
_context: ContextVar[Mapping[str, str]] = ContextVar("crate_log_context", default=_EMPTY)


def current_context() -> dict[str, str]:
    """The fields bound in the current thread or task."""
    return dict(_context.get())


@contextmanager
def bind_context(**fields: Any) -> Iterator[None]:
    """
    Add fields to the log context for the duration of the block.

    None values are skipped; other values are stored as strings.  The
    previous context is restored on exit, exception or not.

    Raises:
        ValueError: for a name outside CONTEXT_FIELDS.
    """
    unknown = sorted(set(fields) - set(CONTEXT_FIELDS))
    if unknown:
        raise ValueError(f"Unknown log context field(s): {', '.join(unknown)}")

    merged = dict(_context.get())
    merged.update({name: str(value) for name, value in fields.items() if value is not None})
    token = _context.set(MappingProxyType(merged))
    try:
        yield
    finally:
        _context.reset(token)


# Attributes every LogRecord has; anything else came in through ``extra``
_RECORD_ATTRIBUTES = frozenset(
    vars(logging.LogRecord("", 0, "", 0, "", (), None))
) | {"message", "asctime", "taskName"}


def _json_default(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


def _exception_fields(exc: BaseException) -> dict[str, Any]:
    fields: dict[str, Any] = {
        "exc_type": type(exc).__name__,
        "exc_message": str(exc),
    }
    code = getattr(exc, "code", None)
    if code is not None:
        fields["exc_code"] = code
    # CrateKernelError subclasses keep their data as public attributes
    for name, value in vars(exc).items():
        if not name.startswith("_") and name != "code":
            fields[f"exc_{name}"] = value
    return fields


class JsonLineFormatter(logging.Formatter):
    """One JSON object per record; context fields never override extras."""

    def format(self, record: logging.LogRecord) -> str:
        payload: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        payload.update(_context.get())
        payload.update(
            (key, value)
            for key, value in vars(record).items()
            if key not in _RECORD_ATTRIBUTES
        )

        if record.exc_info and record.exc_info[1] is not None:
            payload.update(_exception_fields(record.exc_info[1]))
            payload["traceback"] = self.formatException(record.exc_info)

        return json.dumps(payload, default=_json_default)


def get_logger(name: str) -> logging.Logger:
    """Logger ``crate_kernel.<name>``."""
    return logging.getLogger(f"{LOGGER_NAMESPACE}.{name}")


_installed_handler: logging.Handler | None = None


def configure_logging(
    level: int = logging.INFO,
    handler: logging.Handler | None = None,
    force: bool = False,
) -> logging.Handler:
    """
    Attach a JSON handler to the crate_kernel logger.

    A second call keeps the existing handler and level unless ``force`` is
    set, in which case the previous handler is replaced.  Records do not
    propagate to the root logger.  Returns the active handler.
    """
    global _installed_handler

    namespace_logger = logging.getLogger(LOGGER_NAMESPACE)
    if _installed_handler is not None:
        if not force:
            return _installed_handler
        namespace_logger.removeHandler(_installed_handler)

    new_handler = handler or logging.StreamHandler(sys.stderr)
    new_handler.setFormatter(JsonLineFormatter())
    namespace_logger.addHandler(new_handler)
    namespace_logger.setLevel(level)
    namespace_logger.propagate = False
    _installed_handler = new_handler
    return new_handler
