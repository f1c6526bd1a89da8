"""Database layer - engine, base classes, types, and immutability."""

from crate_kernel.db.base import UUID, Base, TrackedBase, UUIDString
from crate_kernel.db.engine import (
    create_tables,
    get_engine,
    get_session,
    get_session_factory,
    init_engine_from_url,
    session_scope,
)
from crate_kernel.db.types import LongText, Money, Quantity, ShortCode

__all__ = [
    "init_engine_from_url",
    "get_engine",
    "get_session",
    "get_session_factory",
    "session_scope",
    "create_tables",
    "Base",
    "TrackedBase",
    "UUIDString",
    "UUID",
    "Money",
    "Quantity",
    "ShortCode",
    "LongText",
]
