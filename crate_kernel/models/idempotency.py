"""
Module: crate_kernel.models.idempotency
Responsibility: Stored outcome of every mutating call that carried a
    client-supplied idempotency key.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - UNIQUE(key): a key is consumed at most once.  Two concurrent first
      uses race on the constraint; the loser's transaction fails and is
      retried by the coordinator, which then finds the stored response.
    - The record is written in the same transaction as the operation it
      describes, so a committed key always has a committed effect.
"""

from datetime import datetime
from typing import Any

from sqlalchemy import JSON, DateTime, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from crate_kernel.db.base import Base


class IdempotencyRecord(Base):
    """Outcome of a keyed mutating call."""

    __tablename__ = "idempotency_keys"

    __table_args__ = (
        UniqueConstraint("key", name="uq_idempotency_key"),
    )

    # operation:client_key
    key: Mapped[str] = mapped_column(
        String(300),
        nullable=False,
    )

    operation: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    # SHA-256 of the canonical request arguments
    request_hash: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
    )

    response: Mapped[dict[str, Any] | None] = mapped_column(
        JSON,
        nullable=True,
    )

    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
