"""
BaseService -- abstract base for all kernel services.

Responsibility:
    Provides the common constructor and session-handling contract for
    every mutating service in the kernel.  Concrete services receive a
    SQLAlchemy ``Session`` and persist through ``session.flush()``, never
    ``session.commit()``.

Architecture position:
    Kernel > Services -- imperative shell infrastructure.

Invariants enforced:
    Transaction boundaries: services flush within the caller's transaction
    and never commit or roll back.  The TransactionCoordinator (or the
    caller's ``session_scope()``) owns commit/rollback, so a balance update,
    its movement record and the settlement that triggered it are committed
    together or not at all.
"""

from abc import ABC

from sqlalchemy.orm import Session


class BaseService(ABC):
    """
    Abstract base class for kernel services.

    Non-goals:
        - Does NOT manage transaction lifecycle (commit/rollback).
        - Does NOT provide reporting reads; those live in
          ``crate_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session
