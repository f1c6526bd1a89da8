"""
Pytest fixtures for the crate kernel test suite.

Provides:
- Database sessions (rollback-isolated and real-commit)
- Ledger, settlement and coordinator fixtures
- Tour and conflict factories

Environment Variables:
- DATABASE_URL: database to test against.  If not set, a SQLite file in the
  pytest temporary directory is used.  Tests marked ``postgres`` are skipped
  unless DATABASE_URL points at PostgreSQL.
"""

import json
import logging
import os
import threading
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from crate_kernel.db.base import Base
from crate_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from crate_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from crate_kernel.domain.clock import DeterministicClock
from crate_kernel.domain.policy import LedgerPolicy
from crate_kernel.logging_config import JsonLineFormatter, configure_logging
from crate_kernel.models.conflict import Conflict, ConflictStatus
from crate_kernel.models.tour import Tour, TourStatus
from crate_kernel.services.conflict_settlement import ConflictSettlement
from crate_kernel.services.movement_ledger import MovementLedger
from crate_kernel.services.transaction_coordinator import TransactionCoordinator

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

UNIT_VALUE = Decimal("50")


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """JSON logs at DEBUG for the whole run, written to pytest's captured stderr."""
    configure_logging(level=logging.DEBUG, force=True)
    yield
    # the captured stream is closed after the run
    configure_logging(level=logging.WARNING, handler=logging.NullHandler(), force=True)


@pytest.fixture
def captured_logs():
    """
    Capture crate_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, coordinator):
            coordinator.initialize(1000, actor_id)
            logs = captured_logs()
            assert any(r["message"] == "stock_initialized" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(JsonLineFormatter())
    root = logging.getLogger("crate_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "postgres: mark test as requiring PostgreSQL"
    )
    config.addinivalue_line(
        "markers", "slow_locks: mark test as potentially waiting for DB locks"
    )


def get_database_url() -> str | None:
    """Database URL from the environment, or None for the SQLite default."""
    return os.environ.get("DATABASE_URL") or None


def pytest_collection_modifyitems(config, items):
    url = get_database_url()
    if url is not None and url.startswith("postgresql"):
        return
    skip_pg = pytest.mark.skip(reason="requires DATABASE_URL pointing at PostgreSQL")
    for item in items:
        if "postgres" in item.keywords:
            item.add_marker(skip_pg)


# =============================================================================
# Session-scoped DB infrastructure (create engine + tables ONCE per suite)
# =============================================================================


@pytest.fixture(scope="session")
def db_engine(tmp_path_factory):
    """Single engine for the entire test session.

    Pool is large enough for concurrency tests (30+20 overflow).
    """
    db_url = get_database_url()
    if db_url is None:
        db_file = tmp_path_factory.mktemp("crate_db") / "crate_ledger.sqlite"
        db_url = f"sqlite:///{db_file}"
    eng = init_engine_from_url(
        db_url, echo=False,
        pool_size=30, max_overflow=20, pool_timeout=10,
    )
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session, drop once at end.

    Immutability listeners are registered once and remain active.
    """
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


def _truncate_all_tables(engine):
    """Delete all rows for data cleanup.

    Core statements bypass the ORM immutability listeners.  Used by tests
    that need real commits and therefore cannot rely on the rollback
    isolation pattern.
    """
    table_names = [t.name for t in reversed(Base.metadata.sorted_tables)]
    if not table_names:
        return
    with engine.connect() as conn:
        if engine.dialect.name == "postgresql":
            conn.execute(text("TRUNCATE " + ", ".join(table_names) + " CASCADE"))
        else:
            for name in table_names:
                conn.execute(text(f"DELETE FROM {name}"))
        conn.commit()


def is_postgres_engine(engine) -> bool:
    return engine.dialect.name == "postgresql"


# =============================================================================
# Per-test session with automatic rollback
# =============================================================================


@pytest.fixture(scope="function")
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """Provide a database session for testing.

    Opens a dedicated connection with an outer transaction and a session
    that joins it through a savepoint.  ``session.commit()`` inside a test
    only releases the savepoint; the outer transaction is rolled back at
    teardown, undoing all data changes made during the test.

    On SQLite the outer transaction holds the database write lock, so a test
    must not combine this fixture with ``session_factory``.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Real-commit fixtures (coordinator and concurrency tests)
# =============================================================================


@pytest.fixture(scope="function")
def session_factory(db_engine, db_tables):
    """Provide a tracked session factory whose sessions really commit.

    Each thread should create its own session using this factory.
    On teardown the factory:
    1. Blocks new session creation (late threads get RuntimeError)
    2. Rolls back and closes all tracked sessions
    3. Deletes all data
    """
    factory = get_session_factory()
    created_sessions = []
    lock = threading.Lock()
    closed = False

    def tracked_factory():
        with lock:
            if closed:
                raise RuntimeError("session_factory closed (fixture teardown)")
            s = factory()
            created_sessions.append(s)
            return s

    yield tracked_factory

    with lock:
        closed = True

    for s in created_sessions:
        if s.is_active:
            s.rollback()
        s.close()

    _truncate_all_tables(db_engine)


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def ledger_policy() -> LedgerPolicy:
    return LedgerPolicy(unit_value=UNIT_VALUE)


@pytest.fixture
def coordinator(session_factory, ledger_policy, deterministic_clock) -> TransactionCoordinator:
    """Coordinator over real commits, without retry back-off delays."""
    return TransactionCoordinator(
        session_factory,
        ledger_policy,
        clock=deterministic_clock,
        retry_backoff_seconds=0,
    )


# =============================================================================
# Service fixtures (rollback-isolated session)
# =============================================================================


@pytest.fixture
def ledger(session: Session, deterministic_clock) -> MovementLedger:
    """Provide a MovementLedger instance."""
    return MovementLedger(session, deterministic_clock)


@pytest.fixture
def initialized_ledger(ledger: MovementLedger, test_actor_id) -> MovementLedger:
    """A ledger whose stock account starts at 1000 crates."""
    ledger.initialize(1000, test_actor_id)
    return ledger


@pytest.fixture
def settlement(session: Session, ledger: MovementLedger, deterministic_clock) -> ConflictSettlement:
    """Provide a ConflictSettlement at 50 per crate."""
    return ConflictSettlement(session, ledger, UNIT_VALUE, deterministic_clock)


# =============================================================================
# Data factories
# =============================================================================


@pytest.fixture
def make_tour(session: Session, test_actor_id: UUID):
    """Factory inserting a tour row (tours are owned by the tour workflow)."""

    def _make_tour(
        status: TourStatus | str = TourStatus.IN_TOUR,
        crates_departed: int = 0,
        crates_returned: int | None = None,
        reference: str | None = None,
    ) -> Tour:
        tour = Tour(
            reference=reference or f"T-{uuid4().hex[:8]}",
            status=TourStatus(status).value,
            crates_departed=crates_departed,
            crates_returned=crates_returned,
            created_by_id=test_actor_id,
        )
        session.add(tour)
        session.flush()
        return tour

    return _make_tour


@pytest.fixture
def make_conflict(settlement: ConflictSettlement, test_actor_id: UUID):
    """Factory opening a PENDING conflict and returning the ORM row."""

    def _make_conflict(quantity_lost: int = 5, tour_id: UUID | None = None) -> Conflict:
        opened = settlement.open_conflict(tour_id, quantity_lost, test_actor_id)
        return settlement.session.get(Conflict, opened.conflict_id)

    return _make_conflict


@pytest.fixture
def close_conflict_externally(session: Session, test_actor_id: UUID):
    """Set a terminal status the way the direction-approval workflow does."""

    def _close(conflict: Conflict, status: ConflictStatus) -> Conflict:
        conflict.status = status.value
        conflict.updated_by_id = test_actor_id
        session.flush()
        return conflict

    return _close
