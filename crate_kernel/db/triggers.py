"""
Module: crate_kernel.db.triggers
Responsibility: Loading, installing and verifying the PostgreSQL
    append-only triggers.  The database-level complement to the ORM
    listeners in db/immutability.py.
Architecture position: Kernel > DB.  May import from db/ only (pathlib for
    SQL file loading, sqlalchemy for execution).

Invariants enforced:
    - crate_movements rows: no UPDATE, no DELETE.
    - conflict_resolutions rows: no UPDATE, no DELETE.
    - stock_accounts rows: no DELETE.

The ORM listeners only see flushes.  A Core ``update()`` / ``delete()``,
raw SQL or a psql session reaches these triggers instead.  TRUNCATE fires
no row-level trigger, so test cleanup is unaffected.

Failure modes:
    - PostgreSQL RAISE EXCEPTION on a refused statement, surfaced by
      SQLAlchemy as a DBAPIError (InternalError with psycopg2).
    - FileNotFoundError if an SQL file is missing from the sql/ directory.
"""

from pathlib import Path

from sqlalchemy import text
from sqlalchemy.engine import Engine

from crate_kernel.logging_config import get_logger

logger = get_logger("db.triggers")

SQL_DIR = Path(__file__).parent / "sql"

# Installed in this order
TRIGGER_FILES = [
    "01_crate_movement.sql",
    "02_conflict_resolution.sql",
    "03_stock_account.sql",
]

DROP_FILE = "99_drop_all.sql"

ALL_TRIGGER_NAMES = [
    "trg_crate_movement_immutability_update",
    "trg_crate_movement_immutability_delete",
    "trg_conflict_resolution_immutability_update",
    "trg_conflict_resolution_immutability_delete",
    "trg_stock_account_delete",
]


def _load_sql_file(filename: str) -> str:
    return (SQL_DIR / filename).read_text(encoding="utf-8")


def _load_all_trigger_sql() -> str:
    parts = []
    for filename in TRIGGER_FILES:
        parts.append(f"-- Loading: {filename}")
        parts.append(_load_sql_file(filename))
    return "\n".join(parts)


def install_immutability_triggers(engine: Engine) -> None:
    """
    Install the append-only triggers.

    Preconditions: the tables exist (call after metadata.create_all) and
        the engine is connected to PostgreSQL.
    Postconditions: every trigger in ALL_TRIGGER_NAMES is installed.
        Re-running replaces them.
    """
    with engine.connect() as conn:
        conn.execute(text(_load_all_trigger_sql()))
        conn.commit()
    logger.info("immutability_triggers_installed", extra={"trigger_count": len(ALL_TRIGGER_NAMES)})


def uninstall_immutability_triggers(engine: Engine) -> None:
    """
    Remove the triggers and their functions.

    Safe on a database where the tables do not exist yet.
    """
    with engine.connect() as conn:
        conn.execute(text(_load_sql_file(DROP_FILE)))
        conn.commit()


def get_installed_triggers(engine: Engine) -> list[str]:
    trigger_list = ", ".join(f"'{name}'" for name in ALL_TRIGGER_NAMES)
    check_sql = f"""
    SELECT tgname FROM pg_trigger
    WHERE tgname IN ({trigger_list})
    ORDER BY tgname;
    """
    with engine.connect() as conn:
        return [row[0] for row in conn.execute(text(check_sql))]


def triggers_installed(engine: Engine) -> bool:
    """True iff every trigger in ALL_TRIGGER_NAMES is present."""
    return set(get_installed_triggers(engine)) == set(ALL_TRIGGER_NAMES)
