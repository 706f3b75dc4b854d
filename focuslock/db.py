"""
SQLite access for FocusLock.

Every connection the store opens comes from connect() here, so the pragmas,
busy timeout and autocommit mode are the same everywhere. Transactions are
opened explicitly with BEGIN IMMEDIATE by the caller.
"""

import logging
import re
import sqlite3
import threading
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

from focuslock import paths, schema, schema_engine

logger = logging.getLogger(__name__)

# Seconds a writer waits on a locked database before sqlite3 gives up
BUSY_TIMEOUT_SECONDS = 5.0

_IDENTIFIER = re.compile(r"^[A-Za-z_]\w*$", re.ASCII)


def validate_identifier(name: str) -> str:
    """Return *name* if it can be interpolated as a table or column name."""
    if not _IDENTIFIER.fullmatch(name):
        raise ValueError(f"Invalid SQL identifier: {name!r}")
    return name


def get_db_path() -> Path:
    """FOCUSLOCK_DB when set, else focuslock.db under the data directory."""
    return paths.db_path()


def connect(db_path: str | Path) -> sqlite3.Connection:
    conn = sqlite3.connect(
        str(db_path),
        timeout=BUSY_TIMEOUT_SECONDS,
        isolation_level=None,
    )
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def get_connection(db_path: str | Path | None = None) -> Iterator[sqlite3.Connection]:
    """Short-lived connection, closed on exit. The parent directory is created."""
    target = Path(db_path) if db_path else get_db_path()
    target.parent.mkdir(parents=True, exist_ok=True)
    conn = connect(target)
    try:
        yield conn
    finally:
        conn.close()


def user_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def missing_tables(conn: sqlite3.Connection) -> list[str]:
    found = {
        row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
    }
    return [name for name in schema.TABLES if name not in found]


_ready: set[str] = set()
_ready_lock = threading.Lock()


def ensure_schema(db_path: str | Path) -> dict:
    """
    Converge *db_path* to the declared schema, at most once per process.

    Later calls for the same path return ``{"status": "skipped"}``.
    """
    key = str(db_path)
    with _ready_lock:
        if key in _ready:
            return {"status": "skipped"}

        with get_connection(db_path) as conn:
            before = user_version(conn)
            results = schema_engine.converge(conn)
            absent = missing_tables(conn)
        results["previous_version"] = before

        if results["tables_created"] or results["columns_added"]:
            logger.info(
                "schema converged to v%s (tables=%s columns=%s)",
                results["schema_version"],
                results["tables_created"],
                results["columns_added"],
            )
        if results["errors"]:
            logger.warning("schema convergence errors: %s", results["errors"])
        if absent:
            logger.error("tables still missing after convergence: %s", absent)

        _ready.add(key)
        return results
