"""
Tables and indexes FocusLock keeps in SQLite.

schema_engine.converge() reads TABLES and INDEXES and brings a database
file in line with them. New columns only need a line here; the engine
derives the ADD COLUMN form from the CREATE TABLE definition.

Timestamps are fixed-width UTC ISO strings (models.to_iso) so they sort
and compare correctly as text.
"""

# Bump on every change below
SCHEMA_VERSION = 3

OPEN_SESSION_STATUSES_SQL = "('PENDING', 'LOCKED', 'PROOF_REQUIRED')"


def _table(*columns: tuple[str, str]) -> dict:
    return {"columns": list(columns)}


TABLES: dict[str, dict] = {
    # Scheduled focus windows
    "tasks": _table(
        ("id", "TEXT PRIMARY KEY"),
        ("owner_id", "TEXT NOT NULL"),
        ("title", "TEXT NOT NULL"),
        ("start_at", "TEXT NOT NULL"),
        ("end_at", "TEXT NOT NULL"),
        ("duration_minutes", "INTEGER NOT NULL"),
        ("strictness", "TEXT NOT NULL DEFAULT 'MEDIUM'"),
        ("target_apps", "TEXT NOT NULL DEFAULT '[]'"),
        ("proof_methods", "TEXT NOT NULL DEFAULT '[\"screenshot\"]'"),
        ("document_url", "TEXT"),
        ("status", "TEXT NOT NULL DEFAULT 'PENDING'"),
        ("created_at", "TEXT NOT NULL"),
        ("updated_at", "TEXT NOT NULL"),
    ),
    # A device's enforcement of one task activation
    "enforcement_sessions": _table(
        ("id", "TEXT PRIMARY KEY"),
        ("task_id", "TEXT NOT NULL REFERENCES tasks(id) ON DELETE CASCADE"),
        ("owner_id", "TEXT NOT NULL"),
        ("device_id", "TEXT NOT NULL"),
        ("status", "TEXT NOT NULL DEFAULT 'PENDING'"),
        ("requested_strictness", "TEXT"),
        ("actual_level", "TEXT"),
        ("capabilities", "TEXT"),  # JSON object
        ("warnings", "TEXT"),  # JSON array
        ("failure_reason", "TEXT"),
        ("started_at", "TEXT"),
        ("ended_at", "TEXT"),
        ("unlocked_at", "TEXT"),
        ("created_at", "TEXT NOT NULL"),
        ("updated_at", "TEXT NOT NULL"),
    ),
    # Append-only; rows are never updated
    "proofs": _table(
        ("id", "TEXT PRIMARY KEY"),
        ("session_id", "TEXT NOT NULL REFERENCES enforcement_sessions(id) ON DELETE CASCADE"),
        ("method", "TEXT NOT NULL"),
        ("result", "TEXT NOT NULL"),
        ("accepted", "INTEGER NOT NULL DEFAULT 0"),
        ("score", "INTEGER NOT NULL DEFAULT 0"),
        ("artifact_url", "TEXT"),
        ("created_at", "TEXT NOT NULL"),
    ),
    # Push registration, latest wins per owner
    "delivery_tokens": _table(
        ("owner_id", "TEXT PRIMARY KEY"),
        ("token", "TEXT NOT NULL"),
        ("platform", "TEXT"),
        ("updated_at", "TEXT NOT NULL"),
    ),
}

# (name, table, columns, partial WHERE, unique)
INDEXES: list[tuple[str, str, str, str | None, bool]] = [
    ("idx_tasks_status_start", "tasks", "status, start_at", None, False),
    ("idx_tasks_status_end", "tasks", "status, end_at", None, False),
    ("idx_tasks_owner", "tasks", "owner_id, start_at", None, False),
    ("idx_sessions_task", "enforcement_sessions", "task_id", None, False),
    ("idx_sessions_owner", "enforcement_sessions", "owner_id", None, False),
    # One open session per task; store maps the IntegrityError to InvalidTransition
    (
        "uq_sessions_open_task",
        "enforcement_sessions",
        "task_id",
        f"status IN {OPEN_SESSION_STATUSES_SQL}",
        True,
    ),
    ("idx_proofs_session", "proofs", "session_id, created_at", None, False),
]
