"""
Bring a SQLite file up to the shape declared in focuslock.schema.

converge(conn) is additive: it creates absent tables and indexes, adds
absent columns to tables that already exist, and stamps user_version.
Nothing is ever dropped, so an older database keeps its rows.
"""

import logging
import re
import sqlite3
from dataclasses import dataclass, field

from focuslock import schema

logger = logging.getLogger(__name__)

# Constraints SQLite rejects in ALTER TABLE ADD COLUMN
_ADD_COLUMN_FORBIDDEN = re.compile(
    r"\bPRIMARY\s+KEY\b"
    r"|\bAUTOINCREMENT\b"
    r"|\bUNIQUE\b"
    r"|\bREFERENCES\s+\w+\s*\([^)]*\)(?:\s+ON\s+DELETE\s+\w+)?"
    r"|\bCHECK\s*\([^)]*\)",
    re.IGNORECASE,
)
_NOT_NULL = re.compile(r"\bNOT\s+NULL\b", re.IGNORECASE)
_DEFAULT = re.compile(r"\bDEFAULT\b", re.IGNORECASE)


def make_alter_safe(col_def: str) -> str:
    """
    Reduce a CREATE TABLE column definition to something ADD COLUMN accepts.

    Key, uniqueness, foreign key and check constraints are removed. A NOT
    NULL column without a DEFAULT gets ``DEFAULT ''`` so existing rows
    have a value.
    """
    ddl = " ".join(_ADD_COLUMN_FORBIDDEN.sub(" ", col_def).split())
    if _NOT_NULL.search(ddl) and not _DEFAULT.search(ddl):
        ddl += " DEFAULT ''"
    return ddl


@dataclass
class ConvergeReport:
    tables_created: list[str] = field(default_factory=list)
    columns_added: list[str] = field(default_factory=list)
    indexes_created: list[str] = field(default_factory=list)
    errors: list[str] = field(default_factory=list)
    schema_version: int = schema.SCHEMA_VERSION

    def as_dict(self) -> dict:
        return {
            "tables_created": self.tables_created,
            "columns_added": self.columns_added,
            "indexes_created": self.indexes_created,
            "errors": self.errors,
            "schema_version": self.schema_version,
        }


def _names_of(conn: sqlite3.Connection, kind: str) -> set[str]:
    rows = conn.execute(
        "SELECT name FROM sqlite_master WHERE type = ? AND name NOT LIKE 'sqlite_%'", (kind,)
    )
    return {name for (name,) in rows}


def _columns_of(conn: sqlite3.Connection, table: str) -> set[str]:
    return {row[1] for row in conn.execute(f"PRAGMA table_info([{table}])")}  # nosec B608


def create_table_sql(table: str, columns: list[tuple[str, str]]) -> str:
    body = ",\n".join(f"    {name} {ddl}" for name, ddl in columns)
    return f"CREATE TABLE IF NOT EXISTS [{table}] (\n{body}\n)"


def create_index_sql(name: str, table: str, cols: str, where: str | None, unique: bool) -> str:
    sql = f"CREATE {'UNIQUE ' if unique else ''}INDEX IF NOT EXISTS [{name}] ON [{table}]({cols})"
    return f"{sql} WHERE {where}" if where else sql


def _attempt(conn: sqlite3.Connection, sql: str, label: str, report: ConvergeReport) -> bool:
    try:
        conn.execute(sql)
    except sqlite3.OperationalError as exc:
        report.errors.append(f"{label}: {exc}")
        logger.warning("schema convergence step failed: %s: %s", label, exc)
        return False
    return True


def converge(conn: sqlite3.Connection) -> dict:
    """Apply schema.TABLES and schema.INDEXES to *conn*; returns a report dict."""
    report = ConvergeReport()
    tables = _names_of(conn, "table")

    for table, definition in schema.TABLES.items():
        columns = definition["columns"]
        if table not in tables:
            if _attempt(conn, create_table_sql(table, columns), f"create {table}", report):
                report.tables_created.append(table)
                logger.info("created table %s", table)
            continue

        present = _columns_of(conn, table)
        for name, ddl in columns:
            if name in present:
                continue
            sql = f"ALTER TABLE [{table}] ADD COLUMN [{name}] {make_alter_safe(ddl)}"  # nosec B608
            if _attempt(conn, sql, f"add column {table}.{name}", report):
                report.columns_added.append(f"{table}.{name}")
                logger.info("added column %s.%s", table, name)

    indexes = _names_of(conn, "index")
    for name, table, cols, where, unique in schema.INDEXES:
        if name in indexes:
            continue
        sql = create_index_sql(name, table, cols, where, unique)
        if _attempt(conn, sql, f"index {name}", report):
            report.indexes_created.append(name)

    conn.execute(f"PRAGMA user_version = {int(schema.SCHEMA_VERSION)}")
    return report.as_dict()
