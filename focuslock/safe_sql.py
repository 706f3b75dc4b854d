"""
SQL text builders for the enforcement store.

sqlite3 binds values with ``?`` but cannot bind table or column names, so
the store assembles statements here. Each identifier is checked with
db.validate_identifier() before it reaches an f-string; values never do.
"""

# ruff: noqa: S608

from __future__ import annotations

from collections.abc import Iterable

from focuslock.db import validate_identifier


def _names(columns: Iterable[str]) -> list[str]:
    names = [validate_identifier(col) for col in columns]
    if not names:
        raise ValueError("At least one column is required")
    return names


def _with_clauses(sql: str, where: str | None, order_by: str | None = None, tail: str = "") -> str:
    parts = [sql]
    if where:
        parts.append(f"WHERE {where}")
    if order_by:
        parts.append(f"ORDER BY {order_by}")
    if tail:
        parts.append(tail)
    return " ".join(parts)


def select(
    table: str,
    columns: str = "*",
    where: str | None = None,
    order_by: str | None = None,
    suffix: str = "",
) -> str:
    """
    SELECT from *table*.

    *where* is the condition without the keyword, e.g. ``"owner_id = ?"``.
    """
    head = f"SELECT {columns} FROM {validate_identifier(table)}"
    return _with_clauses(head, where, order_by, suffix)


def insert(table: str, columns: list[str], verb: str = "INSERT") -> str:
    names = _names(columns)
    marks = ", ".join("?" * len(names))
    return f"{verb} INTO {validate_identifier(table)} ({', '.join(names)}) VALUES ({marks})"


def insert_or_replace(table: str, columns: list[str]) -> str:
    """Upsert keyed on the table's primary key."""
    return insert(table, columns, verb="INSERT OR REPLACE")


def update(table: str, set_columns: list[str], where: str = "id = ?") -> str:
    assignments = ", ".join(f"{name} = ?" for name in _names(set_columns))
    return f"UPDATE {validate_identifier(table)} SET {assignments} WHERE {where}"


def update_if_status(table: str, set_columns: list[str]) -> str:
    """
    Conditional UPDATE guarded on the row's current status.

    Bind order: the new values, then the id, then the status the caller
    last observed. A rowcount of zero means another writer moved first.
    """
    return update(table, set_columns, where="id = ? AND status = ?")


def delete(table: str, where: str = "id = ?") -> str:
    return f"DELETE FROM {validate_identifier(table)} WHERE {where}"
