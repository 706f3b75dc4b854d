"""
Enforcement Store - the single source of truth for tasks, sessions and proofs.

SQLite adapter for the narrow CRUD contract the engine consumes. Every
status write is conditional on the current status so two concurrent
callers can never both win the same transition; the caller learns it lost
from a False/None return, not from an exception.
"""

import json
import logging
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any

from focuslock import db as db_module
from focuslock import safe_sql
from focuslock.errors import InvalidTransition, NotFound, StoreUnavailable, ValidationError
from focuslock.models import (
    EnforcementSession,
    Proof,
    SessionStatus,
    Task,
    TaskStatus,
    compute_end,
    parse_iso,
    to_iso,
    utcnow,
)
from focuslock.schema import OPEN_SESSION_STATUSES_SQL

logger = logging.getLogger(__name__)


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, dict | list):
        return json.dumps(value)
    if isinstance(value, bool):
        return int(value)
    return value


def new_id() -> str:
    return str(uuid.uuid4())


class EnforcementStore:
    """
    Central state store. SQLite for persistence, nothing cached across calls.
    Every engine component reads and writes through here.
    """

    def __init__(self, db_path: str | Path | None = None):
        self.db_path = str(db_path or db_module.get_db_path())
        logger.info("EnforcementStore initializing with DB: %s", self.db_path)
        db_module.ensure_schema(self.db_path)
        logger.info("EnforcementStore ready, DB path: %s", self.db_path)

    # ==================== Connections ====================

    @contextmanager
    def _get_conn(self) -> Iterator[sqlite3.Connection]:
        """Autocommit connection; lock contention surfaces as StoreUnavailable."""
        try:
            conn = db_module.connect(self.db_path)
        except sqlite3.OperationalError as e:
            raise StoreUnavailable() from e
        try:
            yield conn
        except sqlite3.OperationalError as e:
            logger.warning("Store operation failed: %s", e)
            raise StoreUnavailable() from e
        finally:
            conn.close()

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        """
        Write transaction taken with BEGIN IMMEDIATE so concurrent writers
        serialize instead of failing half-way. Rolls back on any exception.
        """
        with self._get_conn() as conn:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")

    def _query(self, sql: str, params: list | tuple = ()) -> list[dict]:
        with self._get_conn() as conn:
            return [dict(row) for row in conn.execute(sql, params).fetchall()]

    def ping(self) -> bool:
        """Cheap liveness check used by the health endpoint."""
        with self._get_conn() as conn:
            conn.execute("SELECT 1").fetchone()
        return True

    # ==================== Tasks ====================

    def create_task(
        self,
        owner_id: str,
        title: str,
        start_at: datetime,
        duration_minutes: int,
        strictness: str = "MEDIUM",
        target_apps: list[str] | None = None,
        proof_methods: list[str] | None = None,
        document_url: str | None = None,
        now: datetime | None = None,
    ) -> Task:
        """Insert a PENDING task. end_at is derived here, never supplied."""
        now = now or utcnow()
        row = {
            "id": new_id(),
            "owner_id": owner_id,
            "title": title,
            "start_at": start_at,
            "end_at": compute_end(start_at, duration_minutes),
            "duration_minutes": duration_minutes,
            "strictness": strictness,
            "target_apps": target_apps or [],
            "proof_methods": proof_methods or ["screenshot"],
            "document_url": document_url,
            "status": TaskStatus.PENDING,
            "created_at": now,
            "updated_at": now,
        }
        with self._get_conn() as conn:
            conn.execute(safe_sql.insert("tasks", list(row)), [_encode(v) for v in row.values()])
        return self.get_task(row["id"])

    def get_task(self, task_id: str) -> Task | None:
        rows = self._query(safe_sql.select("tasks", where="id = ?"), [task_id])
        return Task.from_row(rows[0]) if rows else None

    def update_task_fields(
        self,
        task_id: str,
        fields: dict,
        expected_status: TaskStatus = TaskStatus.PENDING,
        now: datetime | None = None,
    ) -> Task | None:
        """
        Edit task fields while the task is still in *expected_status*.

        end_at is recomputed whenever start_at or duration_minutes is
        touched. Returns None if the task is gone or has moved on.
        """
        if "status" in fields or "end_at" in fields:
            raise ValueError("status and end_at are not editable fields")
        if not fields:
            return self.get_task(task_id)

        with self._transaction() as conn:
            row = conn.execute(safe_sql.select("tasks", where="id = ?"), [task_id]).fetchone()
            if row is None or row["status"] != expected_status:
                return None

            updates = dict(fields)
            if "start_at" in updates or "duration_minutes" in updates:
                start_at = updates.get("start_at") or parse_iso(row["start_at"])
                duration = updates.get("duration_minutes") or row["duration_minutes"]
                updates["end_at"] = compute_end(start_at, int(duration))
            updates["updated_at"] = now or utcnow()

            for col in updates:
                db_module.validate_identifier(col)
            values = [_encode(v) for v in updates.values()] + [task_id, expected_status.value]
            conn.execute(safe_sql.update_if_status("tasks", list(updates)), values)

        return self.get_task(task_id)

    def delete_task(self, task_id: str, owner_id: str) -> bool:
        with self._get_conn() as conn:
            result = conn.execute(
                safe_sql.delete("tasks", where="id = ? AND owner_id = ?"), [task_id, owner_id]
            )
            return result.rowcount > 0

    def update_task_status(
        self,
        task_id: str,
        expected_current: TaskStatus,
        next_status: TaskStatus,
        now: datetime | None = None,
    ) -> bool:
        """
        Move a task from *expected_current* to *next_status*.

        Returns False when 0 rows matched: the task was deleted or already
        left the expected state. Callers treat that as "skip".
        """
        with self._get_conn() as conn:
            result = conn.execute(
                safe_sql.update_if_status("tasks", ["status", "updated_at"]),
                [next_status.value, to_iso(now or utcnow()), task_id, expected_current.value],
            )
            return result.rowcount > 0

    def get_tasks_pending_due_to_start(self, now: datetime | None = None) -> list[Task]:
        rows = self._query(
            safe_sql.select("tasks", where="status = ? AND start_at <= ?", order_by="start_at"),
            [TaskStatus.PENDING.value, to_iso(now or utcnow())],
        )
        return [Task.from_row(r) for r in rows]

    def get_tasks_active_due_to_stop(self, now: datetime | None = None) -> list[Task]:
        rows = self._query(
            safe_sql.select("tasks", where="status = ? AND end_at <= ?", order_by="end_at"),
            [TaskStatus.ACTIVE.value, to_iso(now or utcnow())],
        )
        return [Task.from_row(r) for r in rows]

    def list_tasks_for_owner(
        self,
        owner_id: str,
        start_from: datetime | None = None,
        start_to: datetime | None = None,
        status: TaskStatus | None = None,
    ) -> list[Task]:
        where = ["owner_id = ?"]
        params: list[Any] = [owner_id]
        if start_from is not None:
            where.append("start_at >= ?")
            params.append(to_iso(start_from))
        if start_to is not None:
            where.append("start_at <= ?")
            params.append(to_iso(start_to))
        if status is not None:
            where.append("status = ?")
            params.append(status.value)
        rows = self._query(
            safe_sql.select("tasks", where=" AND ".join(where), order_by="start_at DESC"), params
        )
        return [Task.from_row(r) for r in rows]

    # ==================== Sessions ====================

    def create_session(
        self,
        task_id: str,
        owner_id: str,
        device_id: str,
        requested_strictness: str | None = None,
        now: datetime | None = None,
    ) -> EnforcementSession:
        """
        Insert a PENDING session. The partial unique index on open sessions
        rejects a second open session for the same task.
        """
        now = now or utcnow()
        row = {
            "id": new_id(),
            "task_id": task_id,
            "owner_id": owner_id,
            "device_id": device_id,
            "status": SessionStatus.PENDING,
            "requested_strictness": requested_strictness,
            "capabilities": {},
            "warnings": [],
            "started_at": now,
            "created_at": now,
            "updated_at": now,
        }
        try:
            with self._get_conn() as conn:
                conn.execute(
                    safe_sql.insert("enforcement_sessions", list(row)),
                    [_encode(v) for v in row.values()],
                )
        except sqlite3.IntegrityError as e:
            if "uq_sessions_open_task" in str(e) or "UNIQUE" in str(e):
                raise InvalidTransition(
                    "OPEN", message="Task already has an open enforcement session"
                ) from e
            raise ValidationError("Session references an unknown task") from e
        return self.get_session(row["id"])

    def get_session(self, session_id: str) -> EnforcementSession | None:
        rows = self._query(safe_sql.select("enforcement_sessions", where="id = ?"), [session_id])
        return EnforcementSession.from_row(rows[0]) if rows else None

    def get_open_session_for_task(self, task_id: str) -> EnforcementSession | None:
        rows = self._query(
            safe_sql.select(
                "enforcement_sessions",
                where=f"task_id = ? AND status IN {OPEN_SESSION_STATUSES_SQL}",
            ),
            [task_id],
        )
        return EnforcementSession.from_row(rows[0]) if rows else None

    def list_sessions_for_task(self, task_id: str) -> list[EnforcementSession]:
        rows = self._query(
            safe_sql.select("enforcement_sessions", where="task_id = ?", order_by="created_at"),
            [task_id],
        )
        return [EnforcementSession.from_row(r) for r in rows]

    def update_session(
        self,
        session_id: str,
        fields: dict,
        expected_status: SessionStatus | None = None,
        now: datetime | None = None,
    ) -> EnforcementSession | None:
        """
        Update session fields. With *expected_status* the write only happens
        while the session is still in that status; None means it lost.
        """
        updates = dict(fields)
        updates["updated_at"] = now or utcnow()
        for col in updates:
            db_module.validate_identifier(col)
        values = [_encode(v) for v in updates.values()] + [session_id]

        if expected_status is None:
            sql = safe_sql.update("enforcement_sessions", list(updates))
        else:
            sql = safe_sql.update_if_status("enforcement_sessions", list(updates))
            values.append(expected_status.value)

        with self._get_conn() as conn:
            result = conn.execute(sql, values)
            if result.rowcount == 0:
                return None
        return self.get_session(session_id)

    # ==================== Proofs ====================

    def _proof_row(self, fields: dict, now: datetime | None) -> dict:
        return {
            "id": fields.get("id") or new_id(),
            "session_id": fields["session_id"],
            "method": fields["method"],
            "result": fields.get("result") or {},
            "accepted": bool(fields.get("accepted", False)),
            "score": int(fields.get("score", 0)),
            "artifact_url": fields.get("artifact_url"),
            "created_at": now or utcnow(),
        }

    def create_proof(self, fields: dict, now: datetime | None = None) -> Proof:
        row = self._proof_row(fields, now)
        try:
            with self._get_conn() as conn:
                conn.execute(
                    safe_sql.insert("proofs", list(row)), [_encode(v) for v in row.values()]
                )
        except sqlite3.IntegrityError as e:
            raise NotFound("Session") from e
        return self.get_proof(row["id"])

    def get_proof(self, proof_id: str) -> Proof | None:
        rows = self._query(safe_sql.select("proofs", where="id = ?"), [proof_id])
        return Proof.from_row(rows[0]) if rows else None

    def list_proofs(self, session_id: str) -> list[Proof]:
        rows = self._query(
            safe_sql.select("proofs", where="session_id = ?", order_by="created_at"), [session_id]
        )
        return [Proof.from_row(r) for r in rows]

    def atomic_create_proof_and_update_session(
        self,
        proof_fields: dict,
        session_id: str,
        session_updates: dict,
        expected_status: SessionStatus,
        now: datetime | None = None,
    ) -> tuple[Proof, EnforcementSession]:
        """
        Insert a proof and update its session in one transaction.

        The session update is conditional on *expected_status*. If another
        writer moved the session first, nothing is written and
        InvalidTransition is raised, so a proof never lands without its
        session change and the session never changes without its proof.
        """
        now = now or utcnow()
        proof_row = self._proof_row({**proof_fields, "session_id": session_id}, now)
        updates = {**session_updates, "updated_at": now}
        for col in updates:
            db_module.validate_identifier(col)

        with self._transaction() as conn:
            current = conn.execute(
                safe_sql.select("enforcement_sessions", columns="status", where="id = ?"),
                [session_id],
            ).fetchone()
            if current is None:
                raise NotFound("Session")

            result = conn.execute(
                safe_sql.update_if_status("enforcement_sessions", list(updates)),
                [_encode(v) for v in updates.values()] + [session_id, expected_status.value],
            )
            if result.rowcount == 0:
                raise InvalidTransition(current["status"], updates.get("status"))

            conn.execute(
                safe_sql.insert("proofs", list(proof_row)), [_encode(v) for v in proof_row.values()]
            )

        return self.get_proof(proof_row["id"]), self.get_session(session_id)

    # ==================== Delivery tokens ====================

    def set_delivery_token(
        self, owner_id: str, token: str, platform: str | None = None, now: datetime | None = None
    ) -> None:
        row = {
            "owner_id": owner_id,
            "token": token,
            "platform": platform,
            "updated_at": now or utcnow(),
        }
        with self._get_conn() as conn:
            conn.execute(
                safe_sql.insert_or_replace("delivery_tokens", list(row)),
                [_encode(v) for v in row.values()],
            )

    def get_delivery_token(self, owner_id: str) -> str | None:
        rows = self._query(
            safe_sql.select("delivery_tokens", columns="token", where="owner_id = ?"), [owner_id]
        )
        return rows[0]["token"] if rows else None

    def clear_delivery_token(self, owner_id: str) -> bool:
        with self._get_conn() as conn:
            result = conn.execute(
                safe_sql.delete("delivery_tokens", where="owner_id = ?"), [owner_id]
            )
            return result.rowcount > 0
