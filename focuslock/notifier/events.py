"""
Notification events.

A NotificationEvent is built once per committed transition and fed to
every sink. Events are transient: the only retained copy is the bounded
per-owner history kept by the live hub.
"""

import json
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import StrEnum

from focuslock.models import EnforcementSession, Proof, Task, to_iso, utcnow


class EventType(StrEnum):
    TASK_AUTO_STARTED = "task_auto_started"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    SESSION_UPDATED = "session_updated"
    SESSION_UNLOCKED = "session_unlocked"
    FOCUS_VIOLATION = "focus_violation"


VIOLATION_TYPES = ("app_switch", "task_close", "uninstall_attempt")


@dataclass
class NotificationEvent:
    """One transition, addressed to exactly one owner."""

    type: EventType
    owner_id: str
    task_id: str
    payload: dict
    session_id: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    created_at: datetime = field(default_factory=utcnow)

    @property
    def dedupe_key(self) -> str:
        """
        Identifies the transition, so a redelivered copy of it can be dropped.

        Session events are keyed by session and resulting status. Violations
        are separate occurrences and key on their own event id.
        """
        if self.type == EventType.FOCUS_VIOLATION:
            return f"{self.type.value}:{self.id}"
        subject = self.session_id or self.task_id
        status = self.payload.get("status")
        key = f"{self.type.value}:{subject}"
        return f"{key}:{status}" if status else key

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "type": self.type.value,
            "taskId": self.task_id,
            "sessionId": self.session_id,
            "ownerId": self.owner_id,
            "payload": dict(self.payload),
            "createdAt": to_iso(self.created_at),
            "dedupeKey": self.dedupe_key,
        }

    def to_sse(self) -> str:
        """Format event as an SSE message."""
        lines = [
            f"id: {self.id}",
            f"event: {self.type.value}",
            f"data: {json.dumps(self.to_dict())}",
        ]
        return "\n".join(lines) + "\n\n"

    def push_message(self) -> dict:
        """
        FCM-style message for the push fallback: {title, body, data}.
        Every data value is a string.
        """
        title, body = _push_text(self)
        data = {"type": self.type.value, "taskId": self.task_id, "ownerId": self.owner_id}
        if self.session_id:
            data["sessionId"] = self.session_id
        for key, value in self.payload.items():
            if key in data or value is None:
                continue
            data[key] = value if isinstance(value, str) else json.dumps(value)
        return {"title": title, "body": body, "data": data}


def _push_text(event: NotificationEvent) -> tuple[str, str]:
    title = event.payload.get("title") or "your task"
    if event.type in (EventType.TASK_AUTO_STARTED, EventType.TASK_STARTED):
        return "Task Started", f'"{title}" has begun. Stay focused!'
    if event.type == EventType.TASK_COMPLETED:
        return "Time's Up", f'"{title}" is over. Submit your proof to unlock.'
    if event.type == EventType.SESSION_UNLOCKED:
        return "Unlocked", f'Proof accepted for "{title}". Your apps are unlocked.'
    if event.type == EventType.FOCUS_VIOLATION:
        violation = event.payload.get("violationType")
        if violation == "app_switch":
            app = event.payload.get("blockedApp") or "a blocked app"
            body = f'Focus broken! You tried to access {app} during "{title}".'
        elif violation == "task_close":
            body = f'Task interrupted! "{title}" was closed unexpectedly.'
        else:
            body = f'Uninstall blocked! Cannot remove FocusLock during active task "{title}".'
        return "Focus Violation Detected", body
    status = event.payload.get("status", "")
    return "Session Updated", f'Enforcement for "{title}" is now {status}.'


# ==================== Builders ====================


def task_auto_started(task: Task, session: EnforcementSession | None = None) -> NotificationEvent:
    payload = {
        "taskId": task.id,
        "title": task.title,
        "ownerId": task.owner_id,
        **task.restriction_payload(),
    }
    return NotificationEvent(
        type=EventType.TASK_AUTO_STARTED,
        owner_id=task.owner_id,
        task_id=task.id,
        session_id=session.id if session else None,
        payload=payload,
    )


def task_started(task: Task) -> NotificationEvent:
    payload = {"taskId": task.id, "title": task.title, "ownerId": task.owner_id}
    payload.update(task.restriction_payload())
    return NotificationEvent(
        type=EventType.TASK_STARTED, owner_id=task.owner_id, task_id=task.id, payload=payload
    )


def task_completed(
    task: Task, completed_at: datetime, session: EnforcementSession | None = None
) -> NotificationEvent:
    payload = {
        "taskId": task.id,
        "title": task.title,
        "ownerId": task.owner_id,
        "completedAt": to_iso(completed_at),
    }
    if session is not None:
        payload["sessionId"] = session.id
        payload["sessionStatus"] = session.status.value
    return NotificationEvent(
        type=EventType.TASK_COMPLETED,
        owner_id=task.owner_id,
        task_id=task.id,
        session_id=session.id if session else None,
        payload=payload,
    )


def session_updated(session: EnforcementSession, task: Task | None = None) -> NotificationEvent:
    payload = {
        "sessionId": session.id,
        "taskId": session.task_id,
        "status": session.status.value,
        "actualLevel": session.actual_level,
        "warnings": list(session.warnings),
    }
    if task is not None:
        payload["title"] = task.title
    return NotificationEvent(
        type=EventType.SESSION_UPDATED,
        owner_id=session.owner_id,
        task_id=session.task_id,
        session_id=session.id,
        payload=payload,
    )


def session_unlocked(
    session: EnforcementSession, proof: Proof, task: Task | None = None
) -> NotificationEvent:
    payload = {
        "sessionId": session.id,
        "taskId": session.task_id,
        "proofId": proof.id,
        "method": proof.method.value,
        "score": proof.score,
    }
    if task is not None:
        payload["title"] = task.title
    return NotificationEvent(
        type=EventType.SESSION_UNLOCKED,
        owner_id=session.owner_id,
        task_id=session.task_id,
        session_id=session.id,
        payload=payload,
    )


def focus_violation(
    task: Task, violation_type: str, blocked_app: str | None = None
) -> NotificationEvent:
    return NotificationEvent(
        type=EventType.FOCUS_VIOLATION,
        owner_id=task.owner_id,
        task_id=task.id,
        payload={
            "taskId": task.id,
            "title": task.title,
            "ownerId": task.owner_id,
            "violationType": violation_type,
            "blockedApp": blocked_app or "",
        },
    )
