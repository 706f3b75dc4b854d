"""
Domain records: Task, EnforcementSession, Proof.

Rows come out of the store as dicts with ISO timestamp strings and JSON
text columns; from_row() turns them into typed records and to_dict() gives
the camelCase shape the API and notification payloads use.
"""

import json
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from enum import StrEnum
from typing import Any


class TaskStatus(StrEnum):
    PENDING = "PENDING"
    ACTIVE = "ACTIVE"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


class SessionStatus(StrEnum):
    PENDING = "PENDING"
    LOCKED = "LOCKED"
    PROOF_REQUIRED = "PROOF_REQUIRED"
    UNLOCKED = "UNLOCKED"
    FAILED = "FAILED"


class Strictness(StrEnum):
    SOFT = "SOFT"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


class ProofMethod(StrEnum):
    SCREENSHOT = "screenshot"
    QUIZ = "quiz"
    CHECKIN = "checkin"


TERMINAL_TASK_STATUSES = frozenset({TaskStatus.COMPLETED, TaskStatus.FAILED})
TERMINAL_SESSION_STATUSES = frozenset({SessionStatus.UNLOCKED, SessionStatus.FAILED})


# ==================== Time helpers ====================


def utcnow() -> datetime:
    return datetime.now(UTC)


def to_iso(dt: datetime) -> str:
    """
    Serialize to a UTC ISO string with fixed microsecond precision.

    The fixed width makes lexicographic comparison in SQL equal to
    chronological comparison. Naive datetimes are taken as UTC.
    """
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC).isoformat(timespec="microseconds")


def parse_iso(value: str | datetime | None) -> datetime | None:
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        dt = value
    else:
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=UTC)
    return dt.astimezone(UTC)


def compute_end(start_at: datetime, duration_minutes: int) -> datetime:
    """end = start + duration, the one place this is computed."""
    return start_at + timedelta(minutes=duration_minutes)


def _json_load(value: Any, default: Any) -> Any:
    if value is None or value == "":
        return default
    if isinstance(value, str):
        return json.loads(value)
    return value


def _iso_or_none(dt: datetime | None) -> str | None:
    return to_iso(dt) if dt else None


# ==================== Records ====================


@dataclass
class Task:
    id: str
    owner_id: str
    title: str
    start_at: datetime
    end_at: datetime
    duration_minutes: int
    strictness: Strictness = Strictness.MEDIUM
    target_apps: list[str] = field(default_factory=list)
    proof_methods: list[str] = field(default_factory=lambda: [ProofMethod.SCREENSHOT.value])
    document_url: str | None = None
    status: TaskStatus = TaskStatus.PENDING
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict) -> "Task":
        return cls(
            id=row["id"],
            owner_id=row["owner_id"],
            title=row["title"],
            start_at=parse_iso(row["start_at"]),
            end_at=parse_iso(row["end_at"]),
            duration_minutes=int(row["duration_minutes"]),
            strictness=Strictness(row["strictness"]),
            target_apps=_json_load(row.get("target_apps"), []),
            proof_methods=_json_load(row.get("proof_methods"), [ProofMethod.SCREENSHOT.value]),
            document_url=row.get("document_url"),
            status=TaskStatus(row["status"]),
            created_at=parse_iso(row.get("created_at")),
            updated_at=parse_iso(row.get("updated_at")),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_TASK_STATUSES

    def restriction_payload(self) -> dict:
        """What a client needs to begin local enforcement."""
        return {
            "strictness": self.strictness.value,
            "targetApps": list(self.target_apps),
            "durationMinutes": self.duration_minutes,
            "documentUrl": self.document_url,
        }

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "ownerId": self.owner_id,
            "title": self.title,
            "startAt": to_iso(self.start_at),
            "endAt": to_iso(self.end_at),
            "durationMinutes": self.duration_minutes,
            "strictness": self.strictness.value,
            "targetApps": list(self.target_apps),
            "proofMethods": list(self.proof_methods),
            "documentUrl": self.document_url,
            "status": self.status.value,
            "createdAt": _iso_or_none(self.created_at),
            "updatedAt": _iso_or_none(self.updated_at),
        }


@dataclass
class EnforcementSession:
    id: str
    task_id: str
    owner_id: str
    device_id: str
    status: SessionStatus = SessionStatus.PENDING
    requested_strictness: str | None = None
    actual_level: str | None = None
    capabilities: dict = field(default_factory=dict)
    warnings: list[str] = field(default_factory=list)
    failure_reason: str | None = None
    started_at: datetime | None = None
    ended_at: datetime | None = None
    unlocked_at: datetime | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict) -> "EnforcementSession":
        return cls(
            id=row["id"],
            task_id=row["task_id"],
            owner_id=row["owner_id"],
            device_id=row["device_id"],
            status=SessionStatus(row["status"]),
            requested_strictness=row.get("requested_strictness"),
            actual_level=row.get("actual_level"),
            capabilities=_json_load(row.get("capabilities"), {}),
            warnings=_json_load(row.get("warnings"), []),
            failure_reason=row.get("failure_reason"),
            started_at=parse_iso(row.get("started_at")),
            ended_at=parse_iso(row.get("ended_at")),
            unlocked_at=parse_iso(row.get("unlocked_at")),
            created_at=parse_iso(row.get("created_at")),
            updated_at=parse_iso(row.get("updated_at")),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_SESSION_STATUSES

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "taskId": self.task_id,
            "ownerId": self.owner_id,
            "deviceId": self.device_id,
            "status": self.status.value,
            "requestedStrictness": self.requested_strictness,
            "actualLevel": self.actual_level,
            "capabilities": dict(self.capabilities),
            "warnings": list(self.warnings),
            "failureReason": self.failure_reason,
            "startedAt": _iso_or_none(self.started_at),
            "endedAt": _iso_or_none(self.ended_at),
            "unlockedAt": _iso_or_none(self.unlocked_at),
            "createdAt": _iso_or_none(self.created_at),
            "updatedAt": _iso_or_none(self.updated_at),
        }


@dataclass
class Proof:
    id: str
    session_id: str
    method: ProofMethod
    result: dict
    accepted: bool
    score: int
    artifact_url: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_row(cls, row: dict) -> "Proof":
        return cls(
            id=row["id"],
            session_id=row["session_id"],
            method=ProofMethod(row["method"]),
            result=_json_load(row.get("result"), {}),
            accepted=bool(row["accepted"]),
            score=int(row["score"]),
            artifact_url=row.get("artifact_url"),
            created_at=parse_iso(row.get("created_at")),
        )

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "sessionId": self.session_id,
            "method": self.method.value,
            "result": dict(self.result),
            "accepted": self.accepted,
            "score": self.score,
            "artifactUrl": self.artifact_url,
            "createdAt": _iso_or_none(self.created_at),
        }
