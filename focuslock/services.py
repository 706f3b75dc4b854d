"""
FocusLock domain operations.

The request surface calls these; they own validation, ownership checks and
the ordering rule that every notification goes out only after the state
change it describes has committed.
"""

import logging
import re
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime

from focuslock import proof_validator, state_machine, stats
from focuslock.capabilities import (
    DeviceCapabilities,
    EnforcementLevel,
    NegotiationResult,
    negotiate,
)
from focuslock.errors import (
    FocusLockError,
    Forbidden,
    InvalidTransition,
    NotFound,
    ValidationError,
)
from focuslock.models import (
    EnforcementSession,
    Proof,
    ProofMethod,
    SessionStatus,
    Strictness,
    Task,
    TaskStatus,
    parse_iso,
    utcnow,
)
from focuslock.notifier import events
from focuslock.notifier.dispatcher import DispatchResult, NotificationDispatcher
from focuslock.observability import proofs_submitted, session_transitions, task_transitions
from focuslock.state_machine import SessionEvent
from focuslock.store import EnforcementStore

logger = logging.getLogger(__name__)

TITLE_MAX_LENGTH = 200
APP_NAME_MAX_LENGTH = 100
MIN_DURATION_MINUTES = 1
MAX_DURATION_MINUTES = 480

_CONTROL_CHARS_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")

# Fields an owner may change on a PENDING task, API name -> column
EDITABLE_TASK_FIELDS = {
    "title": "title",
    "startAt": "start_at",
    "durationMinutes": "duration_minutes",
    "strictness": "strictness",
    "targetApps": "target_apps",
    "proofMethods": "proof_methods",
    "documentUrl": "document_url",
}

TASK_RANGES = ("today", "week")

OPEN_SESSION_EXISTS = "Task already has an open enforcement session"


# ==================== Input cleaning ====================


def sanitize_text(value, max_length: int) -> str:
    if not isinstance(value, str):
        return ""
    return _CONTROL_CHARS_RE.sub("", value.strip()[:max_length]).strip()


def clean_title(value) -> str:
    title = sanitize_text(value, TITLE_MAX_LENGTH)
    if not title:
        raise ValidationError("title is required")
    return title


def clean_duration(value) -> int:
    if isinstance(value, bool) or not isinstance(value, int | float) or int(value) != value:
        raise ValidationError("durationMinutes must be a whole number")
    minutes = int(value)
    if not MIN_DURATION_MINUTES <= minutes <= MAX_DURATION_MINUTES:
        raise ValidationError(
            f"durationMinutes must be between {MIN_DURATION_MINUTES} and {MAX_DURATION_MINUTES}"
        )
    return minutes


def clean_start(value) -> datetime:
    if value is None or value == "":
        raise ValidationError("startAt is required")
    try:
        return parse_iso(value)
    except (TypeError, ValueError) as e:
        raise ValidationError("startAt must be an ISO-8601 timestamp") from e


def clean_strictness(value) -> Strictness:
    try:
        return Strictness(str(value).upper())
    except ValueError as e:
        raise ValidationError("strictness must be SOFT, MEDIUM or HARD") from e


def clean_apps(value) -> list[str]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ValidationError("targetApps must be a list")
    return [app for app in (sanitize_text(v, APP_NAME_MAX_LENGTH) for v in value) if app]


def clean_proof_methods(value) -> list[str]:
    if value is None:
        return [ProofMethod.SCREENSHOT.value]
    if not isinstance(value, list) or not value:
        raise ValidationError("proofMethods must be a non-empty list")
    methods = []
    for item in value:
        method = proof_validator.parse_method(str(item).lower()).value
        if method not in methods:
            methods.append(method)
    return methods


def clean_document_url(value) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError("documentUrl must be a string")
    return sanitize_text(value.replace("..", ""), 2048) or None


# ==================== Results ====================


@dataclass
class SessionUpdate:
    session: EnforcementSession
    warnings: list[str] = field(default_factory=list)


@dataclass
class ProofOutcome:
    accepted: bool
    score: int
    proof: Proof
    session: EnforcementSession

    def to_dict(self) -> dict:
        return {
            "accepted": self.accepted,
            "valid": self.accepted,
            "score": self.score,
            "proof": self.proof.to_dict(),
            "session": self.session.to_dict(),
        }


class FocusLockService:
    """Owner-scoped operations over the store, publishing through the dispatcher."""

    def __init__(
        self,
        store: EnforcementStore,
        dispatcher: NotificationDispatcher,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.clock = clock

    # ==================== Lookups ====================

    def get_task(self, owner_id: str, task_id: str) -> Task:
        task = self.store.get_task(task_id)
        if task is None:
            raise NotFound("Task")
        if task.owner_id != owner_id:
            raise Forbidden()
        return task

    def get_session(self, owner_id: str, session_id: str) -> EnforcementSession:
        session = self.store.get_session(session_id)
        if session is None:
            raise NotFound("Session")
        if session.owner_id != owner_id:
            raise Forbidden()
        return session

    def get_session_with_proofs(
        self, owner_id: str, session_id: str
    ) -> tuple[EnforcementSession, list[Proof]]:
        session = self.get_session(owner_id, session_id)
        return session, self.store.list_proofs(session.id)

    def list_tasks(self, owner_id: str, range_: str | None = None) -> list[Task]:
        if range_ is None:
            return self.store.list_tasks_for_owner(owner_id)
        if range_ not in TASK_RANGES:
            raise ValidationError(f"range must be one of {', '.join(TASK_RANGES)}")
        now = self.clock()
        bounds = stats.day_bounds(now) if range_ == "today" else stats.week_bounds(now)
        return self.store.list_tasks_for_owner(owner_id, start_from=bounds[0], start_to=bounds[1])

    def list_active_tasks(self, owner_id: str) -> list[Task]:
        return self.store.list_tasks_for_owner(owner_id, status=TaskStatus.ACTIVE)

    # ==================== Tasks ====================

    def create_task(self, owner_id: str, payload: dict) -> Task:
        target_apps = clean_apps(payload.get("targetApps"))
        document_url = clean_document_url(payload.get("documentUrl"))
        if not target_apps and not document_url:
            raise ValidationError("At least one target app or a document is required")

        task = self.store.create_task(
            owner_id=owner_id,
            title=clean_title(payload.get("title")),
            start_at=clean_start(payload.get("startAt")),
            duration_minutes=clean_duration(payload.get("durationMinutes")),
            strictness=clean_strictness(payload.get("strictness", Strictness.MEDIUM.value)),
            target_apps=target_apps,
            proof_methods=clean_proof_methods(payload.get("proofMethods")),
            document_url=document_url,
            now=self.clock(),
        )
        logger.info("Created task %s for %s starting %s", task.id, owner_id, task.start_at)
        return task

    def update_task(self, owner_id: str, task_id: str, patch: dict) -> Task:
        """Whitelisted edit, only while the task is PENDING."""
        if "status" in patch or "endAt" in patch:
            raise ValidationError("status and endAt cannot be edited")
        unknown = set(patch) - set(EDITABLE_TASK_FIELDS)
        if unknown:
            raise ValidationError(f"Fields not editable: {', '.join(sorted(unknown))}")

        task = self.get_task(owner_id, task_id)
        if task.status != TaskStatus.PENDING:
            raise InvalidTransition(task.status.value, message="Only pending tasks can be edited")

        cleaners = {
            "title": clean_title,
            "startAt": clean_start,
            "durationMinutes": clean_duration,
            "strictness": clean_strictness,
            "targetApps": clean_apps,
            "proofMethods": clean_proof_methods,
            "documentUrl": clean_document_url,
        }
        fields = {EDITABLE_TASK_FIELDS[k]: cleaners[k](v) for k, v in patch.items()}

        apps = fields.get("target_apps", task.target_apps)
        doc = fields.get("document_url", task.document_url)
        if not apps and not doc:
            raise ValidationError("At least one target app or a document is required")

        updated = self.store.update_task_fields(
            task_id, fields, expected_status=TaskStatus.PENDING, now=self.clock()
        )
        if updated is None:
            current = self.store.get_task(task_id)
            if current is None:
                raise NotFound("Task")
            raise InvalidTransition(
                current.status.value, message="Only pending tasks can be edited"
            )
        return updated

    def delete_task(self, owner_id: str, task_id: str) -> None:
        task = self.get_task(owner_id, task_id)
        if task.status == TaskStatus.ACTIVE:
            raise InvalidTransition(task.status.value, message="An active task cannot be deleted")
        if not self.store.delete_task(task_id, owner_id):
            raise NotFound("Task")
        logger.info("Deleted task %s for %s", task_id, owner_id)

    def start_task(self, owner_id: str, task_id: str) -> Task:
        """Manual start ahead of the scheduled time."""
        task = self.get_task(owner_id, task_id)
        state_machine.check_task_transition(task.status, TaskStatus.ACTIVE)
        moved = self.store.update_task_status(
            task_id, TaskStatus.PENDING, TaskStatus.ACTIVE, now=self.clock()
        )
        if not moved:
            raise self._lost_task_race(task_id, TaskStatus.ACTIVE)
        task_transitions.inc(to=TaskStatus.ACTIVE.value, source="manual")

        task = self.store.get_task(task_id)
        self.dispatcher.dispatch(events.task_started(task))
        return task

    def abandon_task(self, owner_id: str, task_id: str, reason: str = "abandoned") -> Task:
        """Give up on a task: it and its open session both end FAILED."""
        task = self.get_task(owner_id, task_id)
        state_machine.check_task_transition(task.status, TaskStatus.FAILED)
        now = self.clock()
        if not self.store.update_task_status(task_id, task.status, TaskStatus.FAILED, now=now):
            raise self._lost_task_race(task_id, TaskStatus.FAILED)
        task_transitions.inc(to=TaskStatus.FAILED.value, source="abandon")

        session = self.store.get_open_session_for_task(task_id)
        if session is not None:
            failed = self._fail_session(session, reason, now)
            if failed is not None:
                self.dispatcher.dispatch(events.session_updated(failed, task))
        return self.store.get_task(task_id)

    def _lost_task_race(self, task_id: str, target: TaskStatus) -> FocusLockError:
        current = self.store.get_task(task_id)
        if current is None:
            return NotFound("Task")
        return InvalidTransition(current.status.value, target.value)

    # ==================== Sessions ====================

    def create_session(
        self, owner_id: str, task_id: str, device_id: str, requested_strictness: str | None = None
    ) -> EnforcementSession:
        """
        Open an enforcement session for an ACTIVE task.

        A PENDING session the scheduler pre-created is claimed by the
        calling device instead of opening a second one.
        """
        device_id = sanitize_text(device_id, 200)
        if not device_id:
            raise ValidationError("deviceId is required")
        task = self.get_task(owner_id, task_id)
        if task.status != TaskStatus.ACTIVE:
            raise InvalidTransition(
                task.status.value, message="Sessions can only be opened for active tasks"
            )
        strictness = clean_strictness(requested_strictness or task.strictness).value

        existing = self.store.get_open_session_for_task(task_id)
        if existing is not None:
            if existing.status != SessionStatus.PENDING:
                raise InvalidTransition(existing.status.value, message=OPEN_SESSION_EXISTS)
            claimed = self.store.update_session(
                existing.id,
                {"device_id": device_id, "requested_strictness": strictness},
                expected_status=SessionStatus.PENDING,
                now=self.clock(),
            )
            if claimed is None:
                raise InvalidTransition("OPEN", message=OPEN_SESSION_EXISTS)
            return claimed

        history = self.store.list_sessions_for_task(task_id)
        if any(s.status == SessionStatus.UNLOCKED for s in history):
            raise InvalidTransition(
                SessionStatus.UNLOCKED.value, message="Task was already unlocked by a proof"
            )

        session = self.store.create_session(
            task_id, owner_id, device_id, requested_strictness=strictness, now=self.clock()
        )
        logger.info("Opened session %s for task %s on device %s", session.id, task_id, device_id)
        return session

    def update_session_status(
        self,
        owner_id: str,
        session_id: str,
        target: str,
        capabilities: dict | None = None,
        reason: str | None = None,
    ) -> SessionUpdate:
        """
        Owner-driven session move: LOCKED (device confirmed, with an
        optional capability report), PROOF_REQUIRED (unlock request) or
        FAILED (device lost).
        """
        try:
            target_status = SessionStatus(str(target).upper())
        except ValueError as e:
            raise ValidationError(f"Unknown session status: {target}") from e

        session = self.get_session(owner_id, session_id)
        event = state_machine.event_for_target(session.status, target_status)
        now = self.clock()
        warnings: list[str] = []

        if event == SessionEvent.FAILURE:
            updated = self._fail_session(session, sanitize_text(reason, 200) or "device_lost", now)
        else:
            fields: dict = {"status": target_status}
            if event == SessionEvent.LOCK_CONFIRMED:
                result = self._negotiate(session, capabilities)
                warnings = result.warnings
                snapshot = {}
                if capabilities:
                    snapshot = DeviceCapabilities.from_report(capabilities).to_dict()
                fields.update(
                    actual_level=result.level.value,
                    capabilities=snapshot,
                    warnings=warnings,
                    started_at=now,
                )
            updated = self.store.update_session(
                session.id, fields, expected_status=session.status, now=now
            )
            if updated is not None:
                session_transitions.inc(to=target_status.value, source="owner")

        if updated is None:
            current = self.store.get_session(session_id)
            raise InvalidTransition(
                current.status.value if current else "DELETED", target_status.value
            )

        task = self.store.get_task(updated.task_id)
        self.dispatcher.dispatch(events.session_updated(updated, task))
        return SessionUpdate(session=updated, warnings=warnings)

    def _negotiate(self, session: EnforcementSession, report: dict | None) -> NegotiationResult:
        requested = session.requested_strictness
        if requested is None:
            task = self.store.get_task(session.task_id)
            requested = task.strictness.value if task else Strictness.MEDIUM.value
        if report is None:
            return NegotiationResult(level=EnforcementLevel(requested))
        if not isinstance(report, dict):
            raise ValidationError("capabilities must be an object")
        return negotiate(requested, DeviceCapabilities.from_report(report))

    def _fail_session(
        self, session: EnforcementSession, reason: str, now: datetime
    ) -> EnforcementSession | None:
        target = state_machine.apply(session.status, SessionEvent.FAILURE)
        updated = self.store.update_session(
            session.id,
            {"status": target, "failure_reason": reason, "ended_at": now},
            expected_status=session.status,
            now=now,
        )
        if updated is not None:
            session_transitions.inc(to=target.value, source="failure")
            logger.info("Session %s failed: %s", session.id, reason)
        return updated

    # ==================== Proofs ====================

    def submit_proof(
        self, owner_id: str, session_id: str, method: str, payload: dict | None
    ) -> ProofOutcome:
        """
        Score and record a proof.

        A rejected proof is stored and the session stays PROOF_REQUIRED.
        An accepted proof and the move to UNLOCKED commit together; if a
        concurrent submission unlocked the session first this raises
        InvalidTransition and nothing is written.
        """
        proof_method = proof_validator.parse_method(method)
        session = self.get_session(owner_id, session_id)
        task = self.store.get_task(session.task_id)
        if task is not None and proof_method.value not in task.proof_methods:
            raise ValidationError(f"Proof method {proof_method.value} is not allowed for this task")

        verdict = proof_validator.validate(proof_method.value, payload)
        now = self.clock()

        if session.status == SessionStatus.LOCKED:
            session = self._request_unlock(session, now)
        if session.status != SessionStatus.PROOF_REQUIRED:
            raise InvalidTransition(
                session.status.value,
                message=f"Proof not accepted while session is {session.status.value}",
            )

        proof_fields = {
            "method": proof_method,
            "result": verdict.result,
            "accepted": verdict.accepted,
            "score": verdict.score,
            "artifact_url": verdict.artifact_url,
        }

        if not verdict.accepted:
            state_machine.apply(session.status, SessionEvent.PROOF_REJECTED)
            proof = self.store.create_proof({**proof_fields, "session_id": session.id}, now=now)
            proofs_submitted.inc(method=proof_method.value, outcome="rejected")
            logger.info(
                "Rejected %s proof for session %s (score %d)",
                proof_method.value,
                session.id,
                verdict.score,
            )
            return ProofOutcome(accepted=False, score=verdict.score, proof=proof, session=session)

        target = state_machine.apply(session.status, SessionEvent.PROOF_ACCEPTED)
        proof, unlocked = self.store.atomic_create_proof_and_update_session(
            proof_fields,
            session.id,
            {"status": target, "unlocked_at": now, "ended_at": now},
            expected_status=SessionStatus.PROOF_REQUIRED,
            now=now,
        )
        proofs_submitted.inc(method=proof_method.value, outcome="accepted")
        session_transitions.inc(to=target.value, source="proof")
        logger.info("Accepted %s proof for session %s, unlocked", proof_method.value, session.id)

        self.dispatcher.dispatch(events.session_unlocked(unlocked, proof, task))
        return ProofOutcome(accepted=True, score=verdict.score, proof=proof, session=unlocked)

    def _request_unlock(self, session: EnforcementSession, now: datetime) -> EnforcementSession:
        target = state_machine.apply(session.status, SessionEvent.UNLOCK_REQUESTED)
        updated = self.store.update_session(
            session.id, {"status": target}, expected_status=SessionStatus.LOCKED, now=now
        )
        if updated is None:
            # Scheduler got there first; take whatever state it left
            return self.store.get_session(session.id) or session
        session_transitions.inc(to=target.value, source="unlock_request")
        return updated

    # ==================== Delivery ====================

    def register_push_token(self, owner_id: str, token: str, platform: str | None = None) -> None:
        token = sanitize_text(token, 4096)
        if not token:
            raise ValidationError("token is required")
        platform = sanitize_text(platform, 32) or None
        self.store.set_delivery_token(owner_id, token, platform, now=self.clock())
        logger.info("Registered push token for %s", owner_id)

    def unregister_push_token(self, owner_id: str) -> bool:
        return self.store.clear_delivery_token(owner_id)

    def report_violation(
        self, owner_id: str, task_id: str, violation_type: str, blocked_app: str | None = None
    ) -> DispatchResult:
        if violation_type not in events.VIOLATION_TYPES:
            allowed = ", ".join(events.VIOLATION_TYPES)
            raise ValidationError(f"violationType must be one of {allowed}")
        task = self.get_task(owner_id, task_id)
        if task.status != TaskStatus.ACTIVE:
            raise InvalidTransition(
                task.status.value, message="Violations can only be reported for active tasks"
            )
        app = sanitize_text(blocked_app, APP_NAME_MAX_LENGTH) or None
        logger.info("Focus violation %s on task %s for %s", violation_type, task_id, owner_id)
        return self.dispatcher.dispatch(events.focus_violation(task, violation_type, app))

    def event_history(
        self, owner_id: str, limit: int = 100, since: str | None = None
    ) -> list[events.NotificationEvent]:
        since_dt = None
        if since:
            try:
                since_dt = parse_iso(since)
            except ValueError as e:
                raise ValidationError("since must be an ISO-8601 timestamp") from e
        return self.dispatcher.hub.history(owner_id, limit=limit, since=since_dt)

    # ==================== Stats ====================

    def user_stats(self, owner_id: str) -> dict:
        return stats.user_stats(self.store.list_tasks_for_owner(owner_id))

    def progress_stats(self, owner_id: str) -> dict:
        return stats.progress_stats(self.store.list_tasks_for_owner(owner_id), self.clock())
