"""Tests for notification event payloads."""

from focuslock.models import EnforcementSession, SessionStatus, Task
from focuslock.notifier import events
from focuslock.notifier.events import EventType
from tests.conftest import T0


def _task() -> Task:
    return Task(
        id="task-1",
        owner_id="alice",
        title="Read",
        start_at=T0,
        end_at=T0,
        duration_minutes=30,
        target_apps=["com.instagram.android"],
    )


class TestBuilders:
    def test_auto_started_payload(self):
        event = events.task_auto_started(_task())
        assert event.type == EventType.TASK_AUTO_STARTED
        for key in ("taskId", "title", "ownerId", "strictness", "targetApps", "durationMinutes"):
            assert key in event.payload

    def test_completed_payload(self):
        session = EnforcementSession(
            id="s1",
            task_id="task-1",
            owner_id="alice",
            device_id="d",
            status=SessionStatus.PROOF_REQUIRED,
        )
        event = events.task_completed(_task(), T0, session)
        assert event.payload["completedAt"] == "2026-03-02T09:00:00.000000+00:00"
        assert event.payload["sessionStatus"] == "PROOF_REQUIRED"
        assert event.session_id == "s1"

    def test_redelivered_event_shares_dedupe_key(self):
        a = events.task_started(_task())
        b = events.task_started(_task())
        assert a.id != b.id
        assert a.dedupe_key == b.dedupe_key == "task_started:task-1"

    def test_session_transitions_on_one_task_have_distinct_keys(self):
        session = EnforcementSession(
            id="s1", task_id="task-1", owner_id="alice", device_id="d", status=SessionStatus.LOCKED
        )
        locked = events.session_updated(session, _task())
        session.status = SessionStatus.PROOF_REQUIRED
        proof_required = events.session_updated(session, _task())

        assert locked.dedupe_key == "session_updated:s1:LOCKED"
        assert proof_required.dedupe_key == "session_updated:s1:PROOF_REQUIRED"

    def test_repeated_violations_are_not_collapsed(self):
        first = events.focus_violation(_task(), "task_close")
        second = events.focus_violation(_task(), "task_close")
        assert first.dedupe_key != second.dedupe_key
        assert first.dedupe_key == f"focus_violation:{first.id}"


class TestWireFormats:
    def test_sse_frame(self):
        frame = events.task_started(_task()).to_sse()
        assert frame.startswith("id: ")
        assert "\nevent: task_started\n" in frame
        assert frame.endswith("\n\n")

    def test_push_message_data_is_strings(self):
        message = events.task_auto_started(_task()).push_message()
        assert message["title"] == "Task Started"
        assert '"Read"' in message["body"]
        assert message["data"]["type"] == "task_auto_started"
        assert all(isinstance(v, str) for v in message["data"].values())
        assert message["data"]["targetApps"] == '["com.instagram.android"]'

    def test_violation_texts(self):
        task = _task()
        close = events.focus_violation(task, "task_close").push_message()
        assert close["body"].startswith("Task interrupted!")
        uninstall = events.focus_violation(task, "uninstall_attempt").push_message()
        assert uninstall["body"].startswith("Uninstall blocked!")
