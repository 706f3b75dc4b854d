"""
Tests for TaskScheduler.

Ticks are driven by hand with explicit timestamps; the loop thread is
only exercised by the start/stop test.
"""

from datetime import timedelta

from focuslock.models import SessionStatus, TaskStatus
from focuslock.notifier.events import EventType
from focuslock.scheduler import UNASSIGNED_DEVICE, SchedulerHealth, TaskScheduler


def _event_types(hub, owner_id="alice"):
    return [e.type for e in hub.history(owner_id)]


class TestActivation:
    def test_due_task_activates_once(self, scheduler, make_task, store, hub, clock):
        task = make_task(start_in=timedelta(seconds=-1), duration=30)

        report = scheduler.tick(clock())

        assert report.activated == [task.id]
        assert store.get_task(task.id).status == TaskStatus.ACTIVE
        assert _event_types(hub) == [EventType.TASK_AUTO_STARTED]

    def test_event_carries_restriction_payload(self, scheduler, make_task, hub, clock):
        task = make_task(start_in=timedelta(seconds=-1))
        scheduler.tick(clock())

        event = hub.history("alice")[0]
        assert event.payload["taskId"] == task.id
        assert event.payload["strictness"] == "HARD"
        assert event.payload["targetApps"] == ["com.instagram.android"]
        assert event.payload["durationMinutes"] == 30
        assert event.dedupe_key == f"task_auto_started:{task.id}"

    def test_second_sweep_is_noop(self, scheduler, make_task, hub, clock):
        make_task(start_in=timedelta(seconds=-1))
        scheduler.tick(clock())
        report = scheduler.tick(clock())

        assert report.activated == []
        assert _event_types(hub) == [EventType.TASK_AUTO_STARTED]

    def test_future_task_untouched(self, scheduler, make_task, store, clock):
        task = make_task(start_in=timedelta(minutes=5))
        scheduler.tick(clock())
        assert store.get_task(task.id).status == TaskStatus.PENDING

    def test_task_moved_between_read_and_write_is_skipped(self, scheduler, make_task, store, clock):
        task = make_task(start_in=timedelta(seconds=-1))
        due = store.get_tasks_pending_due_to_start(clock())
        store.update_task_status(task.id, TaskStatus.PENDING, TaskStatus.ACTIVE)

        assert scheduler._activate(due[0], clock()) is False

    def test_auto_create_session(self, store, dispatcher, make_task, hub, clock):
        scheduler = TaskScheduler(store, dispatcher, auto_create_session=True, clock=clock)
        task = make_task(start_in=timedelta(seconds=-1))
        scheduler.tick(clock())

        session = store.get_open_session_for_task(task.id)
        assert session.status == SessionStatus.PENDING
        assert session.device_id == UNASSIGNED_DEVICE
        assert hub.history("alice")[0].session_id == session.id


class TestExpiry:
    def test_completes_after_end(self, scheduler, make_task, store, hub, clock):
        task = make_task(start_in=timedelta(seconds=-1), duration=30)
        scheduler.tick(clock())

        report = scheduler.tick(clock.advance(minutes=30))

        assert report.completed == [task.id]
        assert store.get_task(task.id).status == TaskStatus.COMPLETED
        assert _event_types(hub) == [EventType.TASK_AUTO_STARTED, EventType.TASK_COMPLETED]

        # No further sweeps act on it
        scheduler.tick(clock.advance(minutes=5))
        assert len(hub.history("alice")) == 2

    def test_missed_window_starts_then_completes(self, scheduler, make_task, hub, clock):
        """A task whose whole window already passed is started, then completed, in one tick."""
        task = make_task(start_in=timedelta(minutes=-60), duration=30)
        report = scheduler.tick(clock())
        assert report.activated == [task.id]
        assert report.completed == [task.id]
        assert _event_types(hub) == [EventType.TASK_AUTO_STARTED, EventType.TASK_COMPLETED]

    def test_locked_session_moves_to_proof_required(
        self, scheduler, active_session, store, hub, clock
    ):
        _, session = active_session()
        scheduler.tick(clock.advance(minutes=31))

        assert store.get_session(session.id).status == SessionStatus.PROOF_REQUIRED
        completed = hub.history("alice")[-1]
        assert completed.type == EventType.TASK_COMPLETED
        assert completed.payload["sessionStatus"] == "PROOF_REQUIRED"

    def test_unconfirmed_session_times_out(self, scheduler, service, make_task, store, clock):
        task = make_task(start_in=timedelta(seconds=-1))
        scheduler.tick(clock())
        session = service.create_session("alice", task.id, "device-1")

        scheduler.tick(clock.advance(minutes=31))

        failed = store.get_session(session.id)
        assert failed.status == SessionStatus.FAILED
        assert failed.failure_reason == "timeout"
        assert failed.ended_at is not None


class TestFailureIsolation:
    def test_one_bad_task_does_not_abort_sweep(
        self, scheduler, make_task, store, monkeypatch, clock
    ):
        bad = make_task(start_in=timedelta(seconds=-2), title="bad")
        good = make_task(start_in=timedelta(seconds=-1), title="good")
        original = store.update_task_status

        def flaky(task_id, *args, **kwargs):
            if task_id == bad.id:
                raise RuntimeError("disk on fire")
            return original(task_id, *args, **kwargs)

        monkeypatch.setattr(store, "update_task_status", flaky)
        report = scheduler.tick(clock())

        assert report.activated == [good.id]
        assert "disk on fire" in report.errors[bad.id]
        assert not report.ok

    def test_failed_task_is_retried_next_tick(
        self, scheduler, make_task, store, monkeypatch, clock
    ):
        task = make_task(start_in=timedelta(seconds=-1))
        original = store.update_task_status

        def broken(*args, **kwargs):
            raise RuntimeError("locked")

        monkeypatch.setattr(store, "update_task_status", broken)
        scheduler.tick(clock())
        monkeypatch.setattr(store, "update_task_status", original)

        report = scheduler.tick(clock())
        assert report.activated == [task.id]

    def test_unreadable_due_set_is_recorded(self, scheduler, store, monkeypatch, clock):
        def boom(now=None):
            raise RuntimeError("store down")

        monkeypatch.setattr(store, "get_tasks_pending_due_to_start", boom)
        report = scheduler.tick(clock())

        assert "activation:sweep" in report.errors
        assert scheduler.status()["health"] == SchedulerHealth.DEGRADED.value


class TestHealth:
    def test_unhealthy_after_three_failed_ticks(self, scheduler, store, monkeypatch, clock):
        original = store.get_tasks_active_due_to_stop

        def boom(now=None):
            raise RuntimeError("store down")

        monkeypatch.setattr(store, "get_tasks_active_due_to_stop", boom)
        for _ in range(3):
            scheduler.tick(clock())

        status = scheduler.status()
        assert status["health"] == "unhealthy"
        assert status["consecutive_failures"] == 3
        assert status["last_error"] == "store down"

        monkeypatch.setattr(store, "get_tasks_active_due_to_stop", original)
        scheduler.tick(clock())
        assert scheduler.status()["health"] == "healthy"


class TestWorkers:
    def test_parallel_sweep_activates_all(self, store, dispatcher, make_task, hub, clock):
        scheduler = TaskScheduler(store, dispatcher, max_workers=4, clock=clock)
        tasks = [make_task(start_in=timedelta(seconds=-1), title=f"t{i}") for i in range(6)]

        report = scheduler.tick(clock())

        assert sorted(report.activated) == sorted(t.id for t in tasks)
        assert len(hub.history("alice")) == 6


class TestLifecycle:
    def test_start_and_stop(self, scheduler, make_task, store):
        # Uses the fake clock, so the due task is picked up by the first tick
        task = make_task(start_in=timedelta(seconds=-1))
        scheduler.start()
        assert scheduler.running
        scheduler.stop(timeout=5)

        assert not scheduler.running
        assert store.get_task(task.id).status == TaskStatus.ACTIVE
        assert scheduler.status()["total_ticks"] >= 1

    def test_run_once_cli(self, tmp_path, monkeypatch):
        from focuslock import scheduler as scheduler_module

        monkeypatch.setenv("FOCUSLOCK_DB", str(tmp_path / "cli.db"))
        assert scheduler_module.main(["run-once"]) == 0
