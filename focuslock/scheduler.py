"""
FocusLock Scheduler - wall-clock driven task lifecycle.

Every tick runs two sweeps against the store, activation then expiry:

- activation: PENDING tasks whose start has passed become ACTIVE
  (task_auto_started is published)
- expiry: ACTIVE tasks whose end has passed become COMPLETED, and their
  open session moves to PROOF_REQUIRED, or to FAILED if the device never
  confirmed the lock (task_completed is published)

Each status write is conditional on the status the sweep read, so a task
another actor already moved is skipped silently. A failure on one task is
logged and counted; the rest of the sweep carries on and the failed task
is picked up again next tick.

Usage:
    python -m focuslock.scheduler run-once     # one tick and exit
    python -m focuslock.scheduler start        # run in the foreground

Run standalone, the scheduler has no live subscribers of its own and
reaches owners through the push fallback only. Inside the API process it
shares the API's live hub.
"""

import contextvars
import enum
import logging
import signal
import threading
import time
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime

from focuslock import state_machine
from focuslock.models import EnforcementSession, SessionStatus, Task, TaskStatus, to_iso, utcnow
from focuslock.notifier import events
from focuslock.notifier.dispatcher import NotificationDispatcher
from focuslock.observability import (
    REGISTRY,
    RequestContext,
    generate_request_id,
    scheduler_sweep_errors,
    scheduler_tick_duration,
    scheduler_ticks,
    session_transitions,
    task_transitions,
)
from focuslock.state_machine import SessionEvent
from focuslock.store import EnforcementStore

logger = logging.getLogger(__name__)

# device_id of a session the scheduler opened before any device claimed it
UNASSIGNED_DEVICE = ""


class SchedulerHealth(enum.StrEnum):
    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


@dataclass
class TickReport:
    """Outcome of one tick."""

    started_at: datetime
    activated: list[str] = field(default_factory=list)
    completed: list[str] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)
    errors: dict[str, str] = field(default_factory=dict)
    duration_seconds: float = 0.0

    @property
    def ok(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict:
        return {
            "startedAt": to_iso(self.started_at),
            "activated": list(self.activated),
            "completed": list(self.completed),
            "skipped": list(self.skipped),
            "errors": dict(self.errors),
            "durationSeconds": round(self.duration_seconds, 4),
        }


@dataclass
class SchedulerState:
    """Runtime state, exposed through status() and the health endpoint."""

    total_ticks: int = 0
    total_errors: int = 0
    consecutive_failures: int = 0
    last_tick: datetime | None = None
    last_success: datetime | None = None
    last_error: str | None = None
    health: SchedulerHealth = SchedulerHealth.HEALTHY


class TaskScheduler:
    """
    Periodic actor driving task and session transitions from the clock.

    start() spawns the loop thread, which ticks immediately and then every
    interval_seconds. stop() sets the shutdown event; an in-flight tick
    finishes before the thread is joined. Tests skip the thread entirely
    and call tick(now) directly.
    """

    def __init__(
        self,
        store: EnforcementStore,
        dispatcher: NotificationDispatcher,
        interval_seconds: float = 30.0,
        auto_create_session: bool = False,
        max_workers: int = 1,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.interval_seconds = interval_seconds
        self.auto_create_session = auto_create_session
        self.max_workers = max(1, max_workers)
        self.clock = clock
        self.state = SchedulerState()
        self._state_lock = threading.Lock()
        self._tick_lock = threading.Lock()
        self._shutdown_event = threading.Event()
        self._thread: threading.Thread | None = None

    # ==================== Lifecycle ====================

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            logger.warning("Scheduler already running")
            return
        self._shutdown_event.clear()
        self._thread = threading.Thread(target=self._run, name="focuslock-scheduler", daemon=True)
        self._thread.start()
        logger.info("Scheduler started (interval=%ss)", self.interval_seconds)

    def stop(self, timeout: float | None = 30.0) -> None:
        self._shutdown_event.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
            if self._thread.is_alive():
                logger.warning("Scheduler thread did not stop within %ss", timeout)
            self._thread = None
        logger.info("Scheduler stopped")

    def _run(self) -> None:
        while not self._shutdown_event.is_set():
            self.tick()
            self._shutdown_event.wait(timeout=self.interval_seconds)

    # ==================== Tick ====================

    def tick(self, now: datetime | None = None) -> TickReport:
        """
        Run one activation sweep and one expiry sweep.

        Never raises: a failure reading the due set is recorded on the
        report and in the scheduler state like any per-task failure.
        """
        now = now or self.clock()
        report = TickReport(started_at=now)
        start = time.perf_counter()

        with self._tick_lock, RequestContext(generate_request_id("tick")):
            sweeps = (("activation", self.sweep_activation), ("expiry", self.sweep_expiry))
            for sweep_name, sweep in sweeps:
                try:
                    sweep(now, report)
                except Exception as e:
                    logger.exception("%s sweep failed", sweep_name)
                    report.errors[f"{sweep_name}:sweep"] = str(e)[:500]
                    scheduler_sweep_errors.inc(sweep=sweep_name)

        report.duration_seconds = time.perf_counter() - start
        scheduler_ticks.inc()
        scheduler_tick_duration.observe(report.duration_seconds)
        self._record(report)

        if report.activated or report.completed or report.errors:
            logger.info(
                "Tick done: %d activated, %d completed, %d skipped, %d errors",
                len(report.activated),
                len(report.completed),
                len(report.skipped),
                len(report.errors),
            )
        return report

    def _record(self, report: TickReport) -> None:
        with self._state_lock:
            state = self.state
            old_health = state.health
            state.total_ticks += 1
            state.last_tick = report.started_at
            if report.ok:
                state.consecutive_failures = 0
                state.last_success = report.started_at
            else:
                state.consecutive_failures += 1
                state.total_errors += len(report.errors)
                state.last_error = next(iter(report.errors.values()))

            if state.consecutive_failures == 0:
                state.health = SchedulerHealth.HEALTHY
            elif state.consecutive_failures < 3:
                state.health = SchedulerHealth.DEGRADED
            else:
                state.health = SchedulerHealth.UNHEALTHY

            if old_health != state.health:
                logger.warning(
                    "Scheduler health changed: %s -> %s (%d consecutive failed ticks)",
                    old_health.value,
                    state.health.value,
                    state.consecutive_failures,
                )

        REGISTRY.gauge("scheduler_health", "1 healthy, 0.5 degraded, 0 unhealthy").set(
            {"healthy": 1, "degraded": 0.5, "unhealthy": 0}[self.state.health.value]
        )

    def _for_each(
        self, tasks: list[Task], handler, sweep_name: str, now: datetime, report: TickReport
    ) -> None:
        """Run *handler* per task, isolating failures."""

        def run_one(task: Task) -> None:
            try:
                moved = handler(task, now)
            except Exception as e:
                logger.exception("%s failed for task %s", sweep_name, task.id)
                scheduler_sweep_errors.inc(sweep=sweep_name)
                report.errors[task.id] = str(e)[:500]
                return
            target = report.activated if sweep_name == "activation" else report.completed
            (target if moved else report.skipped).append(task.id)

        if self.max_workers == 1 or len(tasks) <= 1:
            for task in tasks:
                run_one(task)
            return

        with ThreadPoolExecutor(max_workers=self.max_workers) as pool:
            futures = [pool.submit(contextvars.copy_context().run, run_one, task) for task in tasks]
            for future in futures:
                future.result()

    # ==================== Activation ====================

    def sweep_activation(self, now: datetime, report: TickReport | None = None) -> TickReport:
        report = report or TickReport(started_at=now)
        due = self.store.get_tasks_pending_due_to_start(now)
        if due:
            logger.debug("%d task(s) due to start", len(due))
        self._for_each(due, self._activate, "activation", now, report)
        return report

    def _activate(self, task: Task, now: datetime) -> bool:
        state_machine.check_task_transition(task.status, TaskStatus.ACTIVE)
        moved = self.store.update_task_status(
            task.id, TaskStatus.PENDING, TaskStatus.ACTIVE, now=now
        )
        if not moved:
            logger.debug("Task %s already left PENDING, skipping", task.id)
            return False
        task_transitions.inc(to=TaskStatus.ACTIVE.value, source="scheduler")
        logger.info("Auto-started task %s (%s) for %s", task.id, task.title, task.owner_id)

        session = None
        if self.auto_create_session:
            session = self.store.get_open_session_for_task(task.id) or self.store.create_session(
                task.id,
                task.owner_id,
                UNASSIGNED_DEVICE,
                requested_strictness=task.strictness.value,
                now=now,
            )

        task.status = TaskStatus.ACTIVE
        self.dispatcher.dispatch(events.task_auto_started(task, session))
        return True

    # ==================== Expiry ====================

    def sweep_expiry(self, now: datetime, report: TickReport | None = None) -> TickReport:
        report = report or TickReport(started_at=now)
        due = self.store.get_tasks_active_due_to_stop(now)
        if due:
            logger.debug("%d task(s) due to stop", len(due))
        self._for_each(due, self._expire, "expiry", now, report)
        return report

    def _expire(self, task: Task, now: datetime) -> bool:
        state_machine.check_task_transition(task.status, TaskStatus.COMPLETED)
        moved = self.store.update_task_status(
            task.id, TaskStatus.ACTIVE, TaskStatus.COMPLETED, now=now
        )
        if not moved:
            logger.debug("Task %s already left ACTIVE, skipping", task.id)
            return False
        task_transitions.inc(to=TaskStatus.COMPLETED.value, source="scheduler")

        session = self._close_session_window(task, now)
        task.status = TaskStatus.COMPLETED
        logger.info(
            "Completed task %s for %s (session=%s)",
            task.id,
            task.owner_id,
            session.status.value if session else "none",
        )
        self.dispatcher.dispatch(events.task_completed(task, now, session))
        return True

    def _close_session_window(self, task: Task, now: datetime) -> EnforcementSession | None:
        """
        The enforcement window is over: a locked session now needs proof,
        a session whose device never confirmed the lock times out.
        """
        session = self.store.get_open_session_for_task(task.id)
        if session is None:
            return None

        if session.status == SessionStatus.LOCKED:
            target = state_machine.apply(session.status, SessionEvent.DURATION_ELAPSED)
            fields = {"status": target}
        elif session.status == SessionStatus.PENDING:
            target = state_machine.apply(session.status, SessionEvent.FAILURE)
            fields = {"status": target, "failure_reason": "timeout", "ended_at": now}
        else:
            return session

        updated = self.store.update_session(
            session.id, fields, expected_status=session.status, now=now
        )
        if updated is None:
            # Moved by the owner between our read and write
            return self.store.get_session(session.id)
        session_transitions.inc(to=target.value, source="scheduler")
        return updated

    # ==================== Status ====================

    def status(self) -> dict:
        with self._state_lock:
            s = self.state
            return {
                "running": self.running,
                "health": s.health.value,
                "interval_seconds": self.interval_seconds,
                "total_ticks": s.total_ticks,
                "total_errors": s.total_errors,
                "consecutive_failures": s.consecutive_failures,
                "last_tick": to_iso(s.last_tick) if s.last_tick else None,
                "last_success": to_iso(s.last_success) if s.last_success else None,
                "last_error": s.last_error,
            }


def build_scheduler(
    settings, store: EnforcementStore, dispatcher: NotificationDispatcher
) -> TaskScheduler:
    return TaskScheduler(
        store,
        dispatcher,
        interval_seconds=settings.scheduler.interval_seconds,
        auto_create_session=settings.scheduler.auto_create_session,
        max_workers=settings.scheduler.max_workers,
    )


def main(argv: list[str] | None = None) -> int:
    """CLI entry point."""
    import argparse

    from focuslock.config import load_settings
    from focuslock.notifier import UserChannelHub, build_dispatcher
    from focuslock.observability import configure_logging

    parser = argparse.ArgumentParser(description="FocusLock scheduler")
    parser.add_argument("action", choices=["start", "run-once"], help="Action to perform")
    parser.add_argument("--config", help="Path to a YAML config file")
    args = parser.parse_args(argv)

    settings = load_settings(args.config)
    configure_logging(settings.log_level)

    store = EnforcementStore()
    hub = UserChannelHub(history_size=settings.event_history_size)
    dispatcher = build_dispatcher(settings, hub, store)
    scheduler = build_scheduler(settings, store, dispatcher)

    if args.action == "run-once":
        report = scheduler.tick()
        dispatcher.close()
        logger.info("Run-once: %s", report.to_dict())
        return 0 if report.ok else 1

    stop_requested = threading.Event()

    def _handle_signal(signum, frame):
        logger.info("Received %s, shutting down...", signal.Signals(signum).name)
        stop_requested.set()

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    scheduler.start()
    stop_requested.wait()
    scheduler.stop()
    dispatcher.close()
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
