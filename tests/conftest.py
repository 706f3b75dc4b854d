"""
Test configuration - repo root on sys.path, isolated FocusLock home, and
the shared fixtures most suites build on.

Nothing here runs the scheduler thread: tests drive scheduler.tick(now)
directly with a controllable clock.
"""

import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

REPO_ROOT = Path(__file__).parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

from focuslock.config import Settings  # noqa: E402
from focuslock.models import to_iso  # noqa: E402
from focuslock.notifier import NotificationDispatcher, UserChannelHub  # noqa: E402
from focuslock.scheduler import TaskScheduler  # noqa: E402
from focuslock.services import FocusLockService  # noqa: E402
from focuslock.store import EnforcementStore  # noqa: E402
from focuslock_api.server import create_app  # noqa: E402

# A Monday, so week-bounded listings are easy to reason about
T0 = datetime(2026, 3, 2, 9, 0, tzinfo=UTC)


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture(autouse=True)
def isolated_home(tmp_path, monkeypatch):
    """Keep every test away from ~/.focuslock and any configured tokens."""
    monkeypatch.setenv("FOCUSLOCK_HOME", str(tmp_path / "home"))
    monkeypatch.delenv("FOCUSLOCK_DB", raising=False)
    monkeypatch.delenv("FOCUSLOCK_CONFIG", raising=False)
    monkeypatch.delenv("FOCUSLOCK_API_TOKENS", raising=False)


@pytest.fixture
def clock():
    return FakeClock(T0)


@pytest.fixture
def store(tmp_path):
    return EnforcementStore(tmp_path / "focuslock.db")


@pytest.fixture
def hub():
    return UserChannelHub(history_size=50)


@pytest.fixture
def dispatcher(hub, store):
    return NotificationDispatcher(hub, store=store, push=None, push_mode="disabled")


@pytest.fixture
def service(store, dispatcher, clock):
    return FocusLockService(store, dispatcher, clock=clock)


@pytest.fixture
def scheduler(store, dispatcher, clock):
    return TaskScheduler(store, dispatcher, interval_seconds=0.01, clock=clock)


@pytest.fixture
def make_task(service, clock):
    """Create a task through the service, starting five minutes from the clock."""

    def _make(owner_id="alice", start_in=timedelta(minutes=5), duration=30, **overrides):
        payload = {
            "title": "Read chapter 4",
            "startAt": to_iso(clock() + start_in),
            "durationMinutes": duration,
            "strictness": "HARD",
            "targetApps": ["com.instagram.android"],
            "proofMethods": ["screenshot", "quiz", "checkin"],
        }
        payload.update(overrides)
        return service.create_task(owner_id, payload)

    return _make


@pytest.fixture
def active_session(service, scheduler, make_task, clock):
    """An ACTIVE task with a LOCKED session on device-1, owned by alice."""

    def _make(owner_id="alice", **overrides):
        task = make_task(owner_id=owner_id, start_in=timedelta(seconds=-1), **overrides)
        scheduler.tick(clock())
        session = service.create_session(owner_id, task.id, "device-1")
        locked = service.update_session_status(owner_id, session.id, "LOCKED").session
        return task, locked

    return _make


@pytest.fixture
def app(store, dispatcher, clock):
    return create_app(
        settings=Settings(),
        store=store,
        dispatcher=dispatcher,
        start_scheduler=False,
        clock=clock,
    )


@pytest.fixture
def client(app):
    with TestClient(app, headers={"X-User-Id": "alice"}) as c:
        yield c
