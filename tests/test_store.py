"""Tests for EnforcementStore: conditional updates, session uniqueness, atomic proofs."""

import threading
from datetime import timedelta

import pytest

from focuslock.errors import InvalidTransition, NotFound
from focuslock.models import SessionStatus, TaskStatus
from tests.conftest import T0


@pytest.fixture
def task(store):
    return store.create_task(
        owner_id="alice",
        title="Essay draft",
        start_at=T0,
        duration_minutes=45,
        strictness="MEDIUM",
        target_apps=["com.twitter.android"],
        now=T0,
    )


class TestTasks:
    def test_create_computes_end(self, task):
        assert task.status == TaskStatus.PENDING
        assert task.end_at == T0 + timedelta(minutes=45)
        assert task.proof_methods == ["screenshot"]

    def test_conditional_status_update(self, store, task):
        assert store.update_task_status(task.id, TaskStatus.PENDING, TaskStatus.ACTIVE, now=T0)
        # Second writer expecting PENDING loses
        assert not store.update_task_status(task.id, TaskStatus.PENDING, TaskStatus.ACTIVE, now=T0)
        assert store.get_task(task.id).status == TaskStatus.ACTIVE

    def test_update_fields_recomputes_end(self, store, task):
        updated = store.update_task_fields(task.id, {"duration_minutes": 90}, now=T0)
        assert updated.end_at == T0 + timedelta(minutes=90)

        later = T0 + timedelta(hours=2)
        moved = store.update_task_fields(task.id, {"start_at": later}, now=T0)
        assert moved.end_at == later + timedelta(minutes=90)

    def test_update_fields_refuses_status(self, store, task):
        with pytest.raises(ValueError):
            store.update_task_fields(task.id, {"status": "ACTIVE"})

    def test_update_fields_after_activation_returns_none(self, store, task):
        store.update_task_status(task.id, TaskStatus.PENDING, TaskStatus.ACTIVE)
        assert store.update_task_fields(task.id, {"title": "late edit"}) is None

    def test_due_queries(self, store, task):
        assert store.get_tasks_pending_due_to_start(T0 - timedelta(seconds=1)) == []
        assert [t.id for t in store.get_tasks_pending_due_to_start(T0)] == [task.id]

        store.update_task_status(task.id, TaskStatus.PENDING, TaskStatus.ACTIVE)
        assert store.get_tasks_active_due_to_stop(T0 + timedelta(minutes=44)) == []
        assert [t.id for t in store.get_tasks_active_due_to_stop(T0 + timedelta(minutes=45))] == [
            task.id
        ]

    def test_list_is_owner_scoped(self, store, task):
        store.create_task("bob", "Bob's task", T0, 10, target_apps=["x"], now=T0)
        assert [t.id for t in store.list_tasks_for_owner("alice")] == [task.id]

    def test_delete_requires_owner(self, store, task):
        assert not store.delete_task(task.id, "bob")
        assert store.delete_task(task.id, "alice")
        assert store.get_task(task.id) is None


class TestSessions:
    def test_one_open_session_per_task(self, store, task):
        store.create_session(task.id, "alice", "device-1", now=T0)
        with pytest.raises(InvalidTransition):
            store.create_session(task.id, "alice", "device-2", now=T0)

    def test_new_session_allowed_after_terminal(self, store, task):
        first = store.create_session(task.id, "alice", "device-1", now=T0)
        store.update_session(first.id, {"status": SessionStatus.FAILED})
        second = store.create_session(task.id, "alice", "device-1", now=T0)
        assert second.id != first.id
        assert store.get_open_session_for_task(task.id).id == second.id
        assert len(store.list_sessions_for_task(task.id)) == 2

    def test_conditional_session_update(self, store, task):
        session = store.create_session(task.id, "alice", "device-1", now=T0)
        locked = store.update_session(
            session.id,
            {"status": SessionStatus.LOCKED, "warnings": ["w1"]},
            expected_status=SessionStatus.PENDING,
        )
        assert locked.status == SessionStatus.LOCKED
        assert locked.warnings == ["w1"]
        assert (
            store.update_session(
                session.id, {"status": SessionStatus.FAILED}, expected_status=SessionStatus.PENDING
            )
            is None
        )

    def test_deleting_task_cascades(self, store, task):
        session = store.create_session(task.id, "alice", "device-1", now=T0)
        store.delete_task(task.id, "alice")
        assert store.get_session(session.id) is None


class TestProofs:
    @pytest.fixture
    def proof_required(self, store, task):
        session = store.create_session(task.id, "alice", "device-1", now=T0)
        return store.update_session(session.id, {"status": SessionStatus.PROOF_REQUIRED})

    def _accept(self, store, session_id):
        return store.atomic_create_proof_and_update_session(
            {"method": "checkin", "result": {"valid": True}, "accepted": True, "score": 90},
            session_id,
            {"status": SessionStatus.UNLOCKED, "unlocked_at": T0},
            expected_status=SessionStatus.PROOF_REQUIRED,
            now=T0,
        )

    def test_atomic_unlock(self, store, proof_required):
        proof, session = self._accept(store, proof_required.id)
        assert session.status == SessionStatus.UNLOCKED
        assert proof.session_id == session.id
        assert proof.accepted is True

    def test_second_accept_writes_nothing(self, store, proof_required):
        self._accept(store, proof_required.id)
        with pytest.raises(InvalidTransition):
            self._accept(store, proof_required.id)
        assert len(store.list_proofs(proof_required.id)) == 1

    def test_unknown_session(self, store):
        with pytest.raises(NotFound):
            self._accept(store, "missing")
        with pytest.raises(NotFound):
            store.create_proof({"session_id": "missing", "method": "quiz"})

    def test_concurrent_accepts_unlock_once(self, store, proof_required):
        barrier = threading.Barrier(8)
        outcomes = []

        def submit():
            barrier.wait()
            try:
                self._accept(store, proof_required.id)
                outcomes.append("unlocked")
            except InvalidTransition:
                outcomes.append("lost")

        threads = [threading.Thread(target=submit) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert outcomes.count("unlocked") == 1
        assert outcomes.count("lost") == 7
        accepted = [p for p in store.list_proofs(proof_required.id) if p.accepted]
        assert len(accepted) == 1


class TestDeliveryTokens:
    def test_latest_registration_wins(self, store):
        store.set_delivery_token("alice", "tok-1", "android")
        store.set_delivery_token("alice", "tok-2", "android")
        assert store.get_delivery_token("alice") == "tok-2"

    def test_clear(self, store):
        store.set_delivery_token("alice", "tok-1")
        assert store.clear_delivery_token("alice") is True
        assert store.clear_delivery_token("alice") is False
        assert store.get_delivery_token("alice") is None

    def test_ping(self, store):
        assert store.ping() is True
