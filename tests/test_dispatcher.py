"""Tests for NotificationDispatcher routing between the live hub and push."""

import asyncio
import threading

import httpx
import pytest

from focuslock.notifier import NotificationDispatcher, UserChannelHub, build_dispatcher
from focuslock.notifier.channels.push import PushChannel
from focuslock.notifier.events import EventType, NotificationEvent
from focuslock.resilience import RetryConfig


def _event(owner_id="alice") -> NotificationEvent:
    return NotificationEvent(
        type=EventType.TASK_COMPLETED,
        owner_id=owner_id,
        task_id="task-1",
        payload={"taskId": "task-1", "title": "Read", "completedAt": "2026-03-02T09:30:00"},
    )


class RecordingHandler:
    def __init__(self, response: httpx.Response | None = None):
        self.requests: list[httpx.Request] = []
        self.response = response or httpx.Response(200, json={"results": [{"message_id": "m"}]})

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        return self.response


@pytest.fixture
def handler():
    return RecordingHandler()


@pytest.fixture
def push(handler):
    return PushChannel(
        "https://push.test/send",
        server_key="k",
        client=httpx.Client(transport=httpx.MockTransport(handler)),
        retry=RetryConfig(max_retries=0),
    )


class TestPushModes:
    def test_always_pushes_with_token(self, hub, store, push, handler):
        store.set_delivery_token("alice", "tok")
        dispatcher = NotificationDispatcher(hub, store=store, push=push, push_mode="always")

        result = dispatcher.dispatch(_event())

        assert result.push_status == "sent"
        assert result.live_delivered == 0
        assert len(handler.requests) == 1

    def test_missing_token_skipped_silently(self, hub, store, push, handler):
        dispatcher = NotificationDispatcher(hub, store=store, push=push)
        result = dispatcher.dispatch(_event())

        assert result.push_status == "no_token"
        assert handler.requests == []
        # The event still reached the owner's history
        assert [e.id for e in hub.history("alice")] == [result.event_id]

    def test_disabled_mode(self, hub, store, push, handler):
        store.set_delivery_token("alice", "tok")
        dispatcher = NotificationDispatcher(hub, store=store, push=push, push_mode="disabled")
        assert dispatcher.dispatch(_event()).push_status == "disabled"
        assert handler.requests == []

    def test_no_push_channel(self, hub, store):
        assert NotificationDispatcher(hub, store=store).dispatch(_event()).push_status == "disabled"


class TestInvalidToken:
    def test_rejected_token_is_cleared(self, hub, store):
        handler = RecordingHandler(
            httpx.Response(200, json={"failure": 1, "results": [{"error": "NotRegistered"}]})
        )
        push = PushChannel(
            "https://push.test/send",
            server_key="k",
            client=httpx.Client(transport=httpx.MockTransport(handler)),
        )
        store.set_delivery_token("alice", "stale")
        dispatcher = NotificationDispatcher(hub, store=store, push=push)

        result = dispatcher.dispatch(_event())

        assert result.push_status == "rejected"
        assert store.get_delivery_token("alice") is None

    def test_push_outage_does_not_raise(self, hub, store):
        def handler(request):
            raise httpx.ConnectError("down", request=request)

        push = PushChannel(
            "https://push.test/send",
            server_key="k",
            client=httpx.Client(transport=httpx.MockTransport(handler)),
            retry=RetryConfig(max_retries=0),
        )
        store.set_delivery_token("alice", "tok")
        dispatcher = NotificationDispatcher(hub, store=store, push=push)

        assert dispatcher.dispatch(_event()).push_status == "error"
        assert store.get_delivery_token("alice") == "tok"


class TestBackgroundPush:
    def test_send_happens_off_the_calling_thread(self, hub, store):
        threads = []

        def handler(request):
            threads.append(threading.current_thread().name)
            return httpx.Response(200, json={"results": [{"message_id": "m"}]})

        push = PushChannel(
            "https://push.test/send",
            server_key="k",
            client=httpx.Client(transport=httpx.MockTransport(handler)),
            retry=RetryConfig(max_retries=0),
        )
        store.set_delivery_token("alice", "tok")
        dispatcher = NotificationDispatcher(hub, store=store, push=push, background_push=True)

        result = dispatcher.dispatch(_event())
        dispatcher.close()

        assert result.push_status == "queued"
        assert result.live_delivered == 0
        assert len(threads) == 1
        assert threads[0] != threading.current_thread().name
        assert threads[0].startswith("focuslock-push")

    def test_slow_provider_does_not_block_dispatch(self, hub, store):
        release = threading.Event()

        def handler(request):
            release.wait(timeout=5)
            return httpx.Response(200, json={"results": [{"message_id": "m"}]})

        push = PushChannel(
            "https://push.test/send",
            server_key="k",
            client=httpx.Client(transport=httpx.MockTransport(handler)),
            retry=RetryConfig(max_retries=0),
        )
        store.set_delivery_token("alice", "tok")
        dispatcher = NotificationDispatcher(hub, store=store, push=push, background_push=True)

        results = [dispatcher.dispatch(_event()) for _ in range(3)]
        assert [r.push_status for r in results] == ["queued"] * 3
        assert len(hub.history("alice")) == 3

        release.set()
        dispatcher.close()

    def test_skip_decisions_stay_synchronous(self, hub, store, push, handler):
        dispatcher = NotificationDispatcher(
            hub, store=store, push=push, push_mode="fallback", background_push=True
        )

        async def scenario():
            sub = hub.subscribe("alice")
            try:
                return dispatcher.dispatch(_event())
            finally:
                hub.unsubscribe(sub)

        result = asyncio.run(scenario())
        dispatcher.close()
        assert result.push_status == "skipped_live"
        assert handler.requests == []


class TestBuild:
    def test_disabled_mode_has_no_channel(self, hub, store):
        from focuslock.config import Settings

        settings = Settings()
        settings.push.mode = "disabled"
        dispatcher = build_dispatcher(settings, hub, store)
        assert dispatcher.push is None

    def test_fallback_mode(self, hub, store):
        from focuslock.config import Settings

        settings = Settings()
        settings.push.mode = "fallback"
        settings.push.dry_run = True
        dispatcher = build_dispatcher(settings, UserChannelHub(), store)
        assert dispatcher.push_mode == "fallback"
        assert dispatcher.push.configured

    def test_push_delivery_settings_applied(self, hub, store):
        from focuslock.config import Settings

        settings = Settings()
        settings.push.mode = "always"
        settings.push.dry_run = True
        settings.push.timeout_seconds = 2.0
        settings.push.background = True
        dispatcher = build_dispatcher(settings, hub, store)
        try:
            assert dispatcher.push.timeout == 2.0
            store.set_delivery_token("alice", "tok")
            assert dispatcher.dispatch(_event()).push_status == "queued"
        finally:
            dispatcher.close()
