"""
NotificationDispatcher - fans one committed transition out to the owner.

Live channel first, push second. Both are best effort: whatever happens
here, the caller's transition has already committed and stays committed.
With background push the HTTP send runs on a single worker thread, so a
slow or unreachable provider never holds up a scheduler sweep or request.
"""

import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass

from focuslock.errors import DeliveryFailure, StoreUnavailable
from focuslock.notifier.channels.push import PushChannel
from focuslock.notifier.events import NotificationEvent
from focuslock.notifier.live import UserChannelHub
from focuslock.observability import push_deliveries

logger = logging.getLogger(__name__)

PUSH_ALWAYS = "always"
PUSH_FALLBACK = "fallback"
PUSH_DISABLED = "disabled"

PUSH_QUEUED = "queued"


@dataclass
class DispatchResult:
    event_id: str
    live_delivered: int
    push_status: str

    def to_dict(self) -> dict:
        return {
            "eventId": self.event_id,
            "liveDelivered": self.live_delivered,
            "pushStatus": self.push_status,
        }


class NotificationDispatcher:
    """
    Routes events to the live hub and the push fallback.

    push_mode:
        always    push every event as a redundant signal
        fallback  push only when the owner has no live subscriber
        disabled  never push

    background_push: send on a worker thread; dispatch() then reports
    push status "queued". close() drains the queue.
    """

    def __init__(
        self,
        hub: UserChannelHub,
        store=None,
        push: PushChannel | None = None,
        push_mode: str = PUSH_ALWAYS,
        background_push: bool = False,
    ):
        self.hub = hub
        self.store = store
        self.push = push
        self.push_mode = push_mode
        self._push_pool: ThreadPoolExecutor | None = None
        if background_push and self._push_enabled:
            self._push_pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="focuslock-push")

    @property
    def _push_enabled(self) -> bool:
        return self.push is not None and self.store is not None and self.push_mode != PUSH_DISABLED

    def dispatch(self, event: NotificationEvent) -> DispatchResult:
        """Publish *event*. Never raises for delivery problems."""
        live = self.hub.publish(event)
        push_status = self._route_push(event, live)
        logger.info(
            "Dispatched %s for task %s to %s (live=%d, push=%s)",
            event.type.value,
            event.task_id,
            event.owner_id,
            live,
            push_status,
        )
        return DispatchResult(event_id=event.id, live_delivered=live, push_status=push_status)

    def close(self) -> None:
        """Wait for queued pushes and stop the worker thread."""
        if self._push_pool is not None:
            self._push_pool.shutdown(wait=True)
            self._push_pool = None

    def _route_push(self, event: NotificationEvent, live_delivered: int) -> str:
        if not self._push_enabled:
            return "disabled"
        if self.push_mode == PUSH_FALLBACK and live_delivered > 0:
            return "skipped_live"
        if self._push_pool is None:
            return self._push(event)
        try:
            self._push_pool.submit(self._push_in_background, event)
        except RuntimeError:
            # Pool already shut down; deliver inline rather than drop
            return self._push(event)
        return PUSH_QUEUED

    def _push_in_background(self, event: NotificationEvent) -> None:
        try:
            self._push(event)
        except Exception:
            logger.exception("Background push failed (event=%s owner=%s)", event.id, event.owner_id)

    def _push(self, event: NotificationEvent) -> str:
        try:
            token = self.store.get_delivery_token(event.owner_id)
        except StoreUnavailable as e:
            logger.warning("Push token lookup failed for %s: %s", event.owner_id, e)
            push_deliveries.inc(status="error")
            return "error"
        if not token:
            return "no_token"

        result = self.push.send_sync(token, event.push_message())
        status = result.get("status", "error")
        push_deliveries.inc(status=status)

        if not result.get("success"):
            failure = DeliveryFailure(self.push.name, result.get("error", status))
            logger.warning("%s (event=%s owner=%s)", failure.message, event.id, event.owner_id)
            if result.get("invalid_token"):
                self._drop_token(event.owner_id)
        return status

    def _drop_token(self, owner_id: str) -> None:
        try:
            self.store.clear_delivery_token(owner_id)
            logger.info("Cleared invalid push token for %s", owner_id)
        except StoreUnavailable as e:
            logger.warning("Could not clear push token for %s: %s", owner_id, e)


def build_dispatcher(settings, hub: UserChannelHub, store) -> NotificationDispatcher:
    """Wire a dispatcher from loaded Settings."""
    push = None
    if settings.push.mode != PUSH_DISABLED:
        push = PushChannel(
            endpoint=settings.push.endpoint,
            server_key=settings.push.server_key,
            dry_run=settings.push.dry_run,
            timeout=settings.push.timeout_seconds,
        )
        if not push.configured:
            logger.warning("Push fallback has no server key; push delivery will be skipped")
    return NotificationDispatcher(
        hub,
        store=store,
        push=push,
        push_mode=settings.push.mode,
        background_push=settings.push.background,
    )
