"""
Per-owner live channel.

Each owner id is a room. SSE handlers subscribe inside the event loop and
drain an asyncio.Queue; publishers may be on any thread (the scheduler
publishes from its own thread), so delivery is handed to the subscriber's
loop with call_soon_threadsafe. There is no broadcast: an event reaches only
the room named by its owner id.
"""

import asyncio
import logging
import threading
from collections import defaultdict, deque
from dataclasses import dataclass, field
from datetime import datetime

from focuslock.notifier.events import NotificationEvent
from focuslock.observability import live_subscribers, notifications_published

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256


@dataclass(eq=False)
class Subscription:
    owner_id: str
    queue: asyncio.Queue
    loop: asyncio.AbstractEventLoop
    closed: bool = field(default=False)


class UserChannelHub:
    """Manages per-owner rooms of live subscribers plus a bounded history."""

    def __init__(self, history_size: int = 100, queue_size: int = DEFAULT_QUEUE_SIZE):
        self._rooms: dict[str, set[Subscription]] = defaultdict(set)
        self._history: dict[str, deque[NotificationEvent]] = {}
        self._history_size = history_size
        self._queue_size = queue_size
        self._lock = threading.Lock()

    def subscribe(self, owner_id: str) -> Subscription:
        """Join the owner's room. Must be called from inside a running loop."""
        loop = asyncio.get_running_loop()
        sub = Subscription(owner_id=owner_id, queue=asyncio.Queue(self._queue_size), loop=loop)
        with self._lock:
            self._rooms[owner_id].add(sub)
        live_subscribers.inc()
        logger.debug("Live subscriber joined room user:%s", owner_id)
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        with self._lock:
            room = self._rooms.get(sub.owner_id)
            if room is None or sub not in room:
                return
            room.discard(sub)
            if not room:
                del self._rooms[sub.owner_id]
        sub.closed = True
        live_subscribers.dec()

    def subscriber_count(self, owner_id: str) -> int:
        with self._lock:
            return len(self._rooms.get(owner_id, ()))

    def publish(self, event: NotificationEvent) -> int:
        """
        Deliver *event* to its owner's room. Safe from any thread.

        Returns how many subscribers the event was handed to. The event is
        recorded in the owner's history whether or not anyone is listening.
        """
        with self._lock:
            history = self._history.get(event.owner_id)
            if history is None:
                history = deque(maxlen=self._history_size)
                self._history[event.owner_id] = history
            history.append(event)
            targets = list(self._rooms.get(event.owner_id, ()))

        delivered = 0
        for sub in targets:
            try:
                sub.loop.call_soon_threadsafe(self._enqueue, sub, event)
                delivered += 1
            except RuntimeError:
                # Loop already closed: the client went away without unsubscribing
                logger.debug("Dropping subscriber with closed loop for %s", event.owner_id)
                self.unsubscribe(sub)

        notifications_published.inc(type=event.type.value)
        return delivered

    def _enqueue(self, sub: Subscription, event: NotificationEvent) -> None:
        if sub.closed:
            return
        try:
            sub.queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning("Live queue full for %s, dropping subscriber", sub.owner_id)
            self.unsubscribe(sub)

    def history(
        self, owner_id: str, limit: int = 100, since: datetime | None = None
    ) -> list[NotificationEvent]:
        """Most recent events for *owner_id*, oldest first."""
        with self._lock:
            events = list(self._history.get(owner_id, ()))
        if since is not None:
            events = [e for e in events if e.created_at > since]
        return events[-limit:] if limit else events

    def clear(self) -> None:
        with self._lock:
            dropped = sum(len(room) for room in self._rooms.values())
            self._rooms.clear()
            self._history.clear()
        live_subscribers.dec(dropped)
