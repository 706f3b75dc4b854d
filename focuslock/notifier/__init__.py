"""
Notifier: live per-owner channel, push fallback and the dispatcher that
feeds both from one event.
"""

from .dispatcher import DispatchResult, NotificationDispatcher, build_dispatcher
from .events import EventType, NotificationEvent
from .live import UserChannelHub

__all__ = [
    "DispatchResult",
    "EventType",
    "NotificationDispatcher",
    "NotificationEvent",
    "UserChannelHub",
    "build_dispatcher",
]
