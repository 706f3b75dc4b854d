"""
Notification channels.

Each channel delivers directly to one transport and reports the outcome
as a dict; none of them raise on delivery failure.
"""

from .push import PushChannel

__all__ = ["PushChannel"]
