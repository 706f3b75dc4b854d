"""
The current request id, held in a ContextVar.

Set per HTTP request by CorrelationIdMiddleware and per scheduler tick by
the scheduler; the log formatters read it back.
"""

import contextvars
import uuid

_request_id: contextvars.ContextVar[str | None] = contextvars.ContextVar(
    "focuslock_request_id", default=None
)


def get_request_id() -> str | None:
    return _request_id.get()


def generate_request_id(prefix: str = "req") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:16]}"


class RequestContext:
    """with RequestContext("tick-1a2b"): ... binds the id for the block."""

    def __init__(self, request_id: str | None = None):
        self.request_id = request_id or generate_request_id()
        self._tokens: list[contextvars.Token] = []

    def __enter__(self) -> "RequestContext":
        self._tokens.append(_request_id.set(self.request_id))
        return self

    def __exit__(self, *exc_info) -> None:
        _request_id.reset(self._tokens.pop())
