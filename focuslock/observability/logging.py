"""
Log formatting and the request-id middleware.

Records carry the current request id (an API request or a scheduler tick)
plus any ``extra=`` fields. JSON lines when stderr is not a terminal,
a compact one-line format when it is.
"""

import json
import logging
import sys
from datetime import UTC, datetime

from .context import RequestContext, generate_request_id, get_request_id

# Attributes every LogRecord has; anything else arrived through extra=
_STANDARD_ATTRS = frozenset(vars(logging.makeLogRecord({}))) | {"message", "asctime"}


def _extras(record: logging.LogRecord) -> dict:
    return {k: v for k, v in vars(record).items() if k not in _STANDARD_ATTRS}


class JSONFormatter(logging.Formatter):
    """One JSON object per record: timestamp, level, logger, message, request_id, extras."""

    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created, UTC)
        payload = {
            "timestamp": stamp.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        request_id = get_request_id()
        if request_id:
            payload["request_id"] = request_id
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        payload.update(_extras(record))
        return json.dumps(payload, default=str)


class HumanFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        stamp = datetime.fromtimestamp(record.created).strftime("%H:%M:%S")
        request_id = get_request_id()
        tag = f" ({request_id})" if request_id else ""
        text = f"{stamp} {record.levelname:<7} {record.name}{tag}: {record.getMessage()}"
        if record.exc_info:
            text = f"{text}\n{self.formatException(record.exc_info)}"
        return text


def configure_logging(level: str = "INFO", json_format: bool | None = None) -> None:
    """
    Replace the root logger's handlers with a single stderr handler.

    json_format defaults to True when stderr is not a TTY.
    """
    use_json = (not sys.stderr.isatty()) if json_format is None else json_format
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(JSONFormatter() if use_json else HumanFormatter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(logging.getLevelNamesMapping().get((level or "").upper(), logging.INFO))


def _header(scope: dict, name: bytes) -> str | None:
    for key, value in scope.get("headers") or ():
        if key.lower() == name:
            return value.decode("latin-1").strip() or None
    return None


class CorrelationIdMiddleware:
    """
    Pure ASGI middleware: reuse the caller's X-Request-ID or mint one, scope
    it over the request and echo it in the response headers.
    """

    def __init__(self, app):
        self.app = app

    async def __call__(self, scope, receive, send):
        if scope["type"] != "http":
            return await self.app(scope, receive, send)

        request_id = _header(scope, b"x-request-id") or generate_request_id()
        encoded = request_id.encode("latin-1")

        async def send_wrapper(message):
            if message["type"] == "http.response.start":
                message = dict(message)
                message["headers"] = [*message.get("headers", []), (b"x-request-id", encoded)]
            await send(message)

        with RequestContext(request_id):
            await self.app(scope, receive, send_wrapper)
