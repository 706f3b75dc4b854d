"""
Live events, reconciliation and delivery registration.

/api/events/stream is a per-owner Server-Sent Events stream fed by the
UserChannelHub. A client that was disconnected reconciles with
/api/events/history (or the task/session endpoints) after reconnecting.

EventSource cannot set headers, so in token mode the stream accepts the
token as ?api_token=.
"""

import asyncio
import json
import logging
from collections.abc import AsyncGenerator, Awaitable, Callable

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import StreamingResponse

from focuslock.models import to_iso, utcnow
from focuslock.notifier.live import Subscription, UserChannelHub
from focuslock.services import FocusLockService
from focuslock_api.auth import require_user
from focuslock_api.deps import get_hub, get_service
from focuslock_api.response_models import (
    DispatchResponse,
    ListResponse,
    MutationResponse,
    PushRegisterRequest,
    ViolationReportRequest,
)

logger = logging.getLogger(__name__)

HEARTBEAT_SECONDS = 15.0

events_router = APIRouter(tags=["Events"])


def _system_event(status: str) -> str:
    data = json.dumps({"status": status, "timestamp": to_iso(utcnow())})
    return f"event: system_status\ndata: {data}\n\n"


async def stream_owner_events(
    hub: UserChannelHub,
    sub: Subscription,
    is_disconnected: Callable[[], Awaitable[bool]],
    heartbeat_seconds: float = HEARTBEAT_SECONDS,
) -> AsyncGenerator[str, None]:
    """
    Yield SSE frames for one subscriber until the client goes away.

    A system_status frame opens the stream and is repeated as a heartbeat
    whenever the owner's room has been quiet for heartbeat_seconds.
    """
    try:
        yield _system_event("connected")
        while True:
            try:
                event = await asyncio.wait_for(sub.queue.get(), timeout=heartbeat_seconds)
            except TimeoutError:
                if sub.closed or await is_disconnected():
                    break
                yield _system_event("connected")
                continue
            yield event.to_sse()
            if sub.closed:
                break
    except asyncio.CancelledError:
        logger.debug("SSE stream cancelled for %s", sub.owner_id)
        raise
    finally:
        hub.unsubscribe(sub)


@events_router.get("/api/events/stream")
async def stream_events(
    request: Request,
    owner_id: str = Depends(require_user),
    hub: UserChannelHub = Depends(get_hub),
) -> StreamingResponse:
    """Per-owner live stream of lifecycle events."""
    sub = hub.subscribe(owner_id)
    return StreamingResponse(
        stream_owner_events(hub, sub, request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",
            "Connection": "keep-alive",
        },
    )


@events_router.get("/api/events/history", response_model=ListResponse)
def get_event_history(
    limit: int = Query(100, ge=1, le=500, description="Maximum events to return"),
    since: str | None = Query(None, description="Only events created after this ISO timestamp"),
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    """The caller's recent events, oldest first, for reconciliation."""
    history = service.event_history(owner_id, limit=limit, since=since)
    return {"items": [e.to_dict() for e in history], "total": len(history)}


@events_router.post("/api/push/register", response_model=MutationResponse)
def register_push(
    body: PushRegisterRequest,
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    """Register this device for the push fallback. Latest registration wins."""
    service.register_push_token(owner_id, body.token, body.platform)
    return {"success": True}


@events_router.delete("/api/push/unregister", response_model=MutationResponse)
@events_router.post("/api/push/unregister", response_model=MutationResponse)
def unregister_push(
    owner_id: str = Depends(require_user), service: FocusLockService = Depends(get_service)
):
    return {"success": True, "removed": service.unregister_push_token(owner_id)}


@events_router.post("/api/violations/report", response_model=DispatchResponse)
def report_violation(
    body: ViolationReportRequest,
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    """Forward a device-detected focus violation to the owner's other clients."""
    result = service.report_violation(owner_id, body.taskId, body.violationType, body.blockedApp)
    return result.to_dict()
