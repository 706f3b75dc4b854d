"""Enforcement session and proof endpoints."""

from typing import Any

from fastapi import APIRouter, Body, Depends

from focuslock.services import FocusLockService
from focuslock_api.auth import require_user
from focuslock_api.deps import get_service
from focuslock_api.response_models import (
    ProofSubmissionResponse,
    SessionCreateRequest,
    SessionDetailResponse,
    SessionResponse,
    SessionStatusRequest,
    SessionStatusResponse,
)

session_router = APIRouter(prefix="/api/enforcement/sessions", tags=["Enforcement"])
proof_router = APIRouter(prefix="/api/proof", tags=["Proof"])


@session_router.post("", response_model=SessionResponse, status_code=201)
def create_session(
    body: SessionCreateRequest,
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    session = service.create_session(
        owner_id, body.taskId, body.deviceId, requested_strictness=body.requestedStrictness
    )
    return session.to_dict()


@session_router.get("/{session_id}", response_model=SessionDetailResponse)
def get_session(
    session_id: str,
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    session, proofs = service.get_session_with_proofs(owner_id, session_id)
    return {"session": session.to_dict(), "proofs": [p.to_dict() for p in proofs]}


@session_router.patch("/{session_id}/status", response_model=SessionStatusResponse)
def update_session_status(
    session_id: str,
    body: SessionStatusRequest,
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    """
    Move the session on behalf of the device.

    LOCKED may carry a capability report; the achieved enforcement level
    is recorded and any degradation comes back as warnings, not an error.
    """
    result = service.update_session_status(
        owner_id, session_id, body.status, capabilities=body.capabilities, reason=body.reason
    )
    return {"session": result.session.to_dict(), "warnings": result.warnings}


@proof_router.post("/{session_id}/{method}", response_model=ProofSubmissionResponse)
def submit_proof(
    session_id: str,
    method: str,
    payload: dict[str, Any] = Body(default_factory=dict),
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    """
    Submit proof of completion.

    screenshot {artifactUrl}, quiz {answers, answerKey?}, checkin {text}.
    A rejected proof is a normal 200 with accepted=false.
    """
    return service.submit_proof(owner_id, session_id, method, payload).to_dict()
