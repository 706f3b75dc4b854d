"""
Pydantic request and response models for the FocusLock API.

Field names are camelCase because that is the wire format the mobile and
web clients speak; they mirror the to_dict() output of the domain records.

Usage:
    from focuslock_api.response_models import TaskResponse

    @router.get("/{task_id}", response_model=TaskResponse)
    def get_task(...): ...
"""

from typing import Any

from pydantic import BaseModel, Field

# ==== Envelopes ====


class ListResponse(BaseModel):
    """Standard list endpoint response."""

    items: list[Any] = Field(default_factory=list, description="Result items")
    total: int = Field(description="Total count")


class MutationResponse(BaseModel):
    """Standard mutation result."""

    success: bool = Field(description="Whether the operation succeeded")

    model_config = {"extra": "allow"}


class ErrorResponse(BaseModel):
    """Body of every domain error."""

    message: str
    error_code: str


# ==== Tasks ====


class TaskCreateRequest(BaseModel):
    title: str = Field(..., description="Task title, trimmed to 200 characters")
    startAt: str = Field(..., description="ISO-8601 start timestamp")
    durationMinutes: int = Field(..., description="1 to 480 minutes")
    strictness: str = Field(default="MEDIUM", description="SOFT | MEDIUM | HARD")
    targetApps: list[str] = Field(default_factory=list, description="Apps to restrict")
    proofMethods: list[str] | None = Field(default=None, description="screenshot | quiz | checkin")
    documentUrl: str | None = Field(default=None, description="Attached study document")


class TaskPatchRequest(BaseModel):
    """Whitelisted task edit. Unknown fields are passed through and rejected by the service."""

    title: str | None = None
    startAt: str | None = None
    durationMinutes: int | None = None
    strictness: str | None = None
    targetApps: list[str] | None = None
    proofMethods: list[str] | None = None
    documentUrl: str | None = None

    model_config = {"extra": "allow"}


class AbandonRequest(BaseModel):
    reason: str | None = Field(default=None, description="Why the task was given up")


class TaskResponse(BaseModel):
    id: str
    ownerId: str
    title: str
    startAt: str
    endAt: str
    durationMinutes: int
    strictness: str
    targetApps: list[str]
    proofMethods: list[str]
    documentUrl: str | None = None
    status: str
    createdAt: str | None = None
    updatedAt: str | None = None


# ==== Sessions ====


class SessionCreateRequest(BaseModel):
    taskId: str
    deviceId: str
    requestedStrictness: str | None = None


class SessionStatusRequest(BaseModel):
    status: str = Field(..., description="LOCKED | PROOF_REQUIRED | FAILED")
    capabilities: dict[str, Any] | None = Field(
        default=None, description="Device capability report, sent with LOCKED"
    )
    reason: str | None = Field(default=None, description="Failure reason, sent with FAILED")


class SessionResponse(BaseModel):
    id: str
    taskId: str
    ownerId: str
    deviceId: str
    status: str
    requestedStrictness: str | None = None
    actualLevel: str | None = None
    capabilities: dict[str, Any] = Field(default_factory=dict)
    warnings: list[str] = Field(default_factory=list)
    failureReason: str | None = None
    startedAt: str | None = None
    endedAt: str | None = None
    unlockedAt: str | None = None
    createdAt: str | None = None
    updatedAt: str | None = None


class ProofResponse(BaseModel):
    id: str
    sessionId: str
    method: str
    result: dict[str, Any]
    accepted: bool
    score: int
    artifactUrl: str | None = None
    createdAt: str | None = None


class SessionDetailResponse(BaseModel):
    session: SessionResponse
    proofs: list[ProofResponse]


class SessionStatusResponse(BaseModel):
    session: SessionResponse
    warnings: list[str] = Field(default_factory=list, description="Capability degradation notes")


class ProofSubmissionResponse(BaseModel):
    accepted: bool
    valid: bool = Field(description="Alias of accepted for older clients")
    score: int
    proof: ProofResponse
    session: SessionResponse


# ==== Delivery ====


class PushRegisterRequest(BaseModel):
    token: str
    platform: str | None = Field(default=None, description="android | ios | web")


class ViolationReportRequest(BaseModel):
    taskId: str
    violationType: str = Field(..., description="app_switch | task_close | uninstall_attempt")
    blockedApp: str | None = None


class DispatchResponse(BaseModel):
    eventId: str
    liveDelivered: int
    pushStatus: str


class EventResponse(BaseModel):
    id: str
    type: str
    taskId: str
    sessionId: str | None = None
    ownerId: str
    payload: dict[str, Any]
    createdAt: str
    dedupeKey: str


# ==== Health ====


class HealthResponse(BaseModel):
    status: str = Field(description="healthy, degraded, unhealthy or error")
    version: str
    timestamp: str
    store: bool
    scheduler: dict[str, Any]
    metrics: dict[str, Any] = Field(default_factory=dict)
