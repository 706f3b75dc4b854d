"""
Task endpoints.

Listings double as the polling fallback for clients that missed a live
event: /api/tasks/active is the point-in-time answer to "what is running".
"""

from fastapi import APIRouter, Depends, Query, Response

from focuslock.services import FocusLockService
from focuslock_api.auth import require_user
from focuslock_api.deps import get_service
from focuslock_api.response_models import (
    AbandonRequest,
    ListResponse,
    TaskCreateRequest,
    TaskPatchRequest,
    TaskResponse,
)

task_router = APIRouter(prefix="/api/tasks", tags=["Tasks"])


def _task_list(tasks) -> dict:
    return {"items": [t.to_dict() for t in tasks], "total": len(tasks)}


@task_router.get("", response_model=ListResponse)
def list_tasks(
    range: str | None = Query(None, description="today | week"),  # noqa: A002
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    return _task_list(service.list_tasks(owner_id, range))


@task_router.get("/active", response_model=ListResponse)
def list_active_tasks(
    owner_id: str = Depends(require_user), service: FocusLockService = Depends(get_service)
):
    return _task_list(service.list_active_tasks(owner_id))


@task_router.get("/today", response_model=ListResponse)
def list_today(
    owner_id: str = Depends(require_user), service: FocusLockService = Depends(get_service)
):
    return _task_list(service.list_tasks(owner_id, "today"))


@task_router.get("/week", response_model=ListResponse)
def list_week(
    owner_id: str = Depends(require_user), service: FocusLockService = Depends(get_service)
):
    return _task_list(service.list_tasks(owner_id, "week"))


@task_router.get("/{task_id}", response_model=TaskResponse)
def get_task(
    task_id: str,
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    return service.get_task(owner_id, task_id).to_dict()


@task_router.post("", response_model=TaskResponse, status_code=201)
def create_task(
    body: TaskCreateRequest,
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    """Create a PENDING task. endAt is computed from startAt + durationMinutes."""
    return service.create_task(owner_id, body.model_dump()).to_dict()


@task_router.patch("/{task_id}", response_model=TaskResponse)
def update_task(
    task_id: str,
    body: TaskPatchRequest,
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    """Edit a PENDING task. Status is not editable."""
    return service.update_task(owner_id, task_id, body.model_dump(exclude_unset=True)).to_dict()


@task_router.delete("/{task_id}", status_code=204)
def delete_task(
    task_id: str,
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    service.delete_task(owner_id, task_id)
    return Response(status_code=204)


@task_router.post("/{task_id}/start", response_model=TaskResponse)
def start_task(
    task_id: str,
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    """Start a PENDING task now instead of waiting for the scheduler."""
    return service.start_task(owner_id, task_id).to_dict()


@task_router.post("/{task_id}/abandon", response_model=TaskResponse)
def abandon_task(
    task_id: str,
    body: AbandonRequest | None = None,
    owner_id: str = Depends(require_user),
    service: FocusLockService = Depends(get_service),
):
    """Fail the task and its open session."""
    reason = body.reason if body and body.reason else "abandoned"
    return service.abandon_task(owner_id, task_id, reason=reason).to_dict()
