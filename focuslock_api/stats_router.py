"""Owner statistics. Streak values are estimates; see focuslock.stats."""

from fastapi import APIRouter, Depends

from focuslock.services import FocusLockService
from focuslock_api.auth import require_user
from focuslock_api.deps import get_service

stats_router = APIRouter(tags=["Stats"])


@stats_router.get("/api/stats")
def get_stats(
    owner_id: str = Depends(require_user), service: FocusLockService = Depends(get_service)
):
    return service.user_stats(owner_id)


@stats_router.get("/api/progress/stats")
def get_progress_stats(
    owner_id: str = Depends(require_user), service: FocusLockService = Depends(get_service)
):
    return service.progress_stats(owner_id)
