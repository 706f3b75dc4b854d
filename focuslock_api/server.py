"""
FocusLock API Server - REST + SSE surface over the enforcement engine.

create_app() wires one store, one live hub, one dispatcher, the service and
the scheduler, and hangs them on app.state. The scheduler runs inside the
API process so that its events reach live subscribers directly.

Run:
    focuslock-api                                   # console script
    uvicorn focuslock_api.server:create_app --factory
"""
# ruff: noqa: S104
# S104: Development server binding (guarded by main())

import logging
import os
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse

from focuslock import __version__
from focuslock.config import Settings, load_settings
from focuslock.errors import FocusLockError, StoreUnavailable
from focuslock.models import to_iso, utcnow
from focuslock.notifier import UserChannelHub, build_dispatcher
from focuslock.notifier.dispatcher import NotificationDispatcher
from focuslock.observability import (
    REGISTRY,
    CorrelationIdMiddleware,
    api_errors,
    api_requests,
    configure_logging,
)
from focuslock.scheduler import TaskScheduler, build_scheduler
from focuslock.services import FocusLockService
from focuslock.store import EnforcementStore
from focuslock_api.events_router import events_router
from focuslock_api.response_models import HealthResponse
from focuslock_api.session_router import proof_router, session_router
from focuslock_api.stats_router import stats_router
from focuslock_api.task_router import task_router

logger = logging.getLogger(__name__)


def _cors_origins(raw: str) -> list[str]:
    return ["*"] if raw == "*" else [o.strip() for o in raw.split(",") if o.strip()]


def create_app(
    settings: Settings | None = None,
    store: EnforcementStore | None = None,
    dispatcher: NotificationDispatcher | None = None,
    start_scheduler: bool = True,
    clock=utcnow,
) -> FastAPI:
    """
    Build the application.

    Tests pass their own store/dispatcher and start_scheduler=False, then
    drive app.state.scheduler.tick(now) by hand.
    """
    settings = settings or load_settings()
    store = store or EnforcementStore()
    if dispatcher is None:
        hub = UserChannelHub(history_size=settings.event_history_size)
        dispatcher = build_dispatcher(settings, hub, store)
    hub = dispatcher.hub
    service = FocusLockService(store, dispatcher, clock=clock)
    scheduler = build_scheduler(settings, store, dispatcher)
    scheduler.clock = clock

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("=== FocusLock API startup ===")
        logger.info("DB path: %s", store.db_path)
        if start_scheduler:
            scheduler.start()
        try:
            yield
        finally:
            if start_scheduler:
                scheduler.stop()
            dispatcher.close()
            logger.info("=== FocusLock API shutdown ===")

    app = FastAPI(
        title="FocusLock API",
        description="Scheduled focus tasks with device enforcement and proof-gated unlock",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings
    app.state.store = store
    app.state.hub = hub
    app.state.dispatcher = dispatcher
    app.state.service = service
    app.state.scheduler = scheduler

    app.add_middleware(
        CORSMiddleware,
        allow_origins=_cors_origins(settings.cors_origins),
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(CorrelationIdMiddleware)

    @app.middleware("http")
    async def count_requests(request: Request, call_next):
        api_requests.inc()
        return await call_next(request)

    @app.exception_handler(FocusLockError)
    async def focuslock_error_handler(request: Request, exc: FocusLockError):
        api_errors.inc(code=exc.error_code)
        if exc.status_code >= 500:
            logger.warning("%s %s -> %s", request.method, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        api_errors.inc(code="validation_error")
        return JSONResponse(
            status_code=422,
            content={
                "message": "Invalid request payload",
                "error_code": "validation_error",
                "details": jsonable_encoder(exc.errors()),
            },
        )

    app.include_router(task_router)
    app.include_router(session_router)
    app.include_router(proof_router)
    app.include_router(events_router)
    app.include_router(stats_router)

    @app.get("/healthz")
    def healthz():
        """Liveness only."""
        return {"status": "ok"}

    @app.get("/api/health", response_model=HealthResponse)
    def health():
        """Store reachability, scheduler state and metrics."""
        try:
            store_ok = store.ping()
        except StoreUnavailable:
            store_ok = False

        sched = scheduler.status()
        status = sched["health"] if store_ok else "error"
        body = {
            "status": status,
            "version": __version__,
            "timestamp": to_iso(utcnow()),
            "store": store_ok,
            "scheduler": sched,
            "metrics": REGISTRY.to_dict(),
        }
        return JSONResponse(status_code=200 if store_ok else 503, content=body)

    @app.get("/api/metrics", response_class=PlainTextResponse)
    def metrics():
        """Prometheus text exposition."""
        return REGISTRY.to_prometheus()

    return app


def main() -> None:
    """Console entry point: configure logging and serve with uvicorn."""
    settings = load_settings()
    configure_logging(settings.log_level)
    host = os.environ.get("FOCUSLOCK_HOST", "0.0.0.0")
    port = int(os.environ.get("FOCUSLOCK_PORT", "8420"))
    uvicorn.run(create_app(settings), host=host, port=port, log_config=None)


if __name__ == "__main__":
    main()
