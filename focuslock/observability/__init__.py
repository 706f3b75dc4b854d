"""
Logging, request ids and in-process metrics.

    from focuslock.observability import RequestContext, configure_logging, generate_request_id

    configure_logging("INFO")
    with RequestContext(generate_request_id("tick")):
        logger.info("sweep started")
"""

from .context import RequestContext, generate_request_id, get_request_id
from .logging import CorrelationIdMiddleware, HumanFormatter, JSONFormatter, configure_logging
from .metrics import (
    REGISTRY,
    Counter,
    Gauge,
    Histogram,
    MetricsRegistry,
    api_errors,
    api_requests,
    live_subscribers,
    notifications_published,
    proofs_submitted,
    push_deliveries,
    scheduler_sweep_errors,
    scheduler_tick_duration,
    scheduler_ticks,
    session_transitions,
    task_transitions,
)

__all__ = [
    "REGISTRY",
    "CorrelationIdMiddleware",
    "Counter",
    "Gauge",
    "Histogram",
    "HumanFormatter",
    "JSONFormatter",
    "MetricsRegistry",
    "RequestContext",
    "api_errors",
    "api_requests",
    "configure_logging",
    "generate_request_id",
    "get_request_id",
    "live_subscribers",
    "notifications_published",
    "proofs_submitted",
    "push_deliveries",
    "scheduler_sweep_errors",
    "scheduler_tick_duration",
    "scheduler_ticks",
    "session_transitions",
    "task_transitions",
]
