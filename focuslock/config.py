"""
Centralized configuration for FocusLock.

All values that vary by deployment belong here.
Environment variables provide the defaults; an optional YAML file
(see paths.config_file()) overrides them section by section:

    scheduler:
      interval_seconds: 30
      auto_create_session: false
      max_workers: 1
    push:
      mode: always            # always | fallback | disabled
      endpoint: https://fcm.googleapis.com/fcm/send
      server_key: "..."
      dry_run: false
      timeout_seconds: 5
      background: true        # send from a worker thread, not the caller's
    events:
      history_size: 100
"""

import logging
import os
from dataclasses import dataclass, field
from pathlib import Path

import yaml

from focuslock import paths

logger = logging.getLogger(__name__)

TRUE_WORDS = frozenset({"1", "true", "yes", "on"})
FALSE_WORDS = frozenset({"0", "false", "no", "off", ""})


def _env_flag(name: str, default: str) -> bool:
    return os.environ.get(name, default).strip().lower() in TRUE_WORDS


# ============================================================
# Scheduler
# ============================================================

SCHEDULER_INTERVAL_SECONDS: float = float(os.environ.get("FOCUSLOCK_SCHEDULER_INTERVAL", "30"))
"""Seconds between scheduler ticks."""

SCHEDULER_AUTO_CREATE_SESSION: bool = _env_flag("FOCUSLOCK_AUTO_CREATE_SESSION", "false")
"""Create a PENDING enforcement session when the scheduler activates a task."""

SCHEDULER_MAX_WORKERS: int = int(os.environ.get("FOCUSLOCK_SCHEDULER_WORKERS", "1"))
"""Worker threads per sweep. 1 = sequential."""

# ============================================================
# Push fallback
# ============================================================

PUSH_MODES = ("always", "fallback", "disabled")

PUSH_MODE: str = os.environ.get("FOCUSLOCK_PUSH_MODE", "always")
"""always = redundant signal, fallback = only without live subscribers, disabled."""

PUSH_ENDPOINT: str = os.environ.get(
    "FOCUSLOCK_PUSH_ENDPOINT", "https://fcm.googleapis.com/fcm/send"
)
PUSH_SERVER_KEY: str = os.environ.get("FOCUSLOCK_PUSH_SERVER_KEY", "")
PUSH_DRY_RUN: bool = _env_flag("FOCUSLOCK_PUSH_DRY_RUN", "false")

PUSH_TIMEOUT_SECONDS: float = float(os.environ.get("FOCUSLOCK_PUSH_TIMEOUT", "5"))
"""Per-request HTTP timeout for the push provider."""

PUSH_BACKGROUND: bool = _env_flag("FOCUSLOCK_PUSH_BACKGROUND", "true")
"""Hand push sends to a worker thread so a slow provider never stalls a sweep."""

# ============================================================
# Events / API
# ============================================================

EVENT_HISTORY_SIZE: int = int(os.environ.get("FOCUSLOCK_EVENT_HISTORY", "100"))
"""Events retained per owner for reconciliation."""

CORS_ORIGINS: str = os.environ.get("CORS_ORIGINS", "*")
LOG_LEVEL: str = os.environ.get("FOCUSLOCK_LOG_LEVEL", "INFO")


@dataclass
class SchedulerSettings:
    interval_seconds: float = SCHEDULER_INTERVAL_SECONDS
    auto_create_session: bool = SCHEDULER_AUTO_CREATE_SESSION
    max_workers: int = SCHEDULER_MAX_WORKERS


@dataclass
class PushSettings:
    mode: str = PUSH_MODE
    endpoint: str = PUSH_ENDPOINT
    server_key: str = PUSH_SERVER_KEY
    dry_run: bool = PUSH_DRY_RUN
    timeout_seconds: float = PUSH_TIMEOUT_SECONDS
    background: bool = PUSH_BACKGROUND


@dataclass
class Settings:
    scheduler: SchedulerSettings = field(default_factory=SchedulerSettings)
    push: PushSettings = field(default_factory=PushSettings)
    event_history_size: int = EVENT_HISTORY_SIZE
    cors_origins: str = CORS_ORIGINS
    log_level: str = LOG_LEVEL


def _coerce(current, value, key: str):
    """Convert a YAML value to the type of the setting it replaces."""
    if isinstance(current, bool):
        if isinstance(value, bool):
            return value
        word = str(value).strip().lower()
        if word in TRUE_WORDS:
            return True
        if word in FALSE_WORDS:
            return False
        raise ValueError(f"{key} must be a boolean, got {value!r}")
    try:
        return type(current)(value)
    except (TypeError, ValueError) as e:
        raise ValueError(f"{key} must be {type(current).__name__}, got {value!r}") from e


def _apply_section(target, values: dict | None, section: str) -> None:
    """Copy known keys from a YAML section onto a settings dataclass."""
    if not values:
        return
    for key, value in values.items():
        if not hasattr(target, key):
            logger.warning("Ignoring unknown config key %s.%s", section, key)
            continue
        current = getattr(target, key)
        if current is not None and value is not None:
            value = _coerce(current, value, f"{section}.{key}")
        setattr(target, key, value)


def _check(settings: Settings) -> Settings:
    if settings.push.mode not in PUSH_MODES:
        raise ValueError(f"push.mode must be one of {PUSH_MODES}, got {settings.push.mode!r}")
    return settings


def load_settings(path: Path | str | None = None) -> Settings:
    """
    Build Settings from environment defaults plus the optional YAML file.

    A missing file is not an error. A malformed file or an invalid value,
    from the file or the environment, raises ValueError so
    misconfiguration is visible at startup.
    """
    settings = Settings()
    config_path = Path(path) if path else paths.config_file()

    if not config_path.exists():
        return _check(settings)

    with open(config_path) as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ValueError(f"Invalid config file {config_path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Config file {config_path} must contain a mapping")

    _apply_section(settings.scheduler, data.get("scheduler"), "scheduler")
    _apply_section(settings.push, data.get("push"), "push")

    events = data.get("events") or {}
    if "history_size" in events:
        settings.event_history_size = int(events["history_size"])
    api = data.get("api") or {}
    if "cors_origins" in api:
        settings.cors_origins = str(api["cors_origins"])
    if "log_level" in data:
        settings.log_level = str(data["log_level"])

    logger.info("Loaded settings from %s", config_path)
    return _check(settings)
