"""
Filesystem locations.

Everything lives under one home directory (FOCUSLOCK_HOME, default
~/.focuslock); the database and settings file can each be pointed
elsewhere with FOCUSLOCK_DB and FOCUSLOCK_CONFIG.
"""

from __future__ import annotations

import os
from pathlib import Path

APP_ENV_HOME = "FOCUSLOCK_HOME"
APP_ENV_DB = "FOCUSLOCK_DB"
APP_ENV_CONFIG = "FOCUSLOCK_CONFIG"


def _from_env(var: str) -> Path | None:
    value = os.environ.get(var)
    return Path(value).expanduser().resolve() if value else None


def _subdir(name: str) -> Path:
    path = app_home() / name
    path.mkdir(parents=True, exist_ok=True)
    return path


def app_home() -> Path:
    return _from_env(APP_ENV_HOME) or (Path.home() / ".focuslock").resolve()


def config_dir() -> Path:
    return _subdir("config")


def data_dir() -> Path:
    return _subdir("data")


def db_path() -> Path:
    return _from_env(APP_ENV_DB) or data_dir() / "focuslock.db"


def config_file() -> Path:
    """YAML settings; the file is optional and defaults apply when absent."""
    return _from_env(APP_ENV_CONFIG) or config_dir() / "focuslock.yaml"
