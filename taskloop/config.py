"""Configuration for the task loop.

Settings come from environment variables and from an optional
``config.json`` inside the storage directory.
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

PROJECT_ROOT_ENV = "TASKLOOP_PROJECT_ROOT"
STORAGE_DIR_ENV = "TASKLOOP_STORAGE_DIR"
LOG_LEVEL_ENV = "TASKLOOP_LOG_LEVEL"
LOG_FILE_ENV = "TASKLOOP_LOG_FILE"

DEFAULT_STORAGE_DIR = ".taskloop"
CONFIG_FILENAME = "config.json"
PLANS_DIRNAME = "plans"
STATE_FILENAME = "loop-state.json"

logger = logging.getLogger("taskloop.config")


@dataclass(slots=True)
class LoopConfig:
    """Per-project settings read from ``<storage>/config.json``."""

    max_retries: Optional[int] = None

    def to_dict(self) -> dict:
        return {"max_retries": self.max_retries}


def storage_dir_name() -> str:
    """Name of the storage directory, honouring ``TASKLOOP_STORAGE_DIR``."""
    preferred = os.getenv(STORAGE_DIR_ENV, "").strip()
    return preferred or DEFAULT_STORAGE_DIR


def log_level() -> str:
    return os.getenv(LOG_LEVEL_ENV, "INFO").strip().upper() or "INFO"


def log_file() -> Optional[Path]:
    value = os.getenv(LOG_FILE_ENV, "").strip()
    return Path(value).expanduser() if value else None


def read_config(base_dir: Path) -> LoopConfig:
    """Read ``config.json`` from the storage directory.

    A missing or malformed file yields an empty config.
    """
    path = Path(base_dir) / CONFIG_FILENAME
    if not path.exists():
        return LoopConfig()

    try:
        raw = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.warning(f"Ignoring unreadable config at {path}: {e}")
        return LoopConfig()

    if not isinstance(raw, dict):
        return LoopConfig()

    max_retries = raw.get("max_retries")
    # bool is an int subclass
    if not isinstance(max_retries, int) or isinstance(max_retries, bool) or max_retries < 1:
        max_retries = None

    return LoopConfig(max_retries=max_retries)
