"""Workspace management for the task loop.

This module locates the project root, the storage directory inside it, and
the plan files the loop is seeded from.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional

from .config import (
    PLANS_DIRNAME,
    PROJECT_ROOT_ENV,
    STATE_FILENAME,
    LoopConfig,
    read_config,
    storage_dir_name,
)
from .errors import InvalidPlanIdentifierError, PlanNotFoundError, UnreadablePlanError
from .store import StateStore

logger = logging.getLogger("taskloop.workspace")


class Workspace:
    """Paths and plan access for one project root.

    Nothing is created on construction; the storage directory appears on
    the first state write.
    """

    def __init__(self, root: Path | str):
        """Initialize workspace with given root directory."""
        self.root = Path(root).resolve()
        self.base_dir = self.root / storage_dir_name()
        self.plans_dir = self.base_dir / PLANS_DIRNAME
        self.state_path = self.base_dir / STATE_FILENAME
        self.store = StateStore(self.state_path)

    def load_config(self) -> LoopConfig:
        return read_config(self.base_dir)

    # ------------------------------------------------------------------
    # Plans
    # ------------------------------------------------------------------

    def resolve_plan_path(self, plan_filename: str) -> Path:
        """Resolve a plan filename strictly inside the plans directory."""
        if not isinstance(plan_filename, str):
            raise InvalidPlanIdentifierError("Invalid plan filename.")

        name = plan_filename.strip()
        if not name or name in {".", ".."} or "\x00" in name:
            raise InvalidPlanIdentifierError("Invalid plan filename.")
        if Path(name).is_absolute() or name.startswith(("/", "\\")):
            raise InvalidPlanIdentifierError("Invalid plan filename.")

        plans_dir = self.plans_dir.resolve()
        candidate = (plans_dir / name).resolve()
        if plans_dir not in candidate.parents:
            raise InvalidPlanIdentifierError("Invalid plan filename.")
        return candidate

    def load_plan(self, plan_filename: str) -> str:
        """Read a plan from the plans directory."""
        path = self.resolve_plan_path(plan_filename)
        if not path.is_file():
            raise PlanNotFoundError(f"Plan not found: {plan_filename}")
        try:
            return path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Unable to read plan {path}: {e}")
            raise UnreadablePlanError(f"Plan could not be read: {plan_filename}") from e

    def list_plans(self) -> List[str]:
        """Markdown plans available in the plans directory."""
        if not self.plans_dir.is_dir():
            return []
        return sorted(
            str(path.relative_to(self.plans_dir)).replace(os.sep, "/")
            for path in self.plans_dir.rglob("*.md")
            if path.is_file()
        )


# ----------------------------------------------------------------------
# Root resolution
# ----------------------------------------------------------------------

def _candidate_bases(extra: Iterable[Path] = ()) -> List[Path]:
    cwd = Path.cwd().resolve()
    bases: List[Path] = [cwd, *cwd.parents]
    for base in extra:
        base = Path(base).resolve()
        bases.extend([base, *base.parents])

    seen: set[Path] = set()
    ordered: List[Path] = []
    for base in bases:
        if base not in seen:
            seen.add(base)
            ordered.append(base)
    return ordered


def locate_workspace_root(extra_bases: Iterable[Path] = ()) -> Optional[Path]:
    """Nearest directory that already holds a storage directory."""
    marker = storage_dir_name()
    for base in _candidate_bases(extra_bases):
        if (base / marker).is_dir():
            return base
    return None


def resolve_root(root: Optional[str], *, extra_bases: Iterable[Path] = ()) -> Path:
    """Pick the project root: argument, environment, then marker search."""
    if root:
        resolved = Path(root).expanduser().resolve()
        if not resolved.exists():
            raise ValueError(f"Provided root '{root}' does not exist.")
        return resolved

    env_root = os.getenv(PROJECT_ROOT_ENV)
    if env_root:
        env_path = Path(env_root).expanduser().resolve()
        if not env_path.exists():
            raise ValueError(
                f"Environment variable {PROJECT_ROOT_ENV} points to '{env_root}', which does not exist."
            )
        return env_path

    detected_root = locate_workspace_root(extra_bases)
    if detected_root:
        logger.debug(f"Located workspace root {detected_root}")
        return detected_root

    raise ValueError(
        "Unable to determine project root automatically. Provide the 'root' argument when calling the tool "
        f"or set the {PROJECT_ROOT_ENV} environment variable."
    )
