"""Durable storage for loop state.

The state lives in a single JSON document that is always rewritten in
full. Reads never raise for missing or damaged documents: both mean
"no loop", so a corrupted file starts the user fresh instead of crashing.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Any, Dict, Optional

from .models import STATE_VERSION, LoopState

logger = logging.getLogger("taskloop.store")


class StateStore:
    """Read and replace the loop state document at ``path``."""

    def __init__(self, path: Path | str):
        self.path = Path(path)

    def exists(self) -> bool:
        return self.path.is_file()

    def read(self) -> Optional[LoopState]:
        """Load the persisted state, or ``None`` when absent or unusable."""
        if not self.path.exists():
            return None

        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable loop state at {self.path}: {e}")
            return None

        raw = self._migrate(raw)
        if raw is None:
            return None

        try:
            state = LoopState.from_dict(raw)
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            logger.warning(f"Ignoring malformed loop state at {self.path}: {e}")
            return None

        issues = state.validate()
        if issues:
            logger.warning(f"Ignoring inconsistent loop state at {self.path}: {'; '.join(issues)}")
            return None
        return state

    def write(self, state: LoopState) -> Path:
        """Atomically replace the document with ``state``."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(state.to_dict(), indent=2, ensure_ascii=False) + "\n"

        fd, tmp_name = tempfile.mkstemp(
            prefix=f"{self.path.name}.", suffix=".tmp", dir=self.path.parent
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(tmp_name, self.path)
        except BaseException:
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
            raise

        logger.debug(f"Loop state written to {self.path}")
        return self.path

    def _migrate(self, raw: Any) -> Optional[Dict[str, Any]]:
        if not isinstance(raw, dict):
            logger.warning(f"Ignoring loop state at {self.path}: not a JSON object")
            return None

        version = raw.get("version")
        if not isinstance(version, int):
            # documents written before versioning are version 1
            raw["version"] = STATE_VERSION
        elif version > STATE_VERSION:
            logger.warning(
                f"Ignoring loop state at {self.path}: version {version} is newer than {STATE_VERSION}"
            )
            return None
        return raw
