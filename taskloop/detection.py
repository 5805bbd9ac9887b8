"""Heuristic build/test/lint command detection.

Each ecosystem is an ``EcosystemDetector`` whose ``probe`` either returns a
``DetectionResult`` or ``None``. Detectors run in ``DEFAULT_DETECTORS``
order and the first hit wins; results are never merged across ecosystems.
A present but unreadable manifest makes its detector return ``None`` so
detection moves on to the next one.
"""

from __future__ import annotations

import json
import logging
import re
import tomllib
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set

from .models import DetectionResult

logger = logging.getLogger("taskloop.detection")

NPM_PLACEHOLDER_TEST = 'echo "Error: no test specified" && exit 1'


class EcosystemDetector(ABC):
    """One ecosystem's signal files and command conventions."""

    name: str = "unknown"

    @abstractmethod
    def probe(self, root: Path) -> Optional[DetectionResult]:
        """Return commands for ``root`` or ``None`` if this ecosystem doesn't apply."""


def detect_package_manager(root: Path) -> str:
    """Detect the Node package manager from lockfiles.

    Priority: bun > pnpm > yarn > npm (fallback).
    """
    if (root / "bun.lockb").exists() or (root / "bun.lock").exists():
        return "bun"
    if (root / "pnpm-lock.yaml").exists():
        return "pnpm"
    if (root / "yarn.lock").exists():
        return "yarn"
    return "npm"


class NodeDetector(EcosystemDetector):
    """``package.json`` projects."""

    name = "node"
    # most specific first
    TEST_FRAMEWORKS = ("vitest", "jest", "mocha")

    def probe(self, root: Path) -> Optional[DetectionResult]:
        manifest = root / "package.json"
        if not manifest.is_file():
            return None

        try:
            pkg = json.loads(manifest.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            logger.debug(f"Skipping malformed {manifest}: {e}")
            return None
        if not isinstance(pkg, dict):
            return None

        scripts = _mapping(pkg.get("scripts"))
        declared = set(_mapping(pkg.get("dependencies"))) | set(_mapping(pkg.get("devDependencies")))
        pm = detect_package_manager(root)
        result = DetectionResult()

        if scripts.get("build"):
            result.build_command = "yarn build" if pm == "yarn" else f"{pm} run build"

        framework = next((name for name in self.TEST_FRAMEWORKS if name in declared), None)
        if framework == "vitest":
            result.test_command = "bun vitest run" if pm == "bun" else "npx vitest run"
        elif framework:
            result.test_command = f"bun {framework}" if pm == "bun" else f"npx {framework}"
        elif isinstance(scripts.get("test"), str) and scripts["test"].strip() not in ("", NPM_PLACEHOLDER_TEST):
            result.test_command = "yarn test" if pm == "yarn" else f"{pm} test"
            framework = "npm-test"
        if framework:
            result.framework = framework

        if scripts.get("lint"):
            result.lint_command = "yarn lint" if pm == "yarn" else f"{pm} run lint"

        if not (result.build_command or result.test_command):
            return None
        result.detected = True
        return result


class CargoDetector(EcosystemDetector):
    """Rust crates and workspaces."""

    name = "cargo"

    def probe(self, root: Path) -> Optional[DetectionResult]:
        if not (root / "Cargo.toml").is_file():
            return None
        return DetectionResult(
            detected=True,
            build_command="cargo build",
            test_command="cargo test",
            lint_command="cargo clippy",
            framework="cargo",
        )


class GoDetector(EcosystemDetector):
    """Go modules."""

    name = "go"

    def probe(self, root: Path) -> Optional[DetectionResult]:
        if not (root / "go.mod").is_file():
            return None
        return DetectionResult(
            detected=True,
            build_command="go build ./...",
            test_command="go test ./...",
            lint_command="go vet ./...",
            framework="go-test",
        )


class PythonDetector(EcosystemDetector):
    """``pyproject.toml`` projects, falling back to ``setup.py``."""

    name = "python"

    def probe(self, root: Path) -> Optional[DetectionResult]:
        pyproject = root / "pyproject.toml"
        if pyproject.is_file():
            result = self._probe_pyproject(pyproject)
            if result is not None:
                return result

        if (root / "setup.py").is_file():
            return DetectionResult(detected=True, test_command="python -m pytest", framework="pytest")
        return None

    def _probe_pyproject(self, path: Path) -> Optional[DetectionResult]:
        try:
            data = tomllib.loads(path.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, tomllib.TOMLDecodeError) as e:
            logger.debug(f"Skipping malformed {path}: {e}")
            return None

        declared = _python_dependency_names(data)
        tool = _mapping(data.get("tool"))

        result = DetectionResult(detected=True, framework="pytest")
        if "pytest" in declared or "pytest" in tool:
            result.test_command = "pytest"
        else:
            result.test_command = "python -m pytest"

        if "ruff" in declared or "ruff" in tool:
            result.lint_command = "ruff check ."
        elif "flake8" in declared:
            result.lint_command = "flake8"
        return result


class ElixirDetector(EcosystemDetector):
    """Mix projects."""

    name = "elixir"

    def probe(self, root: Path) -> Optional[DetectionResult]:
        if not (root / "mix.exs").is_file():
            return None
        return DetectionResult(
            detected=True,
            build_command="mix compile",
            test_command="mix test",
            framework="ExUnit",
        )


class MakefileDetector(EcosystemDetector):
    """Generic ``Makefile`` targets."""

    name = "make"

    def probe(self, root: Path) -> Optional[DetectionResult]:
        makefile = root / "Makefile"
        if not makefile.is_file():
            return None

        try:
            text = makefile.read_text(encoding="utf-8", errors="replace")
        except OSError as e:
            logger.debug(f"Skipping unreadable {makefile}: {e}")
            return None

        result = DetectionResult()
        if _has_make_target(text, "build"):
            result.build_command = "make build"
        if _has_make_target(text, "test"):
            result.test_command = "make test"
            result.framework = "make"
        if _has_make_target(text, "lint"):
            result.lint_command = "make lint"

        if not (result.build_command or result.test_command):
            return None
        result.detected = True
        return result


DEFAULT_DETECTORS: Sequence[EcosystemDetector] = (
    NodeDetector(),
    CargoDetector(),
    GoDetector(),
    PythonDetector(),
    ElixirDetector(),
    MakefileDetector(),
)


def detect_commands(root: Path | str, detectors: Iterable[EcosystemDetector] = DEFAULT_DETECTORS) -> DetectionResult:
    """Propose build/test/lint commands for the project at ``root``."""
    root_path = Path(root)
    for detector in detectors:
        result = detector.probe(root_path)
        if result is not None:
            logger.info(f"Detected {result.framework} commands via {detector.name} in {root_path}")
            return result

    logger.info(f"No build/test commands detected in {root_path}")
    return DetectionResult()


# ----------------------------------------------------------------------
# Helpers
# ----------------------------------------------------------------------

_REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._-]*)")


def _mapping(value: Any) -> Dict[str, Any]:
    return value if isinstance(value, dict) else {}


def _has_make_target(text: str, target: str) -> bool:
    return re.search(rf"^{re.escape(target)}\s*:(?!=)", text, re.MULTILINE) is not None


def _requirement_names(requirements: Any) -> Set[str]:
    names: Set[str] = set()
    if isinstance(requirements, dict):
        # poetry style {"pytest": "^8"}
        requirements = list(requirements)
    if not isinstance(requirements, list):
        return names
    for item in requirements:
        if not isinstance(item, str):
            continue
        match = _REQUIREMENT_NAME.match(item)
        if match:
            names.add(match.group(1).lower().replace("_", "-"))
    return names


def _python_dependency_names(data: Dict[str, Any]) -> Set[str]:
    """Every dependency name declared anywhere in a parsed pyproject."""
    lists: List[Any] = []

    project = _mapping(data.get("project"))
    lists.append(project.get("dependencies"))
    lists.extend(_mapping(project.get("optional-dependencies")).values())
    lists.extend(_mapping(data.get("dependency-groups")).values())

    poetry = _mapping(_mapping(data.get("tool")).get("poetry"))
    lists.append(poetry.get("dependencies"))
    lists.append(poetry.get("dev-dependencies"))
    for group in _mapping(poetry.get("group")).values():
        lists.append(_mapping(group).get("dependencies"))

    names: Set[str] = set()
    for requirements in lists:
        names |= _requirement_names(requirements)
    return names
