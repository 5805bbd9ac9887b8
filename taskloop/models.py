"""Data models for the task loop.

This module contains the core data structures used throughout the loop,
representing parsed plan tasks, tracked tasks, the persisted loop state and
command detection results.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union


STATE_VERSION = 1
DEFAULT_MAX_RETRIES = 3
MAX_DETAIL_LENGTH = 2000

TASK_STATUSES = ("pending", "in_progress", "passed", "failed", "skipped")
TERMINAL_STATUSES = ("passed", "failed", "skipped")
REPORT_RESULTS = ("pass", "fail", "skip")


def utc_now() -> str:
    """Current UTC time as an ISO-8601 string with a trailing ``Z``."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def to_timestamp(moment: datetime) -> str:
    """Render an aware or naive-UTC datetime the way ``utc_now`` does."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: str) -> datetime:
    """Parse a stored timestamp back into an aware datetime."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _timestamp_issue(value: Any, label: str, *, optional: bool = False) -> Optional[str]:
    if value is None and optional:
        return None
    if not isinstance(value, str):
        return f"{label} must be a timestamp string, got: {value!r}"
    try:
        parse_timestamp(value)
    except ValueError:
        return f"{label} is not an ISO-8601 timestamp: {value!r}"
    return None


@dataclass(slots=True)
class ParsedTask:
    """A checklist item extracted from a plan, before it is tracked."""

    description: str
    acceptance_criteria: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "description": self.description,
            "acceptance_criteria": list(self.acceptance_criteria),
        }


@dataclass(slots=True)
class TaskIteration:
    """One reported attempt at a task."""

    at: str
    result: str  # 'pass', 'fail', 'skip'
    detail: str

    def to_dict(self) -> Dict[str, str]:
        """Convert to dictionary representation."""
        return {"at": self.at, "result": self.result, "detail": self.detail}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TaskIteration":
        """Create from dictionary representation."""
        return cls(at=data["at"], result=data["result"], detail=data.get("detail", ""))


@dataclass(slots=True)
class LoopTask:
    """A plan task tracked through the loop state machine."""

    index: int
    description: str
    acceptance_criteria: List[str] = field(default_factory=list)
    status: str = "pending"  # 'pending', 'in_progress', 'passed', 'failed', 'skipped'
    retries: int = 0
    iterations: List[TaskIteration] = field(default_factory=list)
    started_at: Optional[str] = None
    completed_at: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "index": self.index,
            "description": self.description,
            "acceptance_criteria": list(self.acceptance_criteria),
            "status": self.status,
            "retries": self.retries,
            "iterations": [iteration.to_dict() for iteration in self.iterations],
            "started_at": self.started_at,
            "completed_at": self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoopTask":
        """Create from dictionary representation."""
        criteria = data.get("acceptance_criteria")
        return cls(
            index=data["index"],
            description=data["description"],
            acceptance_criteria=list(criteria) if isinstance(criteria, list) else [],
            status=data.get("status", "pending"),
            retries=data.get("retries", 0),
            iterations=[TaskIteration.from_dict(item) for item in data.get("iterations", [])],
            started_at=data.get("started_at"),
            completed_at=data.get("completed_at"),
        )

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    @property
    def last_iteration(self) -> Optional[TaskIteration]:
        return self.iterations[-1] if self.iterations else None

    def validate(self) -> List[str]:
        """Validate task data and return any issues."""
        issues = []

        if not isinstance(self.index, int) or self.index < 0:
            issues.append(f"Invalid task index: {self.index!r}")
        if not isinstance(self.description, str) or not self.description:
            issues.append(f"Task {self.index}: description is required")
        if self.status not in TASK_STATUSES:
            issues.append(f"Task {self.index}: invalid status {self.status!r}")
        if not isinstance(self.retries, int) or self.retries < 0:
            issues.append(f"Task {self.index}: retries must be a non-negative integer")
        elif len(self.iterations) < self.retries:
            issues.append(f"Task {self.index}: fewer iterations than retries")
        if not all(isinstance(criterion, str) for criterion in self.acceptance_criteria):
            issues.append(f"Task {self.index}: acceptance criteria must be strings")

        for label, value in (("started_at", self.started_at), ("completed_at", self.completed_at)):
            issue = _timestamp_issue(value, f"Task {self.index}: {label}", optional=True)
            if issue:
                issues.append(issue)

        for iteration in self.iterations:
            if iteration.result not in REPORT_RESULTS:
                issues.append(f"Task {self.index}: invalid iteration result {iteration.result!r}")
            if not isinstance(iteration.detail, str):
                issues.append(f"Task {self.index}: iteration detail must be a string")
            issue = _timestamp_issue(iteration.at, f"Task {self.index}: iteration time")
            if issue:
                issues.append(issue)

        return issues


@dataclass(slots=True)
class LoopState:
    """The whole persisted state of one loop run."""

    plan_filename: str
    started_at: str
    build_command: Optional[str]
    test_command: Optional[str]
    lint_command: Optional[str] = None
    max_retries: int = DEFAULT_MAX_RETRIES
    current_task_index: int = -1
    tasks: List[LoopTask] = field(default_factory=list)
    completed_at: Optional[str] = None
    version: int = STATE_VERSION

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "version": self.version,
            "plan_filename": self.plan_filename,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "build_command": self.build_command,
            "test_command": self.test_command,
            "lint_command": self.lint_command,
            "max_retries": self.max_retries,
            "current_task_index": self.current_task_index,
            "tasks": [task.to_dict() for task in self.tasks],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LoopState":
        """Create from dictionary representation.

        Raises ``KeyError``/``TypeError``/``ValueError`` on malformed input;
        callers that must not fail (the state store) catch those.
        """
        if not isinstance(data, dict):
            raise TypeError("Loop state must be a JSON object")
        if not isinstance(data["plan_filename"], str) or not isinstance(data["started_at"], str):
            raise TypeError("plan_filename and started_at must be strings")
        if not isinstance(data["max_retries"], int) or not isinstance(data["current_task_index"], int):
            raise TypeError("max_retries and current_task_index must be integers")
        if not isinstance(data["tasks"], list):
            raise TypeError("tasks must be a list")

        return cls(
            plan_filename=data["plan_filename"],
            started_at=data["started_at"],
            completed_at=data.get("completed_at"),
            build_command=data.get("build_command"),
            test_command=data.get("test_command"),
            lint_command=data.get("lint_command"),
            max_retries=data["max_retries"],
            current_task_index=data["current_task_index"],
            tasks=[LoopTask.from_dict(item) for item in data["tasks"]],
            version=data.get("version", STATE_VERSION),
        )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def current_task(self) -> Optional[LoopTask]:
        """The task currently in progress, if any."""
        return next((task for task in self.tasks if task.status == "in_progress"), None)

    def next_task(self) -> Optional[LoopTask]:
        """The lowest-index pending task, if any."""
        return next((task for task in self.tasks if task.status == "pending"), None)

    def is_complete(self) -> bool:
        """True when every task has reached a terminal status."""
        return all(task.is_terminal for task in self.tasks)

    def counts(self) -> Dict[str, int]:
        """Number of tasks per status, plus the total."""
        counts = {status: 0 for status in TASK_STATUSES}
        for task in self.tasks:
            counts[task.status] = counts.get(task.status, 0) + 1
        counts["total"] = len(self.tasks)
        return counts

    def validate(self) -> List[str]:
        """Validate the state and return any issues."""
        issues = []

        if self.max_retries < 1:
            issues.append(f"max_retries must be positive, got: {self.max_retries}")
        if not -1 <= self.current_task_index < len(self.tasks):
            issues.append(f"current_task_index out of range: {self.current_task_index}")
        for issue in (
            _timestamp_issue(self.started_at, "started_at"),
            _timestamp_issue(self.completed_at, "completed_at", optional=True),
        ):
            if issue:
                issues.append(issue)

        for position, task in enumerate(self.tasks):
            if task.index != position:
                issues.append(f"Task at position {position} has index {task.index}")
            issues.extend(task.validate())

        active = [task.index for task in self.tasks if task.status == "in_progress"]
        if len(active) > 1:
            issues.append(f"More than one task in progress: {active}")
        elif active and active[0] != self.current_task_index:
            issues.append(
                f"Task {active[0]} is in progress but current_task_index is {self.current_task_index}"
            )

        return issues


@dataclass(slots=True)
class DetectionResult:
    """Build, test and lint commands proposed for a project."""

    detected: bool = False
    build_command: Optional[str] = None
    test_command: Optional[str] = None
    lint_command: Optional[str] = None
    framework: str = "unknown"

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary representation."""
        return {
            "detected": self.detected,
            "build_command": self.build_command,
            "test_command": self.test_command,
            "lint_command": self.lint_command,
            "framework": self.framework,
        }


@dataclass(frozen=True, slots=True)
class Retrying:
    """A failed task still has retries left and stays in progress."""

    remaining: int


@dataclass(frozen=True, slots=True)
class Exhausted:
    """A failed task used up its retries; a human has to decide."""

    attempts: int


RetryOutcome = Union[Retrying, Exhausted]


def retry_outcome(retries: int, max_retries: int) -> RetryOutcome:
    """Classify a task's failure count against the configured budget.

    ``max_retries`` is the number of failures tolerated before escalation,
    so two failures against ``max_retries=2`` is exhausted.
    """
    if retries >= max_retries:
        return Exhausted(attempts=retries)
    return Retrying(remaining=max_retries - retries)
