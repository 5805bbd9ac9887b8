"""Loop state machine.

Every function here takes a ``LoopState`` and mutates or inspects it in
memory; persistence is the caller's job (see ``taskloop.loop``). Task
status only moves forward:

    pending -> in_progress -> passed | failed | skipped
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Sequence

from .errors import InvalidReportError, NoTasksFoundError
from .models import (
    MAX_DETAIL_LENGTH,
    REPORT_RESULTS,
    DetectionResult,
    Exhausted,
    LoopState,
    LoopTask,
    ParsedTask,
    RetryOutcome,
    Retrying,
    TaskIteration,
    retry_outcome,
    to_timestamp,
    utc_now,
)


def _stamp(now: Optional[datetime]) -> str:
    return to_timestamp(now) if now is not None else utc_now()


@dataclass(slots=True)
class ReportOutcome:
    """What a single report did to the loop."""

    task: LoopTask
    result: str
    retry: Optional[RetryOutcome] = None
    next_task: Optional[LoopTask] = None
    loop_complete: bool = False

    @property
    def next_step(self) -> str:
        """One of ``retry``, ``escalate``, ``advance`` or ``complete``."""
        if isinstance(self.retry, Retrying):
            return "retry"
        if isinstance(self.retry, Exhausted):
            return "escalate"
        return "complete" if self.loop_complete else "advance"


@dataclass(slots=True)
class ResumeInfo:
    """Whether a persisted loop was interrupted, and where."""

    interrupted: bool
    task: Optional[LoopTask] = None
    last_iteration: Optional[TaskIteration] = None
    mid_task: bool = False


def build_initial_state(
    plan_filename: str,
    parsed_tasks: Sequence[ParsedTask],
    detection: DetectionResult,
    *,
    max_retries: int,
    build_override: Optional[str] = None,
    test_override: Optional[str] = None,
    now: Optional[datetime] = None,
) -> LoopState:
    """Seed a fresh loop with every task pending and nothing active."""
    if not parsed_tasks:
        raise NoTasksFoundError(f"No tasks found in plan: {plan_filename}")
    if isinstance(max_retries, bool) or not isinstance(max_retries, int) or max_retries < 1:
        raise InvalidReportError(
            f"Invalid max_retries: {max_retries!r}",
            suggestion="max_retries must be a positive integer.",
        )

    tasks = [
        LoopTask(
            index=position,
            description=parsed.description,
            acceptance_criteria=list(parsed.acceptance_criteria),
        )
        for position, parsed in enumerate(parsed_tasks)
    ]
    return LoopState(
        plan_filename=plan_filename,
        started_at=_stamp(now),
        build_command=build_override or detection.build_command,
        test_command=test_override or detection.test_command,
        lint_command=detection.lint_command,
        max_retries=max_retries,
        current_task_index=-1,
        tasks=tasks,
    )


def start_task(state: LoopState, task: LoopTask, now: Optional[datetime] = None) -> LoopTask:
    """Promote a pending task to in_progress and point the loop at it."""
    task.status = "in_progress"
    task.started_at = _stamp(now)
    state.current_task_index = task.index
    return task


def advance(state: LoopState, now: Optional[datetime] = None) -> Optional[LoopTask]:
    """Start the lowest pending task, or mark the loop complete.

    Returns the newly started task, or ``None`` once the loop is complete.
    """
    next_task = state.next_task()
    if next_task is not None:
        return start_task(state, next_task, now)

    state.current_task_index = -1
    if state.completed_at is None:
        state.completed_at = _stamp(now)
    return None


def auto_advance(state: LoopState, now: Optional[datetime] = None) -> Optional[LoopTask]:
    """Promote the next pending task if nothing is active.

    Returns the task that was started, or ``None`` when nothing changed.
    """
    if state.current_task() is not None or state.is_complete():
        return None
    next_task = state.next_task()
    if next_task is None:
        return None
    return start_task(state, next_task, now)


def active_task(state: LoopState) -> Optional[LoopTask]:
    """The task a report applies to, read from ``current_task_index`` alone."""
    if 0 <= state.current_task_index < len(state.tasks):
        return state.tasks[state.current_task_index]
    return None


def apply_report(
    state: LoopState,
    result: str,
    detail: str,
    now: Optional[datetime] = None,
) -> ReportOutcome:
    """Record one attempt at the active task and move the loop forward.

    Raises ``InvalidReportError`` without touching ``state`` when the
    result is unknown, the loop is finished, or nothing is active.
    """
    if result not in REPORT_RESULTS:
        raise InvalidReportError(
            f"Invalid result: {result!r}",
            suggestion="Report one of: pass, fail, skip.",
        )
    if state.is_complete():
        raise InvalidReportError(
            "Loop is already complete.",
            suggestion="Run loop_summary to generate the results report.",
        )

    task = active_task(state)
    if task is None:
        raise InvalidReportError(
            "No task is currently in progress.",
            suggestion="Run loop_status to advance to the next task.",
        )
    if task.is_terminal:
        raise InvalidReportError(
            f"Task #{task.index + 1} is already {task.status}.",
            suggestion="Run loop_status to advance to the next task.",
        )
    if task.status == "pending":
        start_task(state, task, now)

    stamp = _stamp(now)
    task.iterations.append(TaskIteration(at=stamp, result=result, detail=(detail or "")[:MAX_DETAIL_LENGTH]))
    outcome = ReportOutcome(task=task, result=result)

    if result == "pass":
        task.status = "passed"
    elif result == "skip":
        task.status = "skipped"
    else:
        task.retries += 1
        outcome.retry = retry_outcome(task.retries, state.max_retries)
        if isinstance(outcome.retry, Retrying):
            return outcome
        task.status = "failed"

    task.completed_at = stamp
    outcome.next_task = advance(state, now)
    outcome.loop_complete = outcome.next_task is None
    return outcome


def classify_resume(state: Optional[LoopState]) -> ResumeInfo:
    """Decide whether a persisted loop was interrupted.

    Interrupted means a task is in progress (crash mid-task) or a pending
    task exists with none in progress (crash between tasks).
    """
    if state is None or state.is_complete():
        return ResumeInfo(interrupted=False)

    current = state.current_task()
    if current is not None:
        return ResumeInfo(
            interrupted=True,
            task=current,
            last_iteration=current.last_iteration,
            mid_task=True,
        )

    pending = state.next_task()
    if pending is not None:
        return ResumeInfo(interrupted=True, task=pending, last_iteration=pending.last_iteration)
    return ResumeInfo(interrupted=False)
