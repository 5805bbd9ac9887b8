"""Loop management for the task loop.

``LoopManager`` is the operation surface used by the MCP tools. Each call
loads the state document fresh, applies one engine transition and writes
the whole document back, so separate processes can drive the same loop.
Results are dictionaries; expected failures come back as ``error``
entries rather than exceptions.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from . import engine
from .detection import detect_commands
from .errors import NoActiveLoopError, PlanNotFoundError, TaskLoopError
from .formatting import (
    RESPONSE_DETAIL_LIMIT,
    format_progress,
    format_summary,
    ordinal,
    plural,
)
from .loop_logging import (
    log_error_with_context,
    log_escalation,
    log_operation,
    log_performance,
    log_task_reported,
    log_task_started,
    observability_hooks,
)
from .models import DEFAULT_MAX_RETRIES, Exhausted, LoopState, Retrying
from .parser import parse_tasks
from .workspace import Workspace

logger = logging.getLogger("taskloop.loop")


class LoopManager:
    """Drive one project's task loop through its persisted state."""

    def __init__(self, root: Path | str):
        """Initialize loop manager with workspace root."""
        self.workspace = Workspace(root)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _load(self) -> LoopState:
        state = self.workspace.store.read()
        if state is None:
            raise NoActiveLoopError("No active loop.")
        return state

    def _save(self, state: LoopState) -> None:
        self.workspace.store.write(state)

    def _error(self, error: TaskLoopError, operation: str, next_step: str, **context) -> Dict[str, Any]:
        log_error_with_context(error, {"operation": operation, "root": str(self.workspace.root), **context})
        return {
            "error": str(error),
            "suggestion": error.suggestion,
            "next_suggested_step": next_step,
            "message": f"Error: {error}",
        }

    def _resolve_max_retries(self, max_retries: Optional[int]) -> int:
        if max_retries is not None:
            return max_retries
        configured = self.workspace.load_config().max_retries
        return configured if configured is not None else DEFAULT_MAX_RETRIES

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    @log_performance("loop_init")
    def initialize(
        self,
        plan_filename: str,
        build_command: Optional[str] = None,
        test_command: Optional[str] = None,
        max_retries: Optional[int] = None,
        plan_text: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """Parse the plan, detect commands and persist a fresh loop."""
        try:
            with log_operation("loop_init", plan_filename=plan_filename):
                self.workspace.resolve_plan_path(plan_filename)
                content = plan_text if plan_text is not None else self.workspace.load_plan(plan_filename)

                parsed = parse_tasks(content)
                detection = detect_commands(self.workspace.root)
                state = engine.build_initial_state(
                    plan_filename,
                    parsed,
                    detection,
                    max_retries=self._resolve_max_retries(max_retries),
                    build_override=build_command,
                    test_override=test_command,
                    now=now,
                )
                self._save(state)
        except TaskLoopError as e:
            result = self._error(e, "loop_init", "loop_init", plan_filename=plan_filename)
            if isinstance(e, PlanNotFoundError):
                result["available_plans"] = self.workspace.list_plans()
            return result

        logger.info(f"Loop initialized for {plan_filename} with {len(state.tasks)} tasks at {self.workspace.state_path}")
        observability_hooks.log_loop_event(
            "loop_initialized",
            plan_filename=plan_filename,
            task_count=len(state.tasks),
            framework=detection.framework,
        )

        detection_info = (
            f"Auto-detected ({detection.framework})"
            if detection.detected
            else "Not detected — provide overrides if needed"
        )
        first = state.tasks[0]
        return {
            "plan_filename": plan_filename,
            "state_path": str(self.workspace.state_path),
            "task_count": len(state.tasks),
            "tasks": [task.to_dict() for task in state.tasks],
            "detection": detection.to_dict(),
            "build_command": state.build_command,
            "test_command": state.test_command,
            "lint_command": state.lint_command,
            "max_retries": state.max_retries,
            "detection_summary": detection_info,
            "next_suggested_step": "loop_status",
            "workflow_tip": "Next: Run loop_status to begin, then implement the task and run build/tests.",
            "message": (
                f"Loop initialized from {plan_filename} with {plural(len(state.tasks), 'task')}. "
                f"Detection: {detection_info}. First task (#1): \"{first.description}\""
            ),
        }

    @log_performance("loop_status")
    def status(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Report progress, starting the next pending task if none is active.

        This is not a pure read: when no task is in progress and the loop is
        not complete, the next pending task is promoted and the state is
        written before responding. Use ``peek`` for a side-effect-free view.
        """
        try:
            state = self._load()
        except TaskLoopError as e:
            return self._error(e, "loop_status", "loop_init")

        started = engine.auto_advance(state, now)
        if started is not None:
            self._save(state)
            log_task_started(state.plan_filename, started.index, trigger="status")

        current = state.current_task()
        complete = state.is_complete()
        if complete:
            next_step, tip = "loop_summary", "All tasks complete. Run loop_summary to generate the results report."
        else:
            next_step, tip = "loop_report", "Implement the current task, run build/tests, then report with loop_report."

        return {
            "plan_filename": state.plan_filename,
            "current_task": current.to_dict() if current else None,
            "advanced": started is not None,
            "complete": complete,
            "counts": state.counts(),
            "progress": format_progress(state, now),
            "next_suggested_step": next_step,
            "workflow_tip": tip,
            "message": f"Working on task #{current.index + 1}" if current else "Loop complete",
        }

    def peek(self, now: Optional[datetime] = None) -> Optional[str]:
        """Progress text without any state change, or ``None`` if no loop."""
        state = self.workspace.store.read()
        return format_progress(state, now) if state else None

    @log_performance("loop_report")
    def report(self, result: str, detail: str, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Record the outcome of the active task and return the next step."""
        try:
            state = self._load()
            outcome = engine.apply_report(state, result, detail, now)
        except NoActiveLoopError as e:
            return self._error(e, "loop_report", "loop_init", result=result)
        except TaskLoopError as e:
            return self._error(e, "loop_report", "loop_status", result=result)

        self._save(state)

        task = outcome.task
        logger.info(f"Task #{task.index + 1} reported {result}; next step: {outcome.next_step}")
        number = task.index + 1
        short_detail = (detail or "")[:RESPONSE_DETAIL_LIMIT]
        attempt = len(task.iterations)

        if result == "pass":
            message = f"✓ Task #{number} PASSED ({ordinal(attempt)} attempt)\n  \"{task.description}\"\n  Detail: {short_detail}"
        elif result == "skip":
            message = f"⊘ Task #{number} SKIPPED\n  \"{task.description}\"\n  Reason: {short_detail}"
        elif isinstance(outcome.retry, Retrying):
            message = (
                f"⚠ Task #{number} FAILED (attempt {attempt}/{state.max_retries})\n"
                f"  \"{task.description}\"\n  Detail: {short_detail}\n\n"
                f"→ Fix the issue and run build/tests again. "
                f"{plural(outcome.retry.remaining, 'retry', 'retries')} remaining."
            )
        else:
            message = (
                f"✗ Task #{number} FAILED — retries exhausted ({attempt}/{state.max_retries} attempts)\n"
                f"  \"{task.description}\"\n  Detail: {short_detail}\n\n"
                f"→ ASK THE USER how to proceed. Suggest: fix manually, skip task, or abort loop."
            )

        log_task_reported(state.plan_filename, task.index, result, task.status, retries=task.retries)
        if isinstance(outcome.retry, Exhausted):
            log_escalation(state.plan_filename, task.index, outcome.retry.attempts)

        if outcome.next_task is not None:
            message += f"\n\n→ Next: Task #{outcome.next_task.index + 1} \"{outcome.next_task.description}\""
            log_task_started(state.plan_filename, outcome.next_task.index, trigger="report")
        elif outcome.loop_complete:
            message += "\n\n✓ All tasks complete. Run loop_summary to generate the results report."
            observability_hooks.log_loop_event("loop_completed", plan_filename=state.plan_filename, counts=state.counts())

        next_tool, tip = {
            "retry": ("loop_report", "Fix the failure, rerun build/tests, then report again."),
            "escalate": ("loop_status", "Ask the user how to proceed before continuing with the next task."),
            "advance": ("loop_report", "Implement the next task, run build/tests, then report with loop_report."),
            "complete": ("loop_summary", "All tasks complete. Run loop_summary to generate the results report."),
        }[outcome.next_step]

        response: Dict[str, Any] = {
            "task": task.to_dict(),
            "result": result,
            "next_step": outcome.next_step,
            "next_task": outcome.next_task.to_dict() if outcome.next_task else None,
            "complete": outcome.loop_complete,
            "progress": format_progress(state, now),
            "next_suggested_step": next_tool,
            "workflow_tip": tip,
            "message": message,
        }
        if isinstance(outcome.retry, Retrying):
            response["retries_remaining"] = outcome.retry.remaining
        if isinstance(outcome.retry, Exhausted):
            response["escalation"] = {
                "attempts": outcome.retry.attempts,
                "options": ["fix manually", "skip task", "abort loop"],
            }
        return response

    def resume(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Diagnose an interrupted loop without changing it."""
        state = self.workspace.store.read()
        info = engine.classify_resume(state)

        if not info.interrupted:
            message = "Nothing to resume."
            if state is not None:
                message += " The loop is complete; run loop_summary for the results."
            return {
                "interrupted": False,
                "complete": state is not None,
                "next_suggested_step": "loop_summary" if state is not None else "loop_init",
                "workflow_tip": "Start a new loop with loop_init when a plan is ready.",
                "message": message,
            }

        task = info.task
        where = "mid-task" if info.mid_task else "between tasks"
        message = f"Loop for {state.plan_filename} was interrupted {where}: task #{task.index + 1} \"{task.description}\""
        if info.last_iteration is not None:
            message += (
                f"\nLast attempt ({info.last_iteration.result}): "
                f"{info.last_iteration.detail[:RESPONSE_DETAIL_LIMIT]}"
            )
        return {
            "interrupted": True,
            "mid_task": info.mid_task,
            "plan_filename": state.plan_filename,
            "task": task.to_dict(),
            "last_iteration": info.last_iteration.to_dict() if info.last_iteration else None,
            "progress": format_progress(state, now),
            "next_suggested_step": "loop_report" if info.mid_task else "loop_status",
            "workflow_tip": (
                "Continue the current task, run build/tests, then report with loop_report."
                if info.mid_task
                else "Run loop_status to start the next pending task."
            ),
            "message": message,
        }

    def summary(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """Render the final results table."""
        state = self.workspace.store.read()
        if state is None:
            error = NoActiveLoopError(
                "No loop data found.",
                suggestion="Run loop_init to start a loop, or this may have been cleaned up already.",
            )
            return self._error(error, "loop_summary", "loop_init")

        counts = state.counts()
        return {
            "plan_filename": state.plan_filename,
            "complete": state.is_complete(),
            "counts": counts,
            "total_iterations": sum(len(task.iterations) for task in state.tasks),
            "summary": format_summary(state, now),
            "next_suggested_step": "loop_init" if state.is_complete() else "loop_status",
            "workflow_tip": "Paste the summary into the quality report or PR description.",
            "message": f"{counts['passed']} passed, {counts['failed']} failed, {counts['skipped']} skipped",
        }
