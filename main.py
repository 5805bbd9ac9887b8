"""MCP server exposing the iterative task loop tools."""

from __future__ import annotations

from pathlib import Path
from typing import Any, Dict, Literal, Optional

from mcp.server.fastmcp import FastMCP

from taskloop.config import log_file, log_level
from taskloop.loop import LoopManager
from taskloop.loop_logging import setup_logging
from taskloop.workspace import resolve_root

mcp = FastMCP("taskloop")

SERVER_ROOT = Path(__file__).resolve().parent


def _manager(root: Optional[str]) -> LoopManager:
    return LoopManager(resolve_root(root, extra_bases=[SERVER_ROOT]))


def _manager_optional(root: Optional[str]) -> Optional[LoopManager]:
    try:
        return _manager(root)
    except ValueError:
        return None


@mcp.tool()
def loop_init(
    plan_filename: str,
    build_command: Optional[str] = None,
    test_command: Optional[str] = None,
    max_retries: Optional[int] = None,
    plan_text: Optional[str] = None,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 1: Initialize an implementation loop from a plan.
    Parses unchecked plan tasks (with their `- AC:` acceptance criteria), auto-detects
    build/test commands and persists the loop state for task-by-task tracking.
    The plan is read from `.taskloop/plans/<plan_filename>` unless plan_text is given.
    max_retries is the number of failed attempts tolerated per task before escalating (default: 3)."""

    return _manager(root).initialize(
        plan_filename,
        build_command=build_command,
        test_command=test_command,
        max_retries=max_retries,
        plan_text=plan_text,
    )


@mcp.tool()
def loop_status(root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 2: Get the current loop progress: the active task, what has been completed,
    retry counts and the detected build/test commands.
    If no task is active, the next pending task is started before responding.
    Call this to decide what to implement next."""

    return _manager(root).status()


@mcp.tool()
def loop_report(
    result: Literal["pass", "fail", "skip"],
    detail: str,
    root: Optional[str] = None,
) -> Dict[str, Any]:
    """STEP 3: Report the outcome of the current task after running build/tests.
    'pass' advances to the next task, 'fail' retries in place until max_retries failures,
    then escalates to the user; 'skip' defers the task.
    detail holds the test output summary, error message or skip reason."""

    return _manager(root).report(result, detail)


@mcp.tool()
def loop_resume(root: Optional[str] = None) -> Dict[str, Any]:
    """Check whether a previous loop was interrupted (mid-task or between tasks)
    and return the task to pick up with its last recorded attempt. Does not change state."""

    return _manager(root).resume()


@mcp.tool()
def loop_summary(root: Optional[str] = None) -> Dict[str, Any]:
    """STEP 4: Generate a markdown summary of the loop results (task table, totals,
    duration and failed-task details) for the quality report or PR body."""

    return _manager(root).summary()


@mcp.resource("taskloop://progress")
def resource_progress() -> str:
    """Read-only progress view; unlike loop_status it never starts a task."""

    manager = _manager_optional(None)
    if not manager:
        return (
            "No project root detected. Launch tools with a 'root' argument or set TASKLOOP_PROJECT_ROOT."
        )

    progress = manager.peek()
    if progress is None:
        return "No active loop. Run loop_init to start one."
    return progress


@mcp.resource("taskloop://plans")
def resource_plans() -> str:
    """Plans available to loop_init."""

    manager = _manager_optional(None)
    if not manager:
        return (
            "No project root detected. Launch tools with a 'root' argument or set TASKLOOP_PROJECT_ROOT."
        )

    plans = manager.workspace.list_plans()
    if not plans:
        return f"No plans found in {manager.workspace.plans_dir}."
    return "\n".join(["Task Loop Plans", ""] + [f"- {plan}" for plan in plans])


def main() -> None:
    setup_logging(log_level(), log_file())
    mcp.run(transport="stdio")


if __name__ == "__main__":
    main()
