"""Human-readable progress and summary reports for a loop."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import List, Optional

from .models import LoopState, LoopTask, parse_timestamp

SUMMARY_DESCRIPTION_LIMIT = 60
FAILURE_DETAIL_LIMIT = 200
RESPONSE_DETAIL_LIMIT = 200
PROGRESS_BAR_WIDTH = 20
NOT_DETECTED = "(not detected)"

STATUS_GLYPHS = {
    "passed": "\u2713",
    "failed": "\u2717",
    "skipped": "\u2298",
    "in_progress": "\u25B6",
    "pending": "\u25CB",
}

STATUS_LABELS = {
    "passed": "Passed",
    "failed": "Failed",
    "skipped": "Skipped",
    "in_progress": "In Progress",
    "pending": "Pending",
}


def _now(now: Optional[datetime]) -> datetime:
    return now if now is not None else datetime.now(timezone.utc)


def plural(count: int, singular: str, plural_form: Optional[str] = None) -> str:
    """``1 retry`` / ``2 retries``."""
    word = singular if count == 1 else (plural_form or f"{singular}s")
    return f"{count} {word}"


def ordinal(number: int) -> str:
    if 10 <= number % 100 <= 20:
        suffix = "th"
    else:
        suffix = {1: "st", 2: "nd", 3: "rd"}.get(number % 10, "th")
    return f"{number}{suffix}"


def truncate(text: str, limit: int) -> str:
    """Cut ``text`` to ``limit`` characters, ending in ``...`` when cut."""
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def progress_bar(done: int, total: int, width: int = PROGRESS_BAR_WIDTH) -> str:
    """Visual progress bar using block characters."""
    if total == 0:
        return "\u2591" * width
    filled = round((done / total) * width)
    return "\u2588" * filled + "\u2591" * (width - filled)


def format_task_duration(task: LoopTask, now: Optional[datetime] = None) -> Optional[str]:
    """Time spent on a task, or ``None`` if it never started."""
    if not task.started_at:
        return None
    start = parse_timestamp(task.started_at)
    end = parse_timestamp(task.completed_at) if task.completed_at else _now(now)
    seconds = (end - start).total_seconds()

    if seconds < 1:
        return "< 1s"
    if seconds < 60:
        return f"{round(seconds)}s"
    minutes = int(seconds // 60)
    secs = round(seconds % 60)
    return f"{minutes}m {secs}s" if secs > 0 else f"{minutes}m"


def format_loop_duration(state: LoopState, now: Optional[datetime] = None) -> str:
    """Elapsed loop time in whole minutes."""
    start = parse_timestamp(state.started_at)
    end = parse_timestamp(state.completed_at) if state.completed_at else _now(now)
    minutes = round((end - start).total_seconds() / 60)
    if minutes <= 0:
        return "< 1 minute"
    return plural(minutes, "minute")


def format_commands(state: LoopState) -> List[str]:
    lines = [
        f"Build: {state.build_command or NOT_DETECTED}",
        f"Test:  {state.test_command or NOT_DETECTED}",
    ]
    if state.lint_command:
        lines.append(f"Lint:  {state.lint_command}")
    return lines


def _task_block(heading: str, task: LoopTask) -> List[str]:
    return ["", f"{heading} (#{task.index + 1}):", f'  "{task.description}"']


def _criteria_lines(task: LoopTask) -> List[str]:
    if not task.acceptance_criteria:
        return []
    return ["  Acceptance Criteria:"] + [f"    - {criterion}" for criterion in task.acceptance_criteria]


def format_task_line(task: LoopTask, now: Optional[datetime] = None) -> str:
    """One task-history row: glyph, number, description, attempts, time."""
    parts = [f"  {STATUS_GLYPHS.get(task.status, '?')} #{task.index + 1} {task.description}"]

    if task.iterations and task.status != "skipped":
        info = plural(len(task.iterations), "iteration")
        if task.retries > 0:
            info += f", {plural(task.retries, 'retry', 'retries')}"
        parts.append(f" ({info})")

    if task.status != "pending":
        duration = format_task_duration(task, now)
        if duration:
            parts.append(f" [{duration}]")
    return "".join(parts)


def format_progress(state: LoopState, now: Optional[datetime] = None) -> str:
    """Format the current loop status as a human-readable string."""
    counts = state.counts()
    total = counts["total"]
    done = counts["passed"] + counts["failed"] + counts["skipped"]
    pct = round((done / total) * 100) if total else 0

    lines: List[str] = [
        f"Progress: {progress_bar(done, total)} {done}/{total} tasks ({pct}%)",
        f"  Passed: {counts['passed']}  |  Failed: {counts['failed']}  |  "
        f"Skipped: {counts['skipped']}  |  Pending: {counts['pending']}",
    ]

    current = state.current_task()
    upcoming = state.next_task()
    if current:
        lines.extend(_task_block("Current Task", current))
        lines.append(f"  Attempt: {current.retries + 1}/{state.max_retries}")
        lines.extend(_criteria_lines(current))
    elif upcoming:
        lines.extend(_task_block("Next Task", upcoming))
        lines.extend(_criteria_lines(upcoming))
    elif state.is_complete():
        lines.extend(["", "All tasks complete."])

    lines.append("")
    lines.extend(format_commands(state))
    lines.append(f"Max retries: {state.max_retries}")

    lines.extend(["", "Task History:"])
    lines.extend(format_task_line(task, now) for task in state.tasks)

    return "\n".join(lines)


def _table_cell(text: str) -> str:
    return truncate(text, SUMMARY_DESCRIPTION_LIMIT).replace("|", "\\|").replace("\n", " ")


def format_summary(state: LoopState, now: Optional[datetime] = None) -> str:
    """Markdown summary: results table, totals, timing and failures."""
    counts = state.counts()
    total_iterations = sum(len(task.iterations) for task in state.tasks)

    lines: List[str] = [
        "## Loop Summary",
        "",
        "| # | Task | Status | Attempts |",
        "|---|------|--------|----------|",
    ]
    for task in state.tasks:
        attempts = str(len(task.iterations)) if task.iterations else "\u2014"
        lines.append(
            f"| {task.index + 1} | {_table_cell(task.description)} | "
            f"{STATUS_LABELS.get(task.status, task.status)} | {attempts} |"
        )

    results = (
        f"**Results: {counts['passed']} passed, {counts['failed']} failed, "
        f"{counts['skipped']} skipped** ({total_iterations} total iterations)"
    )
    total_criteria = sum(len(task.acceptance_criteria) for task in state.tasks)
    if total_criteria:
        satisfied = sum(len(task.acceptance_criteria) for task in state.tasks if task.status == "passed")
        results += f" | **ACs: {satisfied}/{total_criteria} satisfied**"

    lines.extend(["", results])
    lines.append(f"Duration: {format_loop_duration(state, now)}")
    lines.append(f"Plan: {state.plan_filename}")

    failed = [task for task in state.tasks if task.status == "failed"]
    if failed:
        lines.extend(["", "### Failed Tasks"])
        for task in failed:
            lines.append(f"- **#{task.index + 1}**: {task.description}")
            last = task.last_iteration
            if last:
                lines.append(f"  Last error: {last.detail[:FAILURE_DETAIL_LIMIT]}")

    return "\n".join(lines)
