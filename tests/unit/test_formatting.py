"""Unit tests for progress and summary rendering."""

from datetime import datetime, timezone

import pytest

from taskloop.formatting import (
    format_loop_duration,
    format_progress,
    format_summary,
    format_task_duration,
    format_task_line,
    ordinal,
    plural,
    progress_bar,
    truncate,
)
from taskloop.models import LoopState, LoopTask, TaskIteration

NOW = datetime(2024, 1, 1, 12, 7, 0, tzinfo=timezone.utc)


def _iterations(result, count, detail="ok"):
    return [TaskIteration(at="2024-01-01T12:00:00.000Z", result=result, detail=detail) for _ in range(count)]


@pytest.fixture
def mixed_state():
    """One task in every status."""
    return LoopState(
        plan_filename="plan.md",
        started_at="2024-01-01T12:00:00.000Z",
        build_command="make build",
        test_command=None,
        max_retries=3,
        current_task_index=3,
        tasks=[
            LoopTask(
                index=0,
                description="Add validation",
                acceptance_criteria=["Rejects empty"],
                status="passed",
                iterations=_iterations("pass", 1),
                started_at="2024-01-01T12:00:00.000Z",
                completed_at="2024-01-01T12:00:45.000Z",
            ),
            LoopTask(
                index=1,
                description="Fix | pipes",
                status="failed",
                retries=3,
                iterations=_iterations("fail", 3, detail="E" * 300),
                started_at="2024-01-01T12:01:00.000Z",
                completed_at="2024-01-01T12:03:30.000Z",
            ),
            LoopTask(
                index=2,
                description="Skip me",
                status="skipped",
                iterations=_iterations("skip", 1),
                started_at="2024-01-01T12:04:00.000Z",
                completed_at="2024-01-01T12:04:00.000Z",
            ),
            LoopTask(
                index=3,
                description="In progress one",
                status="in_progress",
                retries=1,
                iterations=_iterations("fail", 1),
                started_at="2024-01-01T12:05:00.000Z",
            ),
            LoopTask(index=4, description="Pending"),
        ],
    )


class TestHelpers:
    """Test cases for small text helpers."""

    def test_plural(self):
        """Singular for one, plural otherwise."""
        assert plural(1, "retry", "retries") == "1 retry"
        assert plural(2, "retry", "retries") == "2 retries"
        assert plural(0, "task") == "0 tasks"

    @pytest.mark.parametrize(
        "number, expected",
        [(1, "1st"), (2, "2nd"), (3, "3rd"), (4, "4th"), (11, "11th"), (12, "12th"),
         (13, "13th"), (21, "21st"), (22, "22nd"), (101, "101st"), (111, "111th")],
    )
    def test_ordinal(self, number, expected):
        """Ordinal suffixes follow English rules."""
        assert ordinal(number) == expected

    def test_truncate(self):
        """Long text is cut to the limit including the ellipsis."""
        assert truncate("short", 60) == "short"
        cut = truncate("x" * 70, 60)
        assert len(cut) == 60
        assert cut.endswith("...")

    def test_progress_bar(self):
        """The bar always has the requested width."""
        assert progress_bar(0, 0) == "░" * 20
        assert progress_bar(3, 5) == "█" * 12 + "░" * 8
        assert progress_bar(4, 4, width=10) == "█" * 10


class TestDurations:
    """Test cases for duration formatting."""

    def _task(self, seconds):
        return LoopTask(
            index=0,
            description="t",
            status="passed",
            started_at="2024-01-01T12:00:00.000Z",
            completed_at=f"2024-01-01T12:{seconds // 60:02d}:{seconds % 60:02d}.000Z",
        )

    def test_task_durations(self):
        """Seconds, minutes and sub-second durations."""
        assert format_task_duration(self._task(0)) == "< 1s"
        assert format_task_duration(self._task(42)) == "42s"
        assert format_task_duration(self._task(90)) == "1m 30s"
        assert format_task_duration(self._task(120)) == "2m"

    def test_unstarted_task_has_no_duration(self):
        """Pending tasks have no duration."""
        assert format_task_duration(LoopTask(index=0, description="t")) is None

    def test_running_task_uses_now(self):
        """In-progress tasks are measured against now."""
        task = LoopTask(index=0, description="t", status="in_progress", started_at="2024-01-01T12:05:00.000Z")
        assert format_task_duration(task, NOW) == "2m"

    def test_loop_duration(self, mixed_state):
        """Loop duration is in whole minutes."""
        assert format_loop_duration(mixed_state, NOW) == "7 minutes"
        mixed_state.completed_at = "2024-01-01T12:00:20.000Z"
        assert format_loop_duration(mixed_state, NOW) == "< 1 minute"
        mixed_state.completed_at = "2024-01-01T12:01:00.000Z"
        assert format_loop_duration(mixed_state, NOW) == "1 minute"


class TestTaskLine:
    """Test cases for task history rows."""

    def test_rows(self, mixed_state):
        """Each status renders its glyph, attempts and time."""
        lines = [format_task_line(task, NOW) for task in mixed_state.tasks]

        assert lines == [
            "  ✓ #1 Add validation (1 iteration) [45s]",
            "  ✗ #2 Fix | pipes (3 iterations, 3 retries) [2m 30s]",
            "  ⊘ #3 Skip me [< 1s]",
            "  ▶ #4 In progress one (1 iteration, 1 retry) [2m]",
            "  ○ #5 Pending",
        ]


class TestFormatProgress:
    """Test cases for the progress view."""

    def test_current_task_view(self, mixed_state):
        """Progress shows the bar, counts, the active task and commands."""
        text = format_progress(mixed_state, NOW)
        lines = text.splitlines()

        assert lines[0] == "Progress: " + "█" * 12 + "░" * 8 + " 3/5 tasks (60%)"
        assert "Passed: 1  |  Failed: 1  |  Skipped: 1  |  Pending: 1" in lines[1]
        assert "Current Task (#4):" in lines
        assert '  "In progress one"' in lines
        assert "  Attempt: 2/3" in lines
        assert "Build: make build" in lines
        assert "Test:  (not detected)" in lines
        assert not any(line.startswith("Lint:") for line in lines)
        assert "Max retries: 3" in lines
        assert "Task History:" in lines

    def test_next_task_view(self, mixed_state):
        """Between tasks the next pending task and its criteria are shown."""
        mixed_state.tasks[3].status = "passed"
        mixed_state.tasks[4].acceptance_criteria = ["Logs errors"]
        mixed_state.current_task_index = -1
        mixed_state.lint_command = "make lint"

        lines = format_progress(mixed_state, NOW).splitlines()

        assert "Next Task (#5):" in lines
        assert "  Acceptance Criteria:" in lines
        assert "    - Logs errors" in lines
        assert "Lint:  make lint" in lines

    def test_complete_view(self, mixed_state):
        """A finished loop says so."""
        mixed_state.tasks[3].status = "passed"
        mixed_state.tasks[4].status = "skipped"
        mixed_state.current_task_index = -1

        text = format_progress(mixed_state, NOW)

        assert "All tasks complete." in text
        assert "5/5 tasks (100%)" in text


class TestFormatSummary:
    """Test cases for the markdown summary."""

    def test_summary_table(self, mixed_state):
        """Test the table, totals, timing and failures."""
        text = format_summary(mixed_state, NOW)
        lines = text.splitlines()

        assert lines[0] == "## Loop Summary"
        assert "| # | Task | Status | Attempts |" in lines
        assert "| 1 | Add validation | Passed | 1 |" in lines
        assert "| 2 | Fix \\| pipes | Failed | 3 |" in lines
        assert "| 3 | Skip me | Skipped | 1 |" in lines
        assert "| 4 | In progress one | In Progress | 1 |" in lines
        assert "| 5 | Pending | Pending | — |" in lines
        assert (
            "**Results: 1 passed, 1 failed, 1 skipped** (6 total iterations) | **ACs: 1/1 satisfied**"
            in lines
        )
        assert "Duration: 7 minutes" in lines
        assert "Plan: plan.md" in lines
        assert "### Failed Tasks" in lines
        assert "- **#2**: Fix | pipes" in lines
        assert "  Last error: " + "E" * 200 in lines

    def test_long_descriptions_are_truncated(self, mixed_state):
        """Table cells are cut to 60 characters."""
        mixed_state.tasks[0].description = "d" * 80

        text = format_summary(mixed_state, NOW)

        assert "| 1 | " + "d" * 57 + "... | Passed | 1 |" in text

    def test_no_criteria_no_failures(self, mixed_state):
        """The AC tally and failure section only appear when relevant."""
        mixed_state.tasks[0].acceptance_criteria = []
        mixed_state.tasks[1].status = "passed"

        text = format_summary(mixed_state, NOW)

        assert "ACs:" not in text
        assert "### Failed Tasks" not in text
