"""
Contract tests for the loop lifecycle:
tasks come out of the plan in order, at most one task is ever in progress,
retries escalate after exactly max_retries failures, and a persisted loop
reads back unchanged.
"""

import itertools
from datetime import datetime, timezone

import pytest

from taskloop import engine
from taskloop.detection import detect_commands
from taskloop.loop import LoopManager
from taskloop.models import DetectionResult
from taskloop.parser import parse_tasks
from taskloop.store import StateStore

NOW = datetime(2024, 3, 1, 9, 30, 0, tzinfo=timezone.utc)


def _plan(count):
    lines = ["## Tasks"] + [f"- [ ] Task {i + 1}: Item {i + 1}" for i in range(count)]
    return "\n".join(lines) + "\n"


def _state(count, max_retries=3):
    return engine.build_initial_state(
        "plan.md", parse_tasks(_plan(count)), DetectionResult(), max_retries=max_retries, now=NOW
    )


def _assert_single_active(state):
    active = [task for task in state.tasks if task.status == "in_progress"]
    assert len(active) <= 1
    if active:
        assert state.current_task_index == active[0].index


class TestPlanContract:
    """Contract tests for plan parsing."""

    @pytest.mark.parametrize("count", [1, 2, 5, 12])
    def test_n_items_yield_n_tasks_in_order(self, tmp_path, count):
        """
        Given: A plan with N unchecked items in a Tasks section
        When: the loop is initialized
        Then: exactly N tasks exist, in source order, with index = position
        """
        result = LoopManager(tmp_path).initialize("plan.md", plan_text=_plan(count))

        assert result["task_count"] == count
        assert [task["index"] for task in result["tasks"]] == list(range(count))
        assert [task["description"] for task in result["tasks"]] == [f"Item {i + 1}" for i in range(count)]

    def test_prefix_stripping_requires_literal_pattern(self):
        """
        Given: descriptions that only resemble the 'Task N:' prefix
        Then: they are preserved unchanged
        """
        plan = (
            "## Tasks\n"
            "- [ ] Tasking the team with reviews\n"
            "- [ ] Task: no number here\n"
            "- [ ] Task 3: stripped\n"
        )

        assert [task.description for task in parse_tasks(plan)] == [
            "Tasking the team with reviews",
            "Task: no number here",
            "stripped",
        ]

    @pytest.mark.parametrize("marker", ["[x]", "[X]"])
    def test_checked_items_are_excluded(self, marker):
        """Checked items never become tasks."""
        plan = f"## Tasks\n- {marker} Finished\n- [ ] Open\n"
        assert [task.description for task in parse_tasks(plan)] == ["Open"]


class TestDetectionContract:
    """Contract tests for command detection."""

    def test_detection_is_idempotent(self, tmp_path):
        """Detecting twice on an unchanged project gives the same result."""
        (tmp_path / "package.json").write_text(
            '{"scripts": {"build": "tsc", "test": "jest"}, "devDependencies": {"jest": "29"}}',
            encoding="utf-8",
        )
        (tmp_path / "Makefile").write_text("build:\n\ttrue\n", encoding="utf-8")

        assert detect_commands(tmp_path) == detect_commands(tmp_path)


class TestStateMachineContract:
    """Contract tests for loop transitions."""

    @pytest.mark.parametrize("script", list(itertools.product(["pass", "fail", "skip"], repeat=4)))
    def test_single_active_task_and_bounded_counts(self, script):
        """
        Given: any sequence of reports against a three-task loop
        Then: at most one task is in progress, and finished counts never exceed the total
        """
        state = _state(3, max_retries=2)
        engine.auto_advance(state, NOW)
        _assert_single_active(state)

        for result in script:
            if state.is_complete():
                break
            engine.apply_report(state, result, "detail", NOW)
            _assert_single_active(state)

            counts = state.counts()
            finished = counts["passed"] + counts["failed"] + counts["skipped"]
            assert finished <= counts["total"]
            if state.is_complete():
                assert finished == counts["total"]

    @pytest.mark.parametrize("max_retries", [1, 2, 3, 5])
    def test_fail_exactly_max_retries_times(self, max_retries):
        """
        Given: a task reported as failed
        Then: fewer than max_retries failures keep it in progress; the last one fails it and advances
        """
        state = _state(2, max_retries=max_retries)
        engine.auto_advance(state, NOW)

        for attempt in range(1, max_retries):
            outcome = engine.apply_report(state, "fail", f"attempt {attempt}", NOW)
            assert outcome.next_step == "retry"
            assert state.tasks[0].status == "in_progress"
            assert state.current_task_index == 0

        outcome = engine.apply_report(state, "fail", "final", NOW)

        assert outcome.next_step == "escalate"
        assert state.tasks[0].status == "failed"
        assert state.tasks[0].retries == max_retries
        assert state.current_task_index == 1

    @pytest.mark.parametrize("result", ["pass", "skip"])
    def test_pass_and_skip_advance_to_lowest_pending(self, result):
        """pass/skip always move to the lowest pending task or complete the loop."""
        state = _state(3)
        engine.auto_advance(state, NOW)

        for expected_next in (1, 2):
            outcome = engine.apply_report(state, result, "", NOW)
            assert outcome.next_task.index == expected_next

        outcome = engine.apply_report(state, result, "", NOW)
        assert outcome.loop_complete
        assert state.current_task_index == -1


class TestResumeContract:
    """Contract tests for interruption detection."""

    @pytest.mark.parametrize("script", list(itertools.product(["pass", "fail", "skip"], repeat=3)))
    def test_interrupted_iff_work_remains(self, script):
        """Resume reports an interruption exactly when work remains."""
        state = _state(2, max_retries=2)
        engine.auto_advance(state, NOW)

        for result in script:
            if state.is_complete():
                break
            engine.apply_report(state, result, "", NOW)

            expected = state.current_task() is not None or (
                state.next_task() is not None and not state.is_complete()
            )
            assert engine.classify_resume(state).interrupted == expected


class TestPersistenceContract:
    """Contract tests for durable state."""

    def test_round_trip_after_activity(self, tmp_path):
        """A persisted loop reads back equal in every field."""
        state = _state(3, max_retries=2)
        engine.auto_advance(state, NOW)
        engine.apply_report(state, "fail", "broken ünïcode ✗", NOW)
        engine.apply_report(state, "fail", "still broken", NOW)
        engine.apply_report(state, "skip", "later", NOW)
        state.lint_command = "make lint"

        store = StateStore(tmp_path / "loop-state.json")
        store.write(state)

        assert store.read() == state

    def test_operations_are_independent(self, tmp_path):
        """Separate managers over one root see the same loop."""
        LoopManager(tmp_path).initialize("plan.md", plan_text=_plan(2), max_retries=2)
        LoopManager(tmp_path).status()
        LoopManager(tmp_path).report("pass", "ok")

        status = LoopManager(tmp_path).status()

        assert status["current_task"]["index"] == 1
        assert status["counts"]["passed"] == 1
