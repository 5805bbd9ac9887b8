"""Exception types raised by the task loop core.

Expected conditions (bad input, missing state) are raised as subclasses of
``TaskLoopError`` and converted into result dictionaries by ``LoopManager``.
"""

from __future__ import annotations


class TaskLoopError(Exception):
    """Base class for expected task loop failures."""

    suggestion: str = ""

    def __init__(self, message: str, suggestion: str | None = None):
        super().__init__(message)
        if suggestion is not None:
            self.suggestion = suggestion


class InvalidPlanIdentifierError(TaskLoopError, ValueError):
    """The plan filename is empty or escapes the plans directory."""

    suggestion = "Pass a plain filename that lives inside the plans directory."


class PlanNotFoundError(TaskLoopError, FileNotFoundError):
    """The plan filename does not exist in the plans directory."""

    suggestion = "Save the plan under the plans directory or pass plan_text directly."


class UnreadablePlanError(TaskLoopError):
    """The plan file exists but cannot be read as UTF-8 text."""

    suggestion = "Save the plan as UTF-8 markdown, or pass its contents as plan_text."


class NoTasksFoundError(TaskLoopError):
    """The plan yielded zero unchecked tasks."""

    suggestion = "The plan must contain unchecked checkbox items (- [ ] ...) in a ## Tasks section."


class InvalidReportError(TaskLoopError, ValueError):
    """A report or init argument failed validation."""


class NoActiveLoopError(TaskLoopError):
    """No persisted loop state exists for the project."""

    suggestion = "Run loop_init with a plan filename to start a loop."
