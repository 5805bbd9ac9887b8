"""Logging and observability utilities for the task loop.

This module provides structured logging, operation timing and
observability hooks for loop events (initialization, task transitions,
escalations and completion).
"""

from __future__ import annotations

import json
import time
import logging as std_logging
from contextlib import contextmanager
from datetime import datetime, timezone
from functools import wraps
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union


def setup_logging(log_level: Union[str, int] = std_logging.INFO, log_file: Optional[Path] = None) -> None:
    """Setup structured logging for the task loop.

    The console handler writes to stderr; stdout carries the MCP stdio
    transport and must stay clean.
    """

    logger = std_logging.getLogger("taskloop")
    logger.setLevel(log_level)
    logger.handlers.clear()

    detailed_formatter = std_logging.Formatter(
        fmt="%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = std_logging.StreamHandler()
    console_handler.setLevel(log_level)
    console_handler.setFormatter(detailed_formatter)
    logger.addHandler(console_handler)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = std_logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(std_logging.DEBUG)
        file_handler.setFormatter(JsonFormatter())
        logger.addHandler(file_handler)

    logger.info("Task loop logging initialized")


class JsonFormatter(std_logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: std_logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if hasattr(record, "extra_fields"):
            log_entry.update(record.extra_fields)

        return json.dumps(log_entry, default=str)


class PerformanceMonitor:
    """Durations of loop tool calls, keyed by tool name."""

    def __init__(self):
        self.durations: Dict[str, List[Dict[str, Any]]] = {}

    def record(self, tool: str, seconds: float, outcome: str) -> None:
        entry = {"at": datetime.now(timezone.utc).isoformat(), "seconds": seconds, "outcome": outcome}
        self.durations.setdefault(tool, []).append(entry)
        std_logging.getLogger("taskloop.performance").debug(
            f"{tool} took {seconds:.3f}s ({outcome})",
            extra={"extra_fields": {"tool": tool, **entry}},
        )


performance_monitor = PerformanceMonitor()


def log_performance(tool: str):
    """Time a loop tool call; an exception is recorded and re-raised."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            start_time = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                performance_monitor.record(tool, time.time() - start_time, type(e).__name__)
                raise
            # expected failures come back as {"error": ...} dicts
            outcome = "error" if isinstance(result, dict) and "error" in result else "ok"
            performance_monitor.record(tool, time.time() - start_time, outcome)
            return result

        return wrapper
    return decorator


@contextmanager
def log_operation(operation_name: str, **extra_fields):
    """Log the outcome of one step inside a tool call, such as building the initial state."""
    logger = std_logging.getLogger("taskloop.operations")
    start_time = time.time()
    try:
        yield
    except Exception as e:
        logger.warning(
            f"{operation_name} stopped after {time.time() - start_time:.3f}s: {e}",
            extra={"extra_fields": {"operation": operation_name, "error_type": type(e).__name__, **extra_fields}},
        )
        raise
    logger.info(
        f"{operation_name} finished in {time.time() - start_time:.3f}s",
        extra={"extra_fields": {"operation": operation_name, **extra_fields}},
    )


class ObservabilityHooks:
    """Callbacks keyed by loop event name.

    Events: ``loop_initialized``, ``task_started``, ``task_reported``,
    ``task_escalated`` and ``loop_completed``. A failing callback is logged
    and never interrupts the tool call that fired the event.
    """

    def __init__(self):
        self.hooks: Dict[str, List[Callable[..., Any]]] = {}
        self.logger = std_logging.getLogger("taskloop.observability")

    def register_hook(self, event_type: str, callback: Callable[..., Any]) -> None:
        self.hooks.setdefault(event_type, []).append(callback)

    def log_loop_event(self, event_type: str, plan_filename: Optional[str] = None, **data) -> None:
        """Log a loop event and pass its fields to the registered callbacks."""
        payload = {"timestamp": datetime.now(timezone.utc).isoformat(), "plan_filename": plan_filename, **data}
        self.logger.info(
            f"Loop event: {event_type}",
            extra={"extra_fields": {"event_type": event_type, **payload}},
        )
        for hook in list(self.hooks.get(event_type, [])):
            try:
                hook(**payload)
            except Exception as e:
                self.logger.error(f"Hook failed for event {event_type}: {e}")


observability_hooks = ObservabilityHooks()


def log_task_started(plan_filename: str, task_index: int, **extra_fields) -> None:
    """Log that a task was promoted to in_progress."""
    observability_hooks.log_loop_event(
        "task_started",
        plan_filename=plan_filename,
        task_index=task_index,
        **extra_fields
    )


def log_task_reported(plan_filename: str, task_index: int, result: str, status: str, **extra_fields) -> None:
    """Log a reported attempt and the status it left the task in."""
    observability_hooks.log_loop_event(
        "task_reported",
        plan_filename=plan_filename,
        task_index=task_index,
        result=result,
        status=status,
        **extra_fields
    )


def log_escalation(plan_filename: str, task_index: int, attempts: int, **extra_fields) -> None:
    """Log that a task exhausted its retries."""
    observability_hooks.log_loop_event(
        "task_escalated",
        plan_filename=plan_filename,
        task_index=task_index,
        attempts=attempts,
        **extra_fields
    )


def log_error_with_context(error: Exception, context: Dict[str, Any], **extra_fields):
    """Log an error with rich context information."""
    logger = std_logging.getLogger("taskloop.errors")

    error_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "error_type": type(error).__name__,
        "error_message": str(error),
        "context": context,
        **extra_fields
    }

    logger.error(
        f"Error in {context.get('operation', 'unknown operation')}: {error}",
        extra={"extra_fields": error_data},
    )
