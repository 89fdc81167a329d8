"""
exceptions.py — taskgate Error Hierarchy

Every exception raised by taskgate itself is a subclass of TaskGateError.
Failures raised by task bodies are never wrapped: the caller receives the
task's own exception object as the rejection reason.

Hierarchy:
    TaskGateError
    ├── TaskAborted
    ├── RunnerClosedError
    └── ConfigError   (defined in taskgate.config.settings)
"""

from __future__ import annotations

from typing import Any, Optional


class TaskGateError(Exception):
    """Base class for all taskgate exceptions."""


class TaskAborted(TaskGateError):
    """
    The composed abort signal fired before admission, while waiting, or
    during execution. Never retried, regardless of remaining retry budget.
    """

    def __init__(
        self,
        reason: Any = None,
        task_name: Optional[str] = None,
        message: str = "",
    ) -> None:
        self.reason = reason
        self.task_name = task_name
        if not message:
            subject = f"Task '{task_name}'" if task_name else "Task"
            message = f"{subject} aborted" + (f": {reason}" if reason is not None else "")
        super().__init__(message)


class RunnerClosedError(TaskGateError):
    """enqueue_task() was called after TaskRunner.shutdown()."""


__all__ = [
    "TaskGateError",
    "TaskAborted",
    "RunnerClosedError",
]
