# src/taskminder/core/errors.py

from __future__ import annotations

"""
Error taxonomy shared by the reminder engine.

- InvalidFrequency: malformed frequency expression (synchronous, never retried)
- StoreUnavailable: the task store could not be read (transient)
- DeliveryFailed: the notifier rejected or failed a message (transient)
- LaunchFailed: a workflow run could not be created (batch retries once)
"""


class TaskminderError(Exception):
    """Base class for all errors raised by taskminder."""


class InvalidFrequency(TaskminderError, ValueError):
    def __init__(self, expression: str, reason: str = "") -> None:
        self.expression = expression
        self.reason = reason
        msg = (
            f"Invalid frequency format: {expression!r}. "
            'Use format like "1 second", "30 minutes", "2 hours", "7 days", or "2 weeks"'
        )
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class StoreUnavailable(TaskminderError):
    """Raised when the task store cannot be reached or read."""


class DeliveryFailed(TaskminderError):
    def __init__(self, task_id: str, reminder_level: str, reason: str) -> None:
        self.task_id = task_id
        self.reminder_level = reminder_level
        self.reason = reason
        super().__init__(f"Failed to send {reminder_level} reminder for task {task_id}: {reason}")


class LaunchFailed(TaskminderError):
    """Raised when a workflow run cannot be started."""


class DuplicateRun(LaunchFailed):
    def __init__(self, run_id: str) -> None:
        self.run_id = run_id
        super().__init__(f"Workflow run already exists: {run_id}")


class NonRetryableError(TaskminderError):
    """Raised inside a step to fail it immediately, skipping the retry policy."""


class StepFailed(TaskminderError):
    def __init__(self, step_name: str, attempts: int, cause: BaseException) -> None:
        self.step_name = step_name
        self.attempts = attempts
        self.cause = cause
        super().__init__(f"Step {step_name!r} failed after {attempts} attempt(s): {cause}")
