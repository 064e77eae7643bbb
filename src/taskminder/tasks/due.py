# src/taskminder/tasks/due.py

from __future__ import annotations

import math
from datetime import datetime

from .frequency import SECONDS_PER_DAY
from .task_models import DueTask, Task


def is_due(task: Task, now: datetime) -> bool:
    """A task is due once the time since its reference point reaches its interval."""
    return (now - task.reference_time) >= task.interval


def overdue_by(task: Task, now: datetime) -> int:
    """
    Whole days past the due threshold, floored.

    Negative while the task is not yet due; callers decide how to display that.
    """
    late = (now - task.reference_time) - task.interval
    return math.floor(late.total_seconds() / SECONDS_PER_DAY)


def next_due_at(task: Task) -> datetime:
    return task.reference_time + task.interval


def snapshot(task: Task, now: datetime) -> DueTask:
    return DueTask(
        task_id=task.id,
        name=task.name,
        frequency=task.frequency,
        days_overdue=overdue_by(task, now),
    )


def collect_due(tasks: list[Task], now: datetime) -> list[DueTask]:
    return [snapshot(t, now) for t in tasks if is_due(t, now)]
