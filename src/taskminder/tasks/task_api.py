# src/taskminder/tasks/task_api.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from ..core.state import AppState
from .due import is_due, next_due_at, overdue_by
from .task_models import Task

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class TaskStatusView:
    """A task plus its due status at a given instant (for listings)."""

    task: Task
    is_due: bool
    days_overdue: int
    next_due_at: datetime


def _now(state: AppState) -> datetime:
    return state.engine.clock.now()


def describe(task: Task, now: datetime) -> TaskStatusView:
    return TaskStatusView(
        task=task,
        is_due=is_due(task, now),
        days_overdue=overdue_by(task, now),
        next_due_at=next_due_at(task),
    )


def add_task(state: AppState, *, name: str, frequency: str) -> Task:
    """Create a recurring task. InvalidFrequency propagates to the caller."""
    task = state.task_store.add_task(name=name, frequency=frequency, created_at=_now(state))
    logger.info("Task created id=%s name=%r frequency=%r", task.id, task.name, task.frequency)
    return task


def list_task_status(state: AppState) -> list[TaskStatusView]:
    now = _now(state)
    return [describe(t, now) for t in state.task_store.list_tasks()]


def list_due(state: AppState) -> list[TaskStatusView]:
    return [v for v in list_task_status(state) if v.is_due]


def find_task(state: AppState, ref: str) -> Task | None:
    """
    Resolve a user-supplied reference to a task.

    Tries, in order: exact id, unique id prefix, unique case-insensitive name.
    """
    ref = (ref or "").strip()
    if not ref:
        return None

    task = state.task_store.get_task(ref)
    if task is not None:
        return task

    tasks = state.task_store.list_tasks()
    by_prefix = [t for t in tasks if t.id.startswith(ref)]
    if len(by_prefix) == 1:
        return by_prefix[0]

    by_name = [t for t in tasks if t.name.lower() == ref.lower()]
    if len(by_name) == 1:
        return by_name[0]
    return None


def complete_task(state: AppState, ref: str) -> Task | None:
    task = find_task(state, ref)
    if task is None:
        return None
    return state.task_store.mark_completed(task.id, _now(state))


def delete_task(state: AppState, ref: str) -> Task | None:
    """Delete and return the task, or None if nothing matched."""
    task = find_task(state, ref)
    if task is None:
        return None
    if not state.task_store.delete_task(task.id):
        return None
    logger.info("Task deleted id=%s name=%r", task.id, task.name)
    return task


def clear_tasks(state: AppState) -> int:
    n = state.task_store.clear_tasks()
    logger.info("All tasks cleared (%d removed)", n)
    return n
