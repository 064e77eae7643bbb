# src/taskminder/tasks/task_models.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any


class ReminderLevel(StrEnum):
    """
    Escalation tiers, in increasing urgency.

    Three is the maximum depth; there is no level after ESCALATION.
    """

    INITIAL = "initial"
    FOLLOWUP = "followup"
    ESCALATION = "escalation"

    @classmethod
    def from_raw(cls, raw: str | None) -> ReminderLevel:
        if not raw:
            return cls.INITIAL
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.INITIAL


@dataclass(slots=True, frozen=True)
class Task:
    id: str
    name: str
    frequency: str
    interval: timedelta
    created_at: datetime
    last_completed: datetime | None = None

    @property
    def reference_time(self) -> datetime:
        """Last completion if the task was ever completed, otherwise creation time."""
        return self.last_completed or self.created_at


@dataclass(slots=True, frozen=True)
class DueTask:
    """
    Snapshot of a due task taken at scan time.

    Only plain data: it travels as workflow parameters and is never used
    for decisions after the escalation run has been launched.
    """

    task_id: str
    name: str
    frequency: str
    days_overdue: int

    def to_params(self) -> dict[str, Any]:
        return {
            "id": self.task_id,
            "name": self.name,
            "frequency": self.frequency,
            "days_overdue": int(self.days_overdue),
        }

    @classmethod
    def from_params(cls, data: dict[str, Any]) -> DueTask:
        return cls(
            task_id=str(data["id"]),
            name=str(data.get("name") or ""),
            frequency=str(data.get("frequency") or ""),
            days_overdue=int(data.get("days_overdue") or 0),
        )
