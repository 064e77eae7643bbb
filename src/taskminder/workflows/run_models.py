# src/taskminder/workflows/run_models.py

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import Any


class RunStatus(StrEnum):
    """
    Workflow run lifecycle.

    pending -> running -> (sleeping -> running)* -> completed | failed

    A run found "running" at startup was interrupted by a crash and is reset to pending.
    """

    PENDING = "pending"
    RUNNING = "running"
    SLEEPING = "sleeping"
    COMPLETED = "completed"
    FAILED = "failed"

    @classmethod
    def from_db(cls, raw: str | None) -> RunStatus:
        if not raw:
            return cls.PENDING
        try:
            return cls(raw)
        except ValueError:
            return cls.PENDING

    @property
    def is_terminal(self) -> bool:
        return self in (RunStatus.COMPLETED, RunStatus.FAILED)


ACTIVE_STATUSES: tuple[RunStatus, ...] = (RunStatus.PENDING, RunStatus.RUNNING, RunStatus.SLEEPING)


class StepStatus(StrEnum):
    COMPLETED = "completed"
    SLEEPING = "sleeping"
    # failed attempt recorded; wake_at is when the next attempt may run
    RETRYING = "retrying"


@dataclass(slots=True)
class WorkflowRun:
    id: str
    workflow: str
    status: RunStatus
    params: dict[str, Any]
    created_at: float
    updated_at: float
    resume_at: float | None
    correlation_key: str | None
    result: dict[str, Any] | None = None
    error: str | None = None


@dataclass(slots=True)
class StepRecord:
    run_id: str
    name: str
    status: StepStatus
    output: Any
    attempts: int
    wake_at: float | None
    updated_at: float


@dataclass(slots=True)
class Trigger:
    name: str
    callback: str
    cron: str
    created_at: float
    last_fired_at: float | None
