# src/taskminder/reminders/escalation.py

from __future__ import annotations

"""
Escalation process for one due task.

    send-reminder (initial, d)
    sleep wait-for-followup (24h)
    check-if-still-due                  -> not due: stop
    send-followup (d+1)
    sleep wait-for-escalation (48h)
    check-if-still-due-after-followup   -> not due: stop
    send-escalation (d+3)

Due checks always re-read the task store; the dispatch-time snapshot is only
used for the message text.
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from ..core.clock import SystemClock, from_timestamp
from ..core.errors import StepFailed
from ..core.ports import Clock, TaskReader
from ..tasks.due import is_due
from ..tasks.task_models import ReminderLevel
from ..workflows.engine import StepContext, WorkflowEngine
from ..workflows.run_models import RunStatus, StepRecord, StepStatus, WorkflowRun
from .delivery import DeliveryBridge

logger = logging.getLogger(__name__)

TASK_REMINDER_WORKFLOW = "task-reminder"

FOLLOWUP_WAIT_SECONDS = 24 * 60 * 60
ESCALATION_WAIT_SECONDS = 48 * 60 * 60

# Overdue-day increments relative to the dispatch-time value.
FOLLOWUP_OVERDUE_BUMP = 1
ESCALATION_OVERDUE_BUMP = 3

_SEND_STEPS: dict[ReminderLevel, str] = {
    ReminderLevel.INITIAL: "send-reminder",
    ReminderLevel.FOLLOWUP: "send-followup",
    ReminderLevel.ESCALATION: "send-escalation",
}


@dataclass(slots=True, frozen=True)
class EscalationParams:
    task_id: str
    task_name: str
    frequency: str
    reminder_level: ReminderLevel = ReminderLevel.INITIAL
    days_overdue: int = 0

    def to_params(self) -> dict[str, Any]:
        return {
            "task_id": self.task_id,
            "task_name": self.task_name,
            "frequency": self.frequency,
            "reminder_level": self.reminder_level.value,
            "days_overdue": int(self.days_overdue),
        }

    @classmethod
    def from_params(cls, data: dict[str, Any]) -> EscalationParams:
        return cls(
            task_id=str(data["task_id"]),
            task_name=str(data.get("task_name") or ""),
            frequency=str(data.get("frequency") or ""),
            reminder_level=ReminderLevel.from_raw(data.get("reminder_level")),
            days_overdue=int(data.get("days_overdue") or 0),
        )


class EscalationProcess:
    """Workflow body for TASK_REMINDER_WORKFLOW."""

    def __init__(
        self,
        tasks: TaskReader,
        delivery: DeliveryBridge,
        *,
        clock: Clock | None = None,
        followup_wait_seconds: float = FOLLOWUP_WAIT_SECONDS,
        escalation_wait_seconds: float = ESCALATION_WAIT_SECONDS,
    ) -> None:
        self._tasks = tasks
        self._delivery = delivery
        self._clock = clock or SystemClock()
        self._followup_wait = float(followup_wait_seconds)
        self._escalation_wait = float(escalation_wait_seconds)

    def check_still_due(self, task_id: str) -> bool:
        """Fresh read. A deleted task counts as no longer due."""
        task = self._tasks.get_task(task_id)
        if task is None:
            return False
        return is_due(task, self._clock.now())

    async def _send(self, ctx: StepContext, p: EscalationParams, level: ReminderLevel, days: int) -> None:
        async def deliver() -> dict[str, Any]:
            res = await self._delivery.deliver(
                p.task_id, p.task_name, level, days, frequency=p.frequency
            )
            return res.to_dict()

        await ctx.do(_SEND_STEPS[level], deliver)

    async def __call__(self, ctx: StepContext, params: dict[str, Any]) -> dict[str, Any]:
        p = EscalationParams.from_params(params)
        d = p.days_overdue
        level = p.reminder_level
        sent = 0

        try:
            await self._send(ctx, p, level, d)
            sent += 1

            # A process started at a later level sends that single message only.
            if level != ReminderLevel.INITIAL:
                return self._result(p, level, "completed", sent)

            await ctx.sleep("wait-for-followup", self._followup_wait)
            still_due = await ctx.do("check-if-still-due", lambda: self.check_still_due(p.task_id))
            if not still_due:
                logger.info("Task %s no longer due after first wait; stopping.", p.task_id)
                return self._result(p, level, "aborted", sent)

            level = ReminderLevel.FOLLOWUP
            await self._send(ctx, p, level, d + FOLLOWUP_OVERDUE_BUMP)
            sent += 1

            await ctx.sleep("wait-for-escalation", self._escalation_wait)
            still_due = await ctx.do(
                "check-if-still-due-after-followup", lambda: self.check_still_due(p.task_id)
            )
            if not still_due:
                logger.info("Task %s no longer due after follow-up; stopping.", p.task_id)
                return self._result(p, level, "aborted", sent)

            level = ReminderLevel.ESCALATION
            await self._send(ctx, p, level, d + ESCALATION_OVERDUE_BUMP)
            sent += 1
            return self._result(p, level, "completed", sent)

        except StepFailed as e:
            logger.error(
                "Escalation for task %s stopped at level %s: %s", p.task_id, level.value, e.cause
            )
            return {
                "success": False,
                "task_id": p.task_id,
                "reminder_level": level.value,
                "error": str(e.cause) or type(e.cause).__name__,
                "messages_sent": sent,
            }

    @staticmethod
    def _result(p: EscalationParams, level: ReminderLevel, outcome: str, sent: int) -> dict[str, Any]:
        return {
            "success": True,
            "task_id": p.task_id,
            "reminder_level": level.value,
            "outcome": outcome,
            "messages_sent": sent,
        }


@dataclass(slots=True, frozen=True)
class EscalationRun:
    """Read view of one escalation run, derived from the durable run and its step log."""

    run_id: str
    task_id: str
    level: ReminderLevel
    status: RunStatus
    resume_at: datetime | None
    terminal: bool
    outcome: str | None = None
    error: str | None = None


def describe_escalation(run: WorkflowRun, steps: dict[str, StepRecord]) -> EscalationRun:
    level = ReminderLevel.from_raw(run.params.get("reminder_level"))
    for lvl in (ReminderLevel.FOLLOWUP, ReminderLevel.ESCALATION):
        rec = steps.get(_SEND_STEPS[lvl])
        if rec is not None and rec.status == StepStatus.COMPLETED:
            level = lvl

    result = run.result or {}
    return EscalationRun(
        run_id=run.id,
        task_id=str(run.params.get("task_id") or run.correlation_key or ""),
        level=level,
        status=run.status,
        resume_at=from_timestamp(run.resume_at) if run.resume_at is not None else None,
        terminal=run.status.is_terminal,
        outcome=result.get("outcome"),
        error=run.error,
    )


def escalation_view(engine: WorkflowEngine, run_id: str) -> EscalationRun | None:
    run = engine.get_run(run_id)
    if run is None or run.workflow != TASK_REMINDER_WORKFLOW:
        return None
    return describe_escalation(run, engine.get_steps(run_id))
