# src/taskminder/reminders/batch.py

from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol

from ..core.errors import DuplicateRun
from ..tasks.task_models import DueTask, ReminderLevel
from ..workflows.engine import StepContext, WorkflowEngine
from .escalation import TASK_REMINDER_WORKFLOW, EscalationParams

logger = logging.getLogger(__name__)

BATCH_REMINDER_WORKFLOW = "batch-task-reminder"
RETRY_DELAY_SECONDS = 5 * 60


class EscalationLauncher(Protocol):
    """Starts one escalation process for a due task and returns its run id."""

    async def launch(self, due: DueTask, *, run_id: str) -> str: ...


class EngineLauncher:
    """
    EscalationLauncher backed by the workflow engine.

    With suppress_duplicates, a task that already has an active escalation run
    is not launched again; the existing run id is returned instead.
    """

    def __init__(self, engine: WorkflowEngine, *, suppress_duplicates: bool = True) -> None:
        self._engine = engine
        self._suppress = bool(suppress_duplicates)

    async def launch(self, due: DueTask, *, run_id: str) -> str:
        return await asyncio.to_thread(self._launch_sync, due, run_id)

    def _launch_sync(self, due: DueTask, run_id: str) -> str:
        params = EscalationParams(
            task_id=due.task_id,
            task_name=due.name,
            frequency=due.frequency,
            reminder_level=ReminderLevel.INITIAL,
            days_overdue=due.days_overdue,
        ).to_params()
        try:
            rid = self._engine.create(
                TASK_REMINDER_WORKFLOW,
                params,
                run_id=run_id,
                correlation_key=due.task_id,
                exclusive=self._suppress,
            )
        except DuplicateRun:
            # Replayed launch step: the run was created before a crash.
            return run_id
        if rid != run_id:
            logger.info("Task %s already has escalation run %s in flight", due.task_id, rid)
        return rid


@dataclass(slots=True)
class LaunchOutcome:
    task_id: str
    success: bool
    run_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LaunchOutcome:
        return cls(
            task_id=str(data["task_id"]),
            success=bool(data.get("success")),
            run_id=data.get("run_id"),
            error=data.get("error"),
        )


@dataclass(slots=True)
class BatchResult:
    total: int
    successful: int
    failed: int
    retried: int = 0
    failed_task_ids: list[str] = field(default_factory=list)
    launches: list[LaunchOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "success": self.failed == 0,
            "processed": self.total,
            "successful": self.successful,
            "failed": self.failed,
            "retried": self.retried,
            "failed_task_ids": list(self.failed_task_ids),
            "launches": [o.to_dict() for o in self.launches],
        }
        if self.failed:
            out["error"] = f"{self.failed} escalation launch(es) failed after retry"
        return out


class BatchCoordinator:
    """
    Workflow body for BATCH_REMINDER_WORKFLOW.

    Launches one escalation per due task concurrently, then retries the failed
    subset exactly once after a durable delay.
    """

    def __init__(self, launcher: EscalationLauncher, *, retry_delay_seconds: float = RETRY_DELAY_SECONDS) -> None:
        self._launcher = launcher
        self._retry_delay = float(retry_delay_seconds)

    async def _launch_one(self, due: DueTask, run_id: str) -> LaunchOutcome:
        try:
            rid = await self._launcher.launch(due, run_id=run_id)
        except Exception as e:
            logger.warning("Escalation launch failed task=%s run_id=%s: %s", due.task_id, run_id, e)
            return LaunchOutcome(task_id=due.task_id, success=False, error=str(e) or type(e).__name__)
        return LaunchOutcome(task_id=due.task_id, success=True, run_id=rid)

    async def _launch_all(self, due_tasks: list[DueTask], *, prefix: str, batch_id: str) -> list[dict[str, Any]]:
        outcomes = await asyncio.gather(
            *(self._launch_one(d, f"{prefix}-{d.task_id}-{batch_id}") for d in due_tasks)
        )
        return [o.to_dict() for o in outcomes]

    async def process_batch(self, ctx: StepContext, due_tasks: list[DueTask]) -> BatchResult:
        if not due_tasks:
            return BatchResult(total=0, successful=0, failed=0)

        raw = await ctx.do(
            "process-batch",
            lambda: self._launch_all(due_tasks, prefix="reminder", batch_id=ctx.run_id),
        )
        outcomes = [LaunchOutcome.from_dict(x) for x in raw]

        failed_ids = {o.task_id for o in outcomes if not o.success}
        retried = 0
        if failed_ids:
            logger.warning(
                "Batch %s: %d of %d launch(es) failed; retrying in %.0fs",
                ctx.run_id,
                len(failed_ids),
                len(outcomes),
                self._retry_delay,
            )
            await ctx.sleep("retry-delay", self._retry_delay)

            retry_tasks = [d for d in due_tasks if d.task_id in failed_ids]
            retried = len(retry_tasks)
            raw_retry = await ctx.do(
                "retry-failed",
                lambda: self._launch_all(retry_tasks, prefix="reminder-retry", batch_id=ctx.run_id),
            )
            by_task = {o.task_id: o for o in (LaunchOutcome.from_dict(x) for x in raw_retry)}
            outcomes = [by_task.get(o.task_id, o) for o in outcomes]

        failed = [o for o in outcomes if not o.success]
        result = BatchResult(
            total=len(outcomes),
            successful=len(outcomes) - len(failed),
            failed=len(failed),
            retried=retried,
            failed_task_ids=[o.task_id for o in failed],
            launches=outcomes,
        )
        if failed:
            logger.error(
                "Batch %s: %d escalation launch(es) failed after retry: %s",
                ctx.run_id,
                len(failed),
                ", ".join(result.failed_task_ids),
            )
        else:
            logger.info("Batch %s: launched %d escalation(s)", ctx.run_id, result.successful)
        return result

    async def __call__(self, ctx: StepContext, params: dict[str, Any]) -> dict[str, Any]:
        due_tasks = [DueTask.from_params(x) for x in (params.get("due_tasks") or [])]
        result = await self.process_batch(ctx, due_tasks)
        return result.to_dict()
