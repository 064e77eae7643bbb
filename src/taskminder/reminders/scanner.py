# src/taskminder/reminders/scanner.py

from __future__ import annotations

"""
Periodic scanner.

On each cron slot (default every 30 minutes):
- list all tasks,
- keep the due ones,
- start one batch reminder workflow for them (nothing if none are due).

The trigger registration and its last fire time live in the run store, so
activation is idempotent across restarts and two scanner loops sharing a
database never fire the same slot twice.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime

from croniter import croniter

from ..core.clock import SystemClock, from_timestamp, to_timestamp
from ..core.errors import LaunchFailed, StoreUnavailable
from ..core.ports import Clock, TaskReader
from ..tasks.due import collect_due
from ..workflows.engine import WorkflowEngine
from .batch import BATCH_REMINDER_WORKFLOW
from .escalation import TASK_REMINDER_WORKFLOW

logger = logging.getLogger(__name__)

DEFAULT_SCAN_CRON = "*/30 * * * *"
SCAN_TRIGGER_NAME = "check-and-remind-tasks"
SCAN_CALLBACK = "check_and_remind_tasks"


class PeriodicScanner:
    def __init__(
        self,
        tasks: TaskReader,
        engine: WorkflowEngine,
        *,
        clock: Clock | None = None,
        cron: str = DEFAULT_SCAN_CRON,
        suppress_duplicates: bool = True,
        trigger_name: str = SCAN_TRIGGER_NAME,
        max_sleep_seconds: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] | None = None,
    ) -> None:
        if not croniter.is_valid(cron):
            raise ValueError(f"invalid cron expression: {cron!r}")
        self._tasks = tasks
        self._engine = engine
        self._store = engine.store
        self._clock = clock or SystemClock()
        self._cron = cron
        self._suppress = bool(suppress_duplicates)
        self._name = trigger_name
        self._max_sleep = max(0.01, float(max_sleep_seconds))
        self._sleep = sleep or asyncio.sleep

    @property
    def cron(self) -> str:
        return self._cron

    def ensure_registered(self) -> bool:
        """
        Register the periodic trigger unless an equivalent one already exists.

        Returns True if a new registration was created.
        """
        existing = self._store.list_triggers(callback=SCAN_CALLBACK)
        if existing:
            self._name = existing[0].name
            logger.info("Scan trigger already registered (%s); not creating another.", self._name)
            return False

        created = self._store.register_trigger(
            name=self._name,
            callback=SCAN_CALLBACK,
            cron=self._cron,
            now_ts=to_timestamp(self._clock.now()),
        )
        if created:
            logger.info("Scan trigger registered: %s cron=%r", self._name, self._cron)
        return created

    def next_fire_at(self, after: datetime) -> datetime:
        return croniter(self._cron, after).get_next(datetime)

    def _batched_task_ids(self) -> set[str]:
        """Task ids already handed to a batch that has not finished yet."""
        ids: set[str] = set()
        for params in self._store.active_run_params(BATCH_REMINDER_WORKFLOW):
            for d in params.get("due_tasks") or []:
                if isinstance(d, dict) and d.get("id"):
                    ids.add(str(d["id"]))
        return ids

    def scan_once(self) -> str | None:
        """
        One scan tick. Returns the batch run id, or None when nothing was dispatched.

        Store failures are logged and the tick is skipped; the next tick retries naturally.
        """
        now = self._clock.now()
        try:
            tasks = self._tasks.list_tasks()
        except Exception:
            logger.exception("Scan skipped: cannot list tasks")
            return None

        due = collect_due(tasks, now)
        if due and self._suppress:
            try:
                active = self._store.active_correlation_keys(TASK_REMINDER_WORKFLOW)
                active |= self._batched_task_ids()
            except StoreUnavailable:
                logger.exception("Scan skipped: cannot read active escalations")
                return None
            skipped = [d.task_id for d in due if d.task_id in active]
            if skipped:
                logger.debug("Skipping %d task(s) with escalations in flight: %s", len(skipped), skipped)
            due = [d for d in due if d.task_id not in active]

        if not due:
            logger.debug("Scan: no due tasks (total=%d)", len(tasks))
            return None

        batch_id = f"batch-reminder-{int(now.timestamp() * 1000)}"
        try:
            run_id = self._engine.create(
                BATCH_REMINDER_WORKFLOW,
                {"due_tasks": [d.to_params() for d in due]},
                run_id=batch_id,
            )
        except LaunchFailed:
            logger.exception("Scan: failed to start batch reminder workflow")
            return None

        logger.info("Created batch reminder workflow: %s for %d tasks", run_id, len(due))
        return run_id

    def fire_if_due(self) -> bool:
        """Run scan_once() if the trigger's next cron slot has been reached. Returns True if fired."""
        trig = self._store.get_trigger(self._name)
        if trig is None:
            self.ensure_registered()
            trig = self._store.get_trigger(self._name)
            if trig is None:
                return False

        now = self._clock.now()
        base = trig.last_fired_at if trig.last_fired_at is not None else trig.created_at
        if now < self.next_fire_at(from_timestamp(base)):
            return False

        # Fire at most once for any number of missed slots (e.g. after downtime).
        if not self._store.try_claim_trigger_fire(
            self._name, expected_last=trig.last_fired_at, fired_at=to_timestamp(now)
        ):
            logger.debug("Scan slot already claimed by another scanner")
            return False

        self.scan_once()
        return True

    def seconds_until_next(self) -> float:
        trig = self._store.get_trigger(self._name)
        now = self._clock.now()
        if trig is None:
            return 0.0
        base = trig.last_fired_at if trig.last_fired_at is not None else trig.created_at
        return max(0.0, (self.next_fire_at(from_timestamp(base)) - now).total_seconds())

    async def run_forever(self) -> None:
        """
        Scanner loop. To stop it, cancel the coroutine/task.
        """
        self.ensure_registered()
        logger.info("Periodic scanner started (cron=%r).", self._cron)
        while True:
            try:
                self.fire_if_due()
                wait_s = self.seconds_until_next()
            except StoreUnavailable:
                logger.exception("Scanner tick failed: run store unavailable")
                wait_s = self._max_sleep
            await self._sleep(min(max(wait_s, 0.5), self._max_sleep))
