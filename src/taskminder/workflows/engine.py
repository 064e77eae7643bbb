# src/taskminder/workflows/engine.py

from __future__ import annotations

"""
Durable workflow engine.

A workflow is an async function (ctx, params) -> result dict. It is executed by
replay: every time a run is resumed the function starts from the top, and
ctx.do()/ctx.sleep() return immediately for steps already recorded in the step
log. Only plain JSON data flows through params, step outputs and results.

- ctx.do(name, fn): run fn once (at-least-once under crashes); the output is
  persisted. A failed attempt is recorded with its wake time and the run is
  suspended until then, so backoff never holds the polling loop and the
  attempt count survives a restart.
- ctx.sleep(name, seconds): durable sleep. The wake time is persisted and the
  run is suspended; no coroutine is kept alive while it waits, so a process
  restart does not lose it.

A polling loop (run_forever) picks up pending runs and sleeping runs whose
resume_at has passed.

A workflow that returns {"success": False, "error": ...} ends as failed with
that dict kept as its result; an uncaught exception ends it as failed too.
"""

import asyncio
import inspect
import logging
import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from ..core.clock import SystemClock, to_timestamp
from ..core.errors import DuplicateRun, LaunchFailed, NonRetryableError, StepFailed, StoreUnavailable
from ..core.ports import Clock
from .run_models import RunStatus, StepRecord, StepStatus, WorkflowRun
from .run_store import RunStore

logger = logging.getLogger(__name__)

WorkflowFn = Callable[["StepContext", dict[str, Any]], Awaitable[dict[str, Any]]]


@dataclass(slots=True, frozen=True)
class RetryPolicy:
    """Step retry policy: attempt n (1-based) waits initial * factor**(n-1), capped."""

    max_attempts: int = 5
    initial_delay_seconds: float = 10.0
    backoff_factor: float = 2.0
    max_delay_seconds: float = 300.0

    def delay_for(self, attempt: int) -> float:
        delay = self.initial_delay_seconds * (self.backoff_factor ** max(0, attempt - 1))
        return max(0.0, min(delay, self.max_delay_seconds))


class WorkflowSuspended(BaseException):
    """
    Raised by ctx.sleep() and by a failed ctx.do() attempt to unwind a run until its wake time.

    BaseException so that a workflow's own `except Exception` blocks do not swallow it.
    """

    def __init__(self, step_name: str, wake_at: float) -> None:
        self.step_name = step_name
        self.wake_at = wake_at
        super().__init__(step_name, wake_at)


class StepContext:
    """Per-execution handle passed to workflow functions."""

    def __init__(self, engine: WorkflowEngine, run: WorkflowRun, steps: dict[str, StepRecord]) -> None:
        self._engine = engine
        self._run = run
        self._steps = steps

    @property
    def run_id(self) -> str:
        return self._run.id

    @property
    def workflow(self) -> str:
        return self._run.workflow

    @property
    def engine(self) -> WorkflowEngine:
        return self._engine

    async def do(
        self,
        name: str,
        fn: Callable[[], Any],
        *,
        retry: RetryPolicy | None = None,
    ) -> Any:
        rec = self._steps.get(name)
        if rec is not None and rec.status == StepStatus.COMPLETED:
            logger.debug("Run %s step %s replayed", self.run_id, name)
            return rec.output

        attempt = 0
        if rec is not None and rec.status == StepStatus.RETRYING:
            if rec.wake_at is not None and self._engine.now_ts() < rec.wake_at:
                raise WorkflowSuspended(name, rec.wake_at)
            attempt = rec.attempts

        policy = retry or self._engine.retry_policy
        attempt += 1
        try:
            out = fn()
            if inspect.isawaitable(out):
                out = await out
        except NonRetryableError as e:
            logger.error("Run %s step %s failed (not retryable): %s", self.run_id, name, e)
            raise StepFailed(name, attempt, e) from e
        except Exception as e:
            if attempt >= policy.max_attempts:
                logger.error("Run %s step %s failed after %d attempt(s): %s", self.run_id, name, attempt, e)
                raise StepFailed(name, attempt, e) from e

            delay = policy.delay_for(attempt)
            now_ts = self._engine.now_ts()
            wake_at = now_ts + delay
            self._steps[name] = self._engine.store.save_step(
                self.run_id,
                name,
                status=StepStatus.RETRYING,
                now_ts=now_ts,
                attempts=attempt,
                wake_at=wake_at,
            )
            logger.warning(
                "Run %s step %s attempt %d failed: %s (retry in %.1fs)",
                self.run_id,
                name,
                attempt,
                e,
                delay,
            )
            raise WorkflowSuspended(name, wake_at) from e

        self._steps[name] = self._engine.store.save_step(
            self.run_id,
            name,
            status=StepStatus.COMPLETED,
            now_ts=self._engine.now_ts(),
            output=out,
            attempts=attempt,
        )
        return out

    async def sleep(self, name: str, seconds: float) -> None:
        rec = self._steps.get(name)
        if rec is not None and rec.status == StepStatus.COMPLETED:
            return

        now_ts = self._engine.now_ts()
        if rec is None or rec.wake_at is None:
            wake_at = now_ts + max(0.0, float(seconds))
            self._steps[name] = self._engine.store.save_step(
                self.run_id, name, status=StepStatus.SLEEPING, now_ts=now_ts, wake_at=wake_at
            )
        else:
            wake_at = rec.wake_at

        if now_ts >= wake_at:
            self._steps[name] = self._engine.store.save_step(
                self.run_id, name, status=StepStatus.COMPLETED, now_ts=now_ts, wake_at=wake_at
            )
            return

        raise WorkflowSuspended(name, wake_at)


class WorkflowEngine:
    """
    Registry + executor for durable workflows backed by a RunStore.

    Usage:
        engine.register("task-reminder", fn)
        engine.create("task-reminder", {...}, run_id="reminder-abc")
        await engine.run_forever()
    """

    def __init__(
        self,
        store: RunStore,
        *,
        clock: Clock | None = None,
        retry_policy: RetryPolicy | None = None,
        poll_interval_seconds: float = 5.0,
        batch_limit: int = 32,
    ) -> None:
        self.store = store
        self.clock = clock or SystemClock()
        self.retry_policy = retry_policy or RetryPolicy()
        self._poll_s = max(0.01, float(poll_interval_seconds))
        self._batch_limit = max(1, int(batch_limit))
        self._workflows: dict[str, WorkflowFn] = {}

    # ---- registry ----

    def register(self, name: str, fn: WorkflowFn) -> None:
        if name in self._workflows:
            raise ValueError(f"workflow already registered: {name}")
        self._workflows[name] = fn
        logger.debug("Workflow registered: %s", name)

    def is_registered(self, name: str) -> bool:
        return name in self._workflows

    # ---- helpers ----

    def now_ts(self) -> float:
        return to_timestamp(self.clock.now())

    # ---- launching ----

    def create(
        self,
        workflow: str,
        params: dict[str, Any],
        *,
        run_id: str | None = None,
        correlation_key: str | None = None,
        exclusive: bool = False,
    ) -> str:
        """
        Start a new run. Raises LaunchFailed (DuplicateRun if run_id is taken).

        With exclusive=True, an active run of the same workflow holding
        correlation_key wins: nothing is created and that run's id is returned.
        """
        if not self.is_registered(workflow):
            raise LaunchFailed(f"unknown workflow: {workflow}")

        rid = run_id or f"{workflow}-{uuid.uuid4().hex}"
        try:
            run = self.store.create_run(
                run_id=rid,
                workflow=workflow,
                params=params,
                correlation_key=correlation_key,
                now_ts=self.now_ts(),
                exclusive=exclusive,
            )
        except DuplicateRun:
            raise
        except StoreUnavailable as e:
            raise LaunchFailed(f"cannot persist run {rid}: {e}") from e
        except (TypeError, ValueError) as e:
            raise LaunchFailed(f"run {rid} params are not JSON-serializable: {e}") from e

        if run.id != rid:
            logger.info("Run %s not created: %s already active for key %s", rid, run.id, correlation_key)
            return run.id

        logger.info("Workflow run created: %s (%s)", rid, workflow)
        return rid

    def get_run(self, run_id: str) -> WorkflowRun | None:
        return self.store.get_run(run_id)

    def list_runs(
        self,
        *,
        workflow: str | None = None,
        statuses: list[RunStatus] | None = None,
        limit: int = 50,
    ) -> list[WorkflowRun]:
        return self.store.list_runs(workflow=workflow, statuses=statuses, limit=limit)

    def count_runs(self, *, workflow: str | None = None, statuses: list[RunStatus] | None = None) -> int:
        return self.store.count_runs(workflow=workflow, statuses=statuses)

    def get_steps(self, run_id: str) -> dict[str, StepRecord]:
        return self.store.get_steps(run_id)

    # ---- execution ----

    def recover(self) -> int:
        """Reset runs interrupted by a crash. Call once at startup before run_forever()."""
        n = self.store.reset_interrupted_runs(now_ts=self.now_ts())
        if n:
            logger.warning("Recovered %d interrupted workflow run(s).", n)
        return n

    async def run_due(self) -> int:
        """Claim and execute all currently runnable runs concurrently. Returns how many ran."""
        now_ts = self.now_ts()
        runs = self.store.list_runnable_runs(now_ts=now_ts, limit=self._batch_limit)

        claimed: list[WorkflowRun] = []
        for run in runs:
            expected = [RunStatus.PENDING, RunStatus.SLEEPING]
            if self.store.try_claim_run(run.id, expected=expected, now_ts=now_ts):
                claimed.append(run)

        if claimed:
            await asyncio.gather(*(self._execute(run) for run in claimed))
        return len(claimed)

    async def run_until_idle(self, *, max_rounds: int = 100) -> int:
        """Execute runnable runs until none are left (sleeping runs stay asleep)."""
        total = 0
        for _ in range(max_rounds):
            n = await self.run_due()
            if n == 0:
                break
            total += n
        return total

    async def _execute(self, run: WorkflowRun) -> None:
        fn = self._workflows.get(run.workflow)
        if fn is None:
            logger.error("Run %s: workflow %s is not registered", run.id, run.workflow)
            self.store.mark_failed(run.id, error=f"unknown workflow: {run.workflow}", now_ts=self.now_ts())
            return

        try:
            steps = self.store.get_steps(run.id)
            ctx = StepContext(self, run, steps)
            result = await fn(ctx, dict(run.params))
        except WorkflowSuspended as s:
            self.store.mark_sleeping(run.id, resume_at=s.wake_at, now_ts=self.now_ts())
            logger.info("Run %s sleeping at %s until %.0f", run.id, s.step_name, s.wake_at)
            return
        except asyncio.CancelledError:
            # Leave the row as running; recover() picks it up on the next start.
            raise
        except Exception as e:
            logger.exception("Run %s (%s) failed", run.id, run.workflow)
            self.store.mark_failed(run.id, error=str(e) or type(e).__name__, now_ts=self.now_ts())
            return

        out = dict(result or {})
        if out.get("success") is False:
            error = str(out.get("error") or "workflow reported failure")
            self.store.mark_failed(run.id, error=error, result=out, now_ts=self.now_ts())
            logger.warning("Run %s (%s) finished with failure: %s", run.id, run.workflow, error)
            return

        self.store.mark_completed(run.id, result=out, now_ts=self.now_ts())
        logger.info("Run %s (%s) completed", run.id, run.workflow)

    async def run_forever(self) -> None:
        """
        Polling loop. To stop it, cancel the coroutine/task.
        """
        logger.info("Workflow engine started (poll=%.1fs).", self._poll_s)
        while True:
            try:
                await self.run_due()
            except StoreUnavailable:
                logger.exception("run_due failed: run store unavailable")
            await asyncio.sleep(self._poll_s)
