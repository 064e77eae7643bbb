# tests/test_batch.py

from __future__ import annotations

import pytest

from taskminder.reminders.batch import BATCH_REMINDER_WORKFLOW, BatchCoordinator, EngineLauncher
from taskminder.reminders.delivery import DeliveryBridge
from taskminder.reminders.escalation import TASK_REMINDER_WORKFLOW, EscalationProcess
from taskminder.tasks.task_models import DueTask
from taskminder.workflows.engine import WorkflowEngine
from taskminder.workflows.run_models import RunStatus

from .fakes import FakeClock, FakeTaskRepo, FlakyLauncher, RecordingNotifier, make_task


def _due(*ids: str) -> list[dict]:
    return [DueTask(task_id=i, name=f"Task {i}", frequency="1 day", days_overdue=1).to_params() for i in ids]


def _start_batch(engine: WorkflowEngine, ids: list[str], run_id: str = "batch-1") -> str:
    return engine.create(BATCH_REMINDER_WORKFLOW, {"due_tasks": _due(*ids)}, run_id=run_id)


@pytest.mark.asyncio
async def test_empty_batch_succeeds_without_launching(engine: WorkflowEngine) -> None:
    launcher = FlakyLauncher()
    engine.register(BATCH_REMINDER_WORKFLOW, BatchCoordinator(launcher))

    rid = _start_batch(engine, [])
    await engine.run_due()

    run = engine.get_run(rid)
    assert run is not None
    assert run.status == RunStatus.COMPLETED
    assert run.result is not None
    assert run.result["success"] is True
    assert (run.result["processed"], run.result["successful"], run.result["failed"]) == (0, 0, 0)
    assert launcher.attempts == []


@pytest.mark.asyncio
async def test_all_launches_succeed(engine: WorkflowEngine) -> None:
    launcher = FlakyLauncher()
    engine.register(BATCH_REMINDER_WORKFLOW, BatchCoordinator(launcher))

    rid = _start_batch(engine, ["a", "b", "c"])
    await engine.run_due()

    run = engine.get_run(rid)
    assert run is not None
    assert run.status == RunStatus.COMPLETED
    assert run.result is not None
    assert run.result["successful"] == 3
    assert run.result["retried"] == 0
    assert sorted(launcher.launched) == [
        ("a", "reminder-a-batch-1"),
        ("b", "reminder-b-batch-1"),
        ("c", "reminder-c-batch-1"),
    ]


@pytest.mark.asyncio
async def test_failed_launch_is_retried_once_after_delay(engine: WorkflowEngine, clock: FakeClock) -> None:
    launcher = FlakyLauncher({"t3": 1})
    engine.register(BATCH_REMINDER_WORKFLOW, BatchCoordinator(launcher, retry_delay_seconds=300))

    rid = _start_batch(engine, ["t1", "t2", "t3", "t4", "t5"])
    await engine.run_due()

    run = engine.get_run(rid)
    assert run is not None
    assert run.status == RunStatus.SLEEPING
    assert len(launcher.launched) == 4

    clock.advance(seconds=299)
    assert await engine.run_due() == 0

    clock.advance(seconds=1)
    await engine.run_due()

    run = engine.get_run(rid)
    assert run is not None
    assert run.status == RunStatus.COMPLETED
    assert run.result is not None
    assert run.result["successful"] == 5
    assert run.result["failed"] == 0
    assert run.result["retried"] == 1
    assert ("t3", "reminder-retry-t3-batch-1") in launcher.launched
    # Only the failed member is retried.
    assert launcher.attempts.count("t1") == 1
    assert launcher.attempts.count("t3") == 2


@pytest.mark.asyncio
async def test_failure_after_retry_is_reported(engine: WorkflowEngine, clock: FakeClock) -> None:
    launcher = FlakyLauncher({"t3": 99})
    engine.register(BATCH_REMINDER_WORKFLOW, BatchCoordinator(launcher, retry_delay_seconds=300))

    rid = _start_batch(engine, ["t1", "t2", "t3", "t4", "t5"])
    await engine.run_due()
    clock.advance(minutes=5)
    await engine.run_due()

    run = engine.get_run(rid)
    assert run is not None
    assert run.status == RunStatus.FAILED
    assert run.result is not None
    assert run.result["success"] is False
    assert run.result["successful"] == 4
    assert run.result["failed"] == 1
    assert run.result["failed_task_ids"] == ["t3"]
    # One initial attempt plus exactly one retry.
    assert launcher.attempts.count("t3") == 2


@pytest.mark.asyncio
async def test_batch_launches_real_escalation_runs(engine: WorkflowEngine, clock: FakeClock) -> None:
    repo = FakeTaskRepo([make_task("a", frequency="1 day"), make_task("b", frequency="1 day")])
    notifier = RecordingNotifier()
    engine.register(
        TASK_REMINDER_WORKFLOW, EscalationProcess(repo, DeliveryBridge(notifier, clock=clock), clock=clock)
    )
    engine.register(BATCH_REMINDER_WORKFLOW, BatchCoordinator(EngineLauncher(engine)))
    clock.advance(days=2)

    rid = _start_batch(engine, ["a", "b"])
    await engine.run_until_idle()

    batch = engine.get_run(rid)
    assert batch is not None
    assert batch.status == RunStatus.COMPLETED

    child = engine.get_run("reminder-a-batch-1")
    assert child is not None
    assert child.workflow == TASK_REMINDER_WORKFLOW
    assert child.correlation_key == "a"
    assert child.status == RunStatus.SLEEPING
    assert sorted(m.metadata["task_id"] for m in notifier.sent) == ["a", "b"]


@pytest.mark.asyncio
async def test_engine_launcher_is_idempotent(engine: WorkflowEngine) -> None:
    async def noop(ctx, params):
        return {}

    engine.register(TASK_REMINDER_WORKFLOW, noop)
    due = DueTask(task_id="a", name="A", frequency="1 day", days_overdue=0)

    plain = EngineLauncher(engine, suppress_duplicates=False)
    assert await plain.launch(due, run_id="r1") == "r1"
    # Same id again (replayed step): treated as already launched.
    assert await plain.launch(due, run_id="r1") == "r1"

    guarded = EngineLauncher(engine, suppress_duplicates=True)
    # An active run for the task exists: no second escalation.
    assert await guarded.launch(due, run_id="r2") == "r1"
    assert engine.get_run("r2") is None


@pytest.mark.asyncio
async def test_concurrent_batches_launch_one_escalation_per_task(engine: WorkflowEngine) -> None:
    async def waiting(ctx, params):
        await ctx.sleep("wait-for-followup", 24 * 60 * 60)
        return {}

    engine.register(TASK_REMINDER_WORKFLOW, waiting)
    engine.register(BATCH_REMINDER_WORKFLOW, BatchCoordinator(EngineLauncher(engine)))

    first = _start_batch(engine, ["a", "b"], run_id="batch-1")
    second = _start_batch(engine, ["a"], run_id="batch-2")
    await engine.run_until_idle()

    runs = engine.list_runs(workflow=TASK_REMINDER_WORKFLOW)
    assert sorted(r.correlation_key for r in runs) == ["a", "b"]

    launched: dict[str, set[str]] = {}
    for rid in (first, second):
        batch = engine.get_run(rid)
        assert batch is not None
        assert batch.status == RunStatus.COMPLETED
        assert batch.result is not None
        for launch in batch.result["launches"]:
            launched.setdefault(launch["task_id"], set()).add(launch["run_id"])
    # Both batches point at the same escalation for task "a".
    assert len(launched["a"]) == 1
