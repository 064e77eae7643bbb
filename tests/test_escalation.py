# tests/test_escalation.py

from __future__ import annotations

from dataclasses import replace
from datetime import timedelta

import pytest

from taskminder.reminders.delivery import DeliveryBridge
from taskminder.reminders.escalation import (
    TASK_REMINDER_WORKFLOW,
    EscalationParams,
    EscalationProcess,
    escalation_view,
)
from taskminder.tasks.task_models import ReminderLevel
from taskminder.workflows.engine import WorkflowEngine
from taskminder.workflows.run_models import RunStatus, StepStatus
from taskminder.workflows.run_store import RunStore

from .fakes import FakeClock, FakeTaskRepo, RecordingNotifier, make_task, run_through_retries


def _register(engine: WorkflowEngine, repo: FakeTaskRepo, notifier: RecordingNotifier, clock: FakeClock) -> None:
    process = EscalationProcess(repo, DeliveryBridge(notifier, clock=clock), clock=clock)
    engine.register(TASK_REMINDER_WORKFLOW, process)


def _start(engine: WorkflowEngine, task_id: str, name: str, frequency: str, days: int, **kw) -> str:
    params = EscalationParams(
        task_id=task_id, task_name=name, frequency=frequency, days_overdue=days, **kw
    ).to_params()
    return engine.create(TASK_REMINDER_WORKFLOW, params, correlation_key=task_id)


@pytest.mark.asyncio
async def test_full_escalation_sends_three_levels(engine: WorkflowEngine, clock: FakeClock) -> None:
    repo = FakeTaskRepo([make_task("t1", frequency="1 day", name="Water plants")])
    notifier = RecordingNotifier()
    _register(engine, repo, notifier, clock)
    clock.advance(days=3)

    rid = _start(engine, "t1", "Water plants", "1 day", 2)
    await engine.run_due()
    assert notifier.texts_for("t1") == ['Reminder: "Water plants" is due. Frequency: 1 day.']

    # Nothing happens before the 24h wait has elapsed.
    clock.advance(hours=23)
    await engine.run_due()
    assert len(notifier.sent) == 1

    clock.advance(hours=1)
    await engine.run_due()
    clock.advance(hours=48)
    await engine.run_due()

    assert notifier.texts_for("t1") == [
        'Reminder: "Water plants" is due. Frequency: 1 day.',
        'Follow-up: "Water plants" is still due (3 days overdue). Don\'t forget!',
        'URGENT: "Water plants" is 5 days overdue! Please complete this task soon.',
    ]
    levels = [m.metadata["reminder_level"] for m in notifier.sent]
    assert levels == ["initial", "followup", "escalation"]

    run = engine.get_run(rid)
    assert run is not None
    assert run.status == RunStatus.COMPLETED
    assert run.result is not None
    assert run.result["outcome"] == "completed"
    assert run.result["messages_sent"] == 3
    assert run.result["reminder_level"] == "escalation"


@pytest.mark.asyncio
async def test_completion_during_first_wait_aborts(engine: WorkflowEngine, clock: FakeClock) -> None:
    task = make_task("t1", frequency="7 days", name="Laundry")
    repo = FakeTaskRepo([task])
    notifier = RecordingNotifier()
    _register(engine, repo, notifier, clock)
    clock.advance(days=8)

    rid = _start(engine, "t1", "Laundry", "7 days", 1)
    await engine.run_due()

    repo.tasks["t1"] = replace(task, last_completed=clock.now())
    clock.advance(hours=24)
    await engine.run_due()

    assert len(notifier.texts_for("t1")) == 1
    run = engine.get_run(rid)
    assert run is not None
    assert run.status == RunStatus.COMPLETED
    assert run.result is not None
    assert run.result["outcome"] == "aborted"
    assert run.result["reminder_level"] == "initial"


@pytest.mark.asyncio
async def test_completion_during_second_wait_aborts(engine: WorkflowEngine, clock: FakeClock) -> None:
    task = make_task("t1", frequency="7 days", name="Laundry")
    repo = FakeTaskRepo([task])
    notifier = RecordingNotifier()
    _register(engine, repo, notifier, clock)
    clock.advance(days=8)

    rid = _start(engine, "t1", "Laundry", "7 days", 1)
    await engine.run_due()
    clock.advance(hours=24)
    await engine.run_due()

    repo.tasks["t1"] = replace(task, last_completed=clock.now())
    clock.advance(hours=48)
    await engine.run_due()

    assert len(notifier.texts_for("t1")) == 2
    run = engine.get_run(rid)
    assert run is not None
    assert run.result is not None
    assert run.result["outcome"] == "aborted"
    assert run.result["reminder_level"] == "followup"


@pytest.mark.asyncio
async def test_deleted_task_counts_as_not_due(engine: WorkflowEngine, clock: FakeClock) -> None:
    repo = FakeTaskRepo([make_task("t1", frequency="1 day")])
    notifier = RecordingNotifier()
    _register(engine, repo, notifier, clock)
    clock.advance(days=2)

    rid = _start(engine, "t1", "Task t1", "1 day", 1)
    await engine.run_due()
    del repo.tasks["t1"]
    clock.advance(hours=24)
    await engine.run_due()

    run = engine.get_run(rid)
    assert run is not None
    assert run.result is not None
    assert run.result["outcome"] == "aborted"
    assert len(notifier.sent) == 1


@pytest.mark.asyncio
async def test_delivery_failure_is_isolated_per_task(engine: WorkflowEngine, clock: FakeClock) -> None:
    repo = FakeTaskRepo([make_task("ok", frequency="1 day"), make_task("bad", frequency="1 day")])
    notifier = RecordingNotifier(fail_tasks={"bad"})
    _register(engine, repo, notifier, clock)
    clock.advance(days=2)

    ok_run = _start(engine, "ok", "Task ok", "1 day", 1)
    bad_run = _start(engine, "bad", "Task bad", "1 day", 1)
    await run_through_retries(engine, clock)

    bad = engine.get_run(bad_run)
    assert bad is not None
    assert bad.status == RunStatus.FAILED
    assert bad.result is not None
    assert bad.result["success"] is False
    assert bad.result["task_id"] == "bad"
    assert bad.result["reminder_level"] == "initial"
    assert "Failed to send initial reminder" in bad.result["error"]
    # engine fixture: three attempts per step
    assert notifier.calls == 1 + 3

    ok = engine.get_run(ok_run)
    assert ok is not None
    assert ok.status == RunStatus.SLEEPING
    assert len(notifier.texts_for("ok")) == 1


@pytest.mark.asyncio
async def test_transient_delivery_failure_is_retried(engine: WorkflowEngine, clock: FakeClock) -> None:
    repo = FakeTaskRepo([make_task("t1", frequency="1 day")])
    notifier = RecordingNotifier(raise_next=2)
    _register(engine, repo, notifier, clock)
    clock.advance(days=2)

    rid = _start(engine, "t1", "Task t1", "1 day", 1)
    await engine.run_due()

    step = engine.get_steps(rid)["send-reminder"]
    assert step.status == StepStatus.RETRYING
    assert step.attempts == 1
    assert notifier.sent == []

    await run_through_retries(engine, clock)

    run = engine.get_run(rid)
    assert run is not None
    assert run.status == RunStatus.SLEEPING
    assert len(notifier.sent) == 1
    assert engine.get_steps(rid)["send-reminder"].attempts == 3


@pytest.mark.asyncio
async def test_restart_does_not_resend_completed_levels(tmp_path, clock: FakeClock) -> None:
    db = tmp_path / "wf.sqlite3"
    repo = FakeTaskRepo([make_task("t1", frequency="1 day")])
    notifier = RecordingNotifier()

    first = WorkflowEngine(RunStore(db), clock=clock)
    _register(first, repo, notifier, clock)
    clock.advance(days=2)
    rid = _start(first, "t1", "Task t1", "1 day", 1)
    await first.run_due()

    second = WorkflowEngine(RunStore(db), clock=clock)
    _register(second, repo, notifier, clock)
    second.recover()
    clock.advance(hours=24)
    await second.run_due()

    levels = [m.metadata["reminder_level"] for m in notifier.sent]
    assert levels == ["initial", "followup"]
    view = escalation_view(second, rid)
    assert view is not None
    assert view.level == ReminderLevel.FOLLOWUP
    assert view.status == RunStatus.SLEEPING
    assert view.resume_at == clock.now() + timedelta(hours=48)
    assert not view.terminal


@pytest.mark.asyncio
async def test_process_started_at_later_level_sends_single_message(
    engine: WorkflowEngine, clock: FakeClock
) -> None:
    repo = FakeTaskRepo([make_task("t1", frequency="1 day")])
    notifier = RecordingNotifier()
    _register(engine, repo, notifier, clock)

    rid = _start(engine, "t1", "Task t1", "1 day", 4, reminder_level=ReminderLevel.ESCALATION)
    await engine.run_due()

    assert notifier.texts_for("t1") == [
        'URGENT: "Task t1" is 4 days overdue! Please complete this task soon.'
    ]
    run = engine.get_run(rid)
    assert run is not None
    assert run.status == RunStatus.COMPLETED


def test_escalation_params_roundtrip_defaults() -> None:
    p = EscalationParams.from_params({"task_id": "t1", "task_name": "X", "frequency": "1 day"})
    assert p.reminder_level == ReminderLevel.INITIAL
    assert p.days_overdue == 0
