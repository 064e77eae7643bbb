# tests/test_due.py

from __future__ import annotations

from datetime import timedelta

from taskminder.tasks.due import collect_due, is_due, next_due_at, overdue_by

from .fakes import T0, make_task


def test_task_is_due_exactly_at_interval_boundary() -> None:
    task = make_task("a", frequency="7 days", created_at=T0)

    assert is_due(task, T0 + timedelta(days=7))
    assert not is_due(task, T0 + timedelta(days=7) - timedelta(seconds=1))


def test_last_completed_overrides_created_at() -> None:
    task = make_task("a", frequency="7 days", created_at=T0, last_completed=T0 + timedelta(days=5))

    assert not is_due(task, T0 + timedelta(days=10))
    assert is_due(task, T0 + timedelta(days=12))
    assert next_due_at(task) == T0 + timedelta(days=12)


def test_overdue_by_floors_whole_days() -> None:
    task = make_task("a", frequency="1 day", created_at=T0)

    now = T0 + timedelta(days=1) + timedelta(days=2, hours=3)
    assert overdue_by(task, now) == 2


def test_overdue_by_is_zero_on_the_day_it_becomes_due() -> None:
    task = make_task("a", frequency="7 days", created_at=T0)
    assert overdue_by(task, T0 + timedelta(days=7)) == 0
    assert overdue_by(task, T0 + timedelta(days=7, hours=23)) == 0


def test_overdue_by_is_negative_before_due() -> None:
    task = make_task("a", frequency="7 days", created_at=T0)
    assert overdue_by(task, T0 + timedelta(days=3)) < 0


def test_collect_due_snapshots_only_due_tasks() -> None:
    now = T0 + timedelta(days=8)
    due_task = make_task("due", frequency="7 days", created_at=T0, name="Water plants")
    fresh = make_task("fresh", frequency="7 days", created_at=T0 + timedelta(days=4))

    out = collect_due([due_task, fresh], now)

    assert [d.task_id for d in out] == ["due"]
    assert out[0].name == "Water plants"
    assert out[0].frequency == "7 days"
    assert out[0].days_overdue == 1
