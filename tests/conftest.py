# tests/conftest.py

from __future__ import annotations

from pathlib import Path
from types import SimpleNamespace

import pytest

from taskminder.cli.bootstrap import create_initial_state
from taskminder.core.state import AppState
from taskminder.tasks.task_store import TaskStore
from taskminder.workflows.engine import RetryPolicy, WorkflowEngine
from taskminder.workflows.run_store import RunStore

from .fakes import FakeClock, RecordingNotifier


@pytest.fixture()
def settings(tmp_path: Path) -> SimpleNamespace:
    """
    Minimal settings object compatible with create_initial_state().

    We intentionally use a SimpleNamespace rather than importing real config,
    to keep unit tests isolated and deterministic.
    """
    return SimpleNamespace(
        app_name="taskminder-test",
        log_level="DEBUG",
        console_enabled=False,
        matrix_enabled=False,
        matrix_homeserver="",
        matrix_user_id="",
        matrix_password="",
        matrix_reminder_room="",
        matrix_rooms=[],
        # Paths (tmp per test run)
        data_dir=tmp_path,
        matrix_store_path=tmp_path / "matrix_store",
        tasks_db_path=tmp_path / "tasks.sqlite3",
        workflows_db_path=tmp_path / "workflows.sqlite3",
        # Scanner / engine
        scan_cron="*/30 * * * *",
        suppress_duplicate_escalations=True,
        engine_poll_seconds=0.01,
        # No real waiting between step retries.
        step_max_attempts=3,
        step_initial_delay_seconds=0.0,
        step_backoff_factor=2.0,
        step_max_delay_seconds=0.0,
        # Escalation timing (production values; tests move the fake clock)
        batch_retry_delay_seconds=300.0,
        followup_wait_seconds=24 * 60 * 60,
        escalation_wait_seconds=48 * 60 * 60,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture()
def state(settings: SimpleNamespace, clock: FakeClock, notifier: RecordingNotifier) -> AppState:
    """
    AppState wired through the real composition root with a fake clock and notifier.

    NOTE: We keep real SQLite stores here (TaskStore/RunStore) because
    their correctness is part of what we want to test.
    """
    return create_initial_state(settings=settings, clock=clock, notifier=notifier)


@pytest.fixture()
def task_store(tmp_path: Path, clock: FakeClock) -> TaskStore:
    return TaskStore(tmp_path / "tasks.sqlite3", clock=clock)


@pytest.fixture()
def run_store(tmp_path: Path) -> RunStore:
    return RunStore(tmp_path / "workflows.sqlite3")


@pytest.fixture()
def engine(run_store: RunStore, clock: FakeClock) -> WorkflowEngine:
    return WorkflowEngine(
        run_store,
        clock=clock,
        retry_policy=RetryPolicy(max_attempts=3, initial_delay_seconds=1.0),
    )
