# src/taskminder/cli/bootstrap.py

"""
CLI bootstrap helpers.

This module is the "composition root":
- loads settings once,
- ensures local (gitignored) directories exist,
- wires the task store, run store, workflow engine, notifier and scanner into AppState,
- registers the reminder workflows on the engine.
"""

from __future__ import annotations

import logging

from ..config import get_settings
from ..connectors.console_connector import ConsoleNotifier
from ..core.clock import SystemClock
from ..core.ports import Clock, Notifier
from ..core.state import AppState
from ..reminders.scanner import PeriodicScanner
from ..reminders.setup import register_reminder_workflows
from ..tasks.task_store import TaskStore
from ..workflows.engine import RetryPolicy, WorkflowEngine
from ..workflows.run_store import RunStore

logger = logging.getLogger(__name__)


def _ensure_local_dirs(settings) -> None:
    settings.data_dir.mkdir(parents=True, exist_ok=True)
    settings.tasks_db_path.parent.mkdir(parents=True, exist_ok=True)
    settings.workflows_db_path.parent.mkdir(parents=True, exist_ok=True)
    if settings.matrix_enabled:
        settings.matrix_store_path.mkdir(parents=True, exist_ok=True)


def _build_notifier(settings) -> Notifier:
    if settings.matrix_enabled:
        from ..connectors.matrix_connector import MatrixNotifier

        return MatrixNotifier(room_id=settings.matrix_reminder_room, allowed_rooms=settings.matrix_rooms)
    return ConsoleNotifier()


def create_initial_state(
    *,
    settings=None,
    clock: Clock | None = None,
    notifier: Notifier | None = None,
) -> AppState:
    """
    Create AppState from the provided settings.

    Settings, clock and notifier are injectable for tests. If settings is None,
    falls back to get_settings().
    """
    if settings is None:
        settings = get_settings()
    clock = clock or SystemClock()

    _ensure_local_dirs(settings)

    task_store = TaskStore(settings.tasks_db_path, clock=clock)
    run_store = RunStore(settings.workflows_db_path)
    engine = WorkflowEngine(
        run_store,
        clock=clock,
        retry_policy=RetryPolicy(
            max_attempts=settings.step_max_attempts,
            initial_delay_seconds=settings.step_initial_delay_seconds,
            backoff_factor=settings.step_backoff_factor,
            max_delay_seconds=settings.step_max_delay_seconds,
        ),
        poll_interval_seconds=settings.engine_poll_seconds,
    )

    if notifier is None:
        notifier = _build_notifier(settings)

    register_reminder_workflows(
        engine,
        tasks=task_store,
        notifier=notifier,
        clock=clock,
        followup_wait_seconds=settings.followup_wait_seconds,
        escalation_wait_seconds=settings.escalation_wait_seconds,
        batch_retry_delay_seconds=settings.batch_retry_delay_seconds,
        suppress_duplicates=settings.suppress_duplicate_escalations,
    )

    scanner = PeriodicScanner(
        task_store,
        engine,
        clock=clock,
        cron=settings.scan_cron,
        suppress_duplicates=settings.suppress_duplicate_escalations,
    )

    logger.debug("AppState created (notifier=%s)", type(notifier).__name__)
    return AppState(
        settings=settings,
        task_store=task_store,
        run_store=run_store,
        engine=engine,
        scanner=scanner,
        notifier=notifier,
    )
