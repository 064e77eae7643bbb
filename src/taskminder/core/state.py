# src/taskminder/core/state.py

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ..reminders.scanner import PeriodicScanner
    from ..workflows.engine import WorkflowEngine
    from ..workflows.run_store import RunStore
    from .ports import Notifier, TaskRepo


@dataclass
class AppState:
    """
    Global application state shared by the connectors and the background runtime.

    Built once by cli.bootstrap.create_initial_state(); commands only read and
    write through the stores held here.
    """

    settings: Any

    task_store: TaskRepo
    run_store: RunStore
    engine: WorkflowEngine
    scanner: PeriodicScanner
    notifier: Notifier

    # Serializes command handling between the console thread and the Matrix loop.
    lock: threading.RLock = field(default_factory=threading.RLock)
