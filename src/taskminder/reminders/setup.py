# src/taskminder/reminders/setup.py

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..core.ports import Clock, Notifier, TaskReader
from ..workflows.engine import WorkflowEngine
from .batch import BATCH_REMINDER_WORKFLOW, RETRY_DELAY_SECONDS, BatchCoordinator, EngineLauncher
from .delivery import DeliveryBridge
from .escalation import (
    ESCALATION_WAIT_SECONDS,
    FOLLOWUP_WAIT_SECONDS,
    TASK_REMINDER_WORKFLOW,
    EscalationProcess,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ReminderWorkflows:
    delivery: DeliveryBridge
    escalation: EscalationProcess
    batch: BatchCoordinator


def register_reminder_workflows(
    engine: WorkflowEngine,
    *,
    tasks: TaskReader,
    notifier: Notifier,
    clock: Clock | None = None,
    followup_wait_seconds: float = FOLLOWUP_WAIT_SECONDS,
    escalation_wait_seconds: float = ESCALATION_WAIT_SECONDS,
    batch_retry_delay_seconds: float = RETRY_DELAY_SECONDS,
    suppress_duplicates: bool = True,
) -> ReminderWorkflows:
    """Wire the delivery bridge, escalation process and batch coordinator into the engine."""
    clock = clock or engine.clock
    delivery = DeliveryBridge(notifier, clock=clock)
    escalation = EscalationProcess(
        tasks,
        delivery,
        clock=clock,
        followup_wait_seconds=followup_wait_seconds,
        escalation_wait_seconds=escalation_wait_seconds,
    )
    batch = BatchCoordinator(
        EngineLauncher(engine, suppress_duplicates=suppress_duplicates),
        retry_delay_seconds=batch_retry_delay_seconds,
    )

    engine.register(TASK_REMINDER_WORKFLOW, escalation)
    engine.register(BATCH_REMINDER_WORKFLOW, batch)
    logger.debug("Reminder workflows registered")
    return ReminderWorkflows(delivery=delivery, escalation=escalation, batch=batch)
