# src/taskminder/reminders/delivery.py

from __future__ import annotations

import logging
import uuid
from dataclasses import asdict, dataclass
from typing import Any

from ..core.clock import SystemClock
from ..core.errors import DeliveryFailed
from ..core.ports import Clock, Notifier
from ..tasks.task_models import ReminderLevel

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class DeliveryResult:
    success: bool
    message_id: str
    text: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _days(n: int) -> str:
    return f"{n} day" if n == 1 else f"{n} days"


def render_reminder(
    task_name: str,
    level: ReminderLevel,
    days_overdue: int,
    frequency: str = "",
) -> str:
    if level == ReminderLevel.INITIAL:
        return f'Reminder: "{task_name}" is due. Frequency: {frequency}.'
    if level == ReminderLevel.FOLLOWUP:
        return f'Follow-up: "{task_name}" is still due ({_days(days_overdue)} overdue). Don\'t forget!'
    return f'URGENT: "{task_name}" is {_days(days_overdue)} overdue! Please complete this task soon.'


class DeliveryBridge:
    """
    Turns (task, level, overdue days) into reminder text and hands it to the Notifier.

    Failures are not swallowed here: they surface as DeliveryFailed so the
    calling workflow step can be retried.
    """

    def __init__(self, notifier: Notifier, *, clock: Clock | None = None) -> None:
        self._notifier = notifier
        self._clock = clock or SystemClock()

    async def deliver(
        self,
        task_id: str,
        task_name: str,
        level: ReminderLevel,
        days_overdue: int,
        *,
        frequency: str = "",
    ) -> DeliveryResult:
        level = ReminderLevel(level)
        text = render_reminder(task_name, level, int(days_overdue), frequency)
        # Fresh per attempt: a retried step may deliver twice with different ids.
        message_id = uuid.uuid4().hex
        metadata = {
            "message_id": message_id,
            "task_id": task_id,
            "reminder_level": level.value,
            "created_at": self._clock.now().isoformat(),
        }

        try:
            ok = await self._notifier.send_message(text, metadata=metadata)
        except Exception as e:
            raise DeliveryFailed(task_id, level.value, str(e) or type(e).__name__) from e

        if not ok:
            raise DeliveryFailed(task_id, level.value, "notifier reported failure")

        logger.info("Reminder delivered task=%s level=%s message_id=%s", task_id, level.value, message_id)
        return DeliveryResult(success=True, message_id=message_id, text=text)
