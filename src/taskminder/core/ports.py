# src/taskminder/core/ports.py

from __future__ import annotations

"""
Ports (interfaces) used by the core.

The core depends on Protocols instead of concrete implementations.
This keeps connectors/storage swappable and makes testing easier.
"""

from datetime import datetime
from typing import Any, Awaitable, Protocol

ReminderMetadata = dict[str, Any]
# {"task_id": ..., "reminder_level": ..., "message_id": ..., "created_at": ...}


class Clock(Protocol):
    """Source of the current time (aware UTC). Injected so due checks stay deterministic."""

    def now(self) -> datetime: ...


class Notifier(Protocol):
    """
    Connector-side port: delivers reminder text to the user's conversation.

    Returns True on success. False or an exception means the message was not delivered.
    """

    def send_message(self, text: str, *, metadata: ReminderMetadata) -> Awaitable[bool]: ...


class TaskReader(Protocol):
    """The only task-store operations the reminder engine uses (single reads)."""

    def list_tasks(self) -> list[Any]: ...
    def get_task(self, task_id: str) -> Any | None: ...


class TaskRepo(TaskReader, Protocol):
    # Management API used by commands
    def add_task(self, *, name: str, frequency: str, created_at: datetime | None = None) -> Any: ...
    def mark_completed(self, task_id: str, completed_at: datetime | None = None) -> Any | None: ...
    def delete_task(self, task_id: str) -> bool: ...
    def clear_tasks(self) -> int: ...
    def count_tasks(self) -> int: ...
