# src/taskminder/connectors/matrix_connector.py

from __future__ import annotations

import asyncio
import logging
import time

from nio import AsyncClient, MatrixRoom, RoomMessageText, RoomSendResponse, exceptions

from ..cli.commands import registry as command_registry
from ..core.ports import ReminderMetadata
from ..core.state import AppState
from .matrix_client import create_matrix_client

logger = logging.getLogger(__name__)


def _ms_now() -> int:
    return int(time.time() * 1000)


def _room_allowlist(settings_rooms: list[str]) -> set[str] | None:
    rooms = [r.strip() for r in (settings_rooms or []) if str(r).strip()]
    return set(rooms) if rooms else None


async def _send_text(client: AsyncClient, *, room_id: str, text: str):
    return await client.room_send(
        room_id=room_id,
        message_type="m.room.message",
        content={"msgtype": "m.text", "body": text},
        ignore_unverified_devices=True,
    )


class MatrixNotifier:
    """
    Notifier that posts reminders into a Matrix room.

    The client is attached once the connector has logged in; until then every
    send reports failure so the delivery step is retried with backoff.

    Room choice: the configured reminder room, else the first allowed room,
    else any joined room.
    """

    def __init__(self, *, room_id: str = "", allowed_rooms: list[str] | None = None) -> None:
        self._room_id = (room_id or "").strip()
        self._allowed = _room_allowlist(allowed_rooms or [])
        self._client: AsyncClient | None = None

    def attach(self, client: AsyncClient | None) -> None:
        self._client = client

    def _pick_room(self, client: AsyncClient) -> str:
        if self._room_id:
            return self._room_id
        if self._allowed:
            return sorted(self._allowed)[0]
        if client.rooms:
            return next(iter(client.rooms.keys()))
        return ""

    async def send_message(self, text: str, *, metadata: ReminderMetadata) -> bool:
        client = self._client
        if client is None:
            logger.warning("Matrix client not ready; reminder for task %s not sent", metadata.get("task_id"))
            return False

        room_id = self._pick_room(client)
        if not room_id:
            logger.warning("No Matrix room to deliver reminder for task %s", metadata.get("task_id"))
            return False

        resp = await _send_text(client, room_id=room_id, text=text)
        if not isinstance(resp, RoomSendResponse):
            logger.warning("Matrix room_send failed (room=%s): %r", room_id, resp)
            return False

        logger.info(
            "Reminder %s sent to %s (event=%s)", metadata.get("message_id"), room_id, resp.event_id
        )
        return True


async def run_matrix_connector(state: AppState, notifier: MatrixNotifier, stop_event: asyncio.Event) -> None:
    """
    Matrix connector (async): login -> attach notifier -> command callback -> sync loop.

    Only slash commands are answered; other messages are ignored.
    The loop exits when stop_event is set (checked between syncs).
    """
    settings = state.settings
    startup_ts = _ms_now()

    allowed_rooms = _room_allowlist(settings.matrix_rooms)
    logger.info("Matrix allowed_rooms=%s", allowed_rooms if allowed_rooms is not None else "ALL")

    client = await create_matrix_client(settings)
    if client is None:
        logger.error("Matrix client creation failed; connector will stop.")
        return

    async def message_callback(room: MatrixRoom, event: RoomMessageText) -> None:
        ts = getattr(event, "server_timestamp", None)
        if ts is not None and ts <= startup_ts:
            return
        if event.sender == client.user_id:
            return
        if allowed_rooms is not None and room.room_id not in allowed_rooms:
            return

        body = (event.body or "").strip()
        if not body.startswith("/"):
            return

        logger.info("Matrix <%s> %s: %r", room.display_name, event.sender, body)
        try:
            with state.lock:
                resp = command_registry.handle(state, body, user_id=event.sender, room_id=room.room_id)
        except Exception:
            logger.exception("Command handler crashed.")
            resp = "Internal error while handling a command."

        if not resp:
            return
        try:
            await _send_text(client, room_id=room.room_id, text=resp)
        except exceptions.OlmUnverifiedDeviceError:
            logger.warning("Cannot send command reply: unverified device.")

    client.add_event_callback(message_callback, RoomMessageText)

    try:
        logger.info("Matrix initial sync...")
        await client.sync(timeout=30000, full_state=True)
        logger.info("Matrix initial sync done. Joined rooms: %d", len(client.rooms))
        notifier.attach(client)

        while not stop_event.is_set():
            await client.sync(timeout=30000, full_state=False)
    except asyncio.CancelledError:
        logger.info("Matrix connector cancelled.")
        raise
    except Exception:
        logger.exception("Matrix connector crashed.")
    finally:
        notifier.attach(None)
        await client.close()
        logger.info("Matrix connector stopped.")
