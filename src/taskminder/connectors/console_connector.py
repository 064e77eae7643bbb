# src/taskminder/connectors/console_connector.py

from __future__ import annotations

import logging
import sys
from datetime import datetime
from typing import TextIO

from ..cli.commands import registry as command_registry
from ..core.ports import ReminderMetadata
from ..core.state import AppState

logger = logging.getLogger(__name__)


def _ts_local() -> str:
    return datetime.now().astimezone().strftime("%Y-%m-%d %H:%M:%S")


def _rewrite_prev_line(line: str) -> None:
    """
    Replace the last terminal line with `line`.
    Best-effort: if not a TTY, just print a new line.
    """
    if sys.stdout.isatty():
        sys.stdout.write("\033[1A\033[2K\r")
        sys.stdout.write(line + "\n")
        sys.stdout.flush()
    else:
        print(line)


class ConsoleNotifier:
    """
    Notifier that prints reminders to the terminal.

    Used when Matrix is disabled; the console REPL and reminders share stdout.
    """

    def __init__(self, stream: TextIO | None = None) -> None:
        self._stream = stream

    async def send_message(self, text: str, *, metadata: ReminderMetadata) -> bool:
        stream = self._stream or sys.stdout
        try:
            stream.write(f"\n[{_ts_local()}] [REMINDER] {text}\n")
            stream.flush()
        except OSError:
            logger.exception("Console reminder write failed (task=%s)", metadata.get("task_id"))
            return False
        return True


def run_console_loop(state: AppState) -> None:
    logger.info("Console connector started.")
    print(f"[{_ts_local()}] [CONSOLE] Use /help for commands. Use /exit to quit.\n")

    def emit(text: str) -> None:
        print(f"[{_ts_local()}] {text}", flush=True)

    while True:
        try:
            user_input = input(">>> ").strip()
            _rewrite_prev_line(f"[{_ts_local()}] >>> {user_input}")
        except EOFError:
            logger.info("Console EOF received, exiting.")
            break
        except KeyboardInterrupt:
            logger.info("Console KeyboardInterrupt, exiting.")
            print()
            break

        if not user_input:
            continue

        if user_input.lower() in ("/exit", "/quit"):
            logger.info("Console exit command received.")
            break

        try:
            with state.lock:
                response = command_registry.handle(state, user_input, emit=emit)
        except Exception:
            logger.exception("Command handler crashed.")
            response = "Internal error while handling a command."

        if response is None:
            response = "Not a command. Use /help to list available commands."
        print(f"[{_ts_local()}] {response}")

    logger.info("Console connector finished.")
