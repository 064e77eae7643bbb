# src/taskminder/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

# Per-poll chatter: engine claims and scanner ticks happen every few seconds.
_BACKGROUND_PREFIXES = ("taskminder.workflows.", "taskminder.reminders.scanner")

# Library loggers capped in every handler, not only on the console.
_LIBRARY_LEVELS: dict[str, int] = {
    "aiohttp": logging.WARNING,
    "croniter": logging.WARNING,
}


class _ConsoleNoiseFilter(logging.Filter):
    """
    Keep the console readable while the REPL is in use.

    Reminder deliveries, escalation outcomes and command errors still come
    through; the polling loops only show up once something goes wrong.
    Anything outside the package needs ERROR to reach the console.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("taskminder."):
            if name.startswith(_BACKGROUND_PREFIXES):
                return record.levelno >= logging.WARNING
            return True

        # py.warnings, nio and everything else third-party.
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/taskminder",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Configure the root logger for a taskminder process and return the log file path.

    The console gets the filtered view above. taskminder.log under log_dir keeps
    every record at file_level, including each step attempt and retry wait, so a
    missed reminder can be traced after the fact.

    Call once, before the runtime thread starts.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "taskminder.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)

    # A second call (tests, re-entry from main) replaces handlers instead of stacking them.
    for h in list(root.handlers):
        root.removeHandler(h)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
    file_handler.setLevel(file_level)
    file_handler.setFormatter(fmt)
    root.addHandler(file_handler)

    for name, level in _LIBRARY_LEVELS.items():
        logging.getLogger(name).setLevel(level)
    # nio never goes below INFO; a stricter console level applies to it as well.
    logging.getLogger("nio").setLevel(max(logging.INFO, console_level))

    # warnings.warn(...) -> 'py.warnings' logger
    logging.captureWarnings(True)
    return log_file
