# src/taskminder/cli/runtime.py

from __future__ import annotations

"""
Background runtime.

The console REPL blocks on input(), so the async side (workflow engine,
periodic scanner and the optional Matrix connector) runs on its own event loop
in a daemon thread. Stopping sets an asyncio.Event from the main thread; runs
interrupted mid-step are picked up by engine.recover() on the next start.
"""

import asyncio
import contextlib
import logging
import threading
from dataclasses import dataclass

from ..core.state import AppState

logger = logging.getLogger(__name__)


async def run_background(state: AppState, stop_event: asyncio.Event) -> None:
    engine = state.engine

    recovered = engine.recover()
    logger.info("Background runtime starting (recovered=%d).", recovered)

    jobs: list[asyncio.Task] = [
        asyncio.create_task(engine.run_forever(), name="workflow-engine"),
        asyncio.create_task(state.scanner.run_forever(), name="periodic-scanner"),
    ]

    if state.settings.matrix_enabled:
        from ..connectors.matrix_connector import MatrixNotifier, run_matrix_connector

        if isinstance(state.notifier, MatrixNotifier):
            jobs.append(
                asyncio.create_task(
                    run_matrix_connector(state, state.notifier, stop_event), name="matrix-connector"
                )
            )

    try:
        await stop_event.wait()
    finally:
        for job in jobs:
            job.cancel()
        for job in jobs:
            with contextlib.suppress(asyncio.CancelledError):
                await job
        logger.info("Background runtime stopped.")


@dataclass
class BackgroundRunner:
    thread: threading.Thread
    loop: asyncio.AbstractEventLoop
    stop_event: asyncio.Event

    def stop(self) -> None:
        try:
            self.loop.call_soon_threadsafe(self.stop_event.set)
        except RuntimeError:
            # Loop already closed.
            logger.debug("Background loop already stopped.", exc_info=True)

    def join(self, timeout: float | None = None) -> None:
        self.thread.join(timeout=timeout)


def start_background(state: AppState) -> BackgroundRunner | None:
    """Start the engine, scanner and connectors on a background event loop."""
    ready = threading.Event()
    holder: dict[str, object] = {}

    def runner() -> None:
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        stop_event = asyncio.Event()

        holder["loop"] = loop
        holder["stop_event"] = stop_event
        ready.set()

        try:
            loop.run_until_complete(run_background(state, stop_event))
        except Exception:
            logger.exception("Background runtime crashed.")
        finally:
            loop.close()

    t = threading.Thread(target=runner, name="taskminder-runtime", daemon=True)
    t.start()

    ready.wait(timeout=5.0)
    loop = holder.get("loop")
    stop_event = holder.get("stop_event")

    if not isinstance(loop, asyncio.AbstractEventLoop) or not isinstance(stop_event, asyncio.Event):
        logger.error("Background thread did not initialize properly.")
        return None

    logger.info("Background runtime thread started.")
    return BackgroundRunner(thread=t, loop=loop, stop_event=stop_event)
