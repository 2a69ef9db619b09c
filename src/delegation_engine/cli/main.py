# src/delegation_engine/cli/main.py

"""
CLI entrypoint.

Initializes logging, builds AppState, then starts:
- the reschedule expiry sweeper in a background thread (optional),
- the operator console in the main thread (optional).
"""

from __future__ import annotations

import asyncio
import logging
import signal
import threading

from ..cli.bootstrap import create_initial_state
from ..config import get_settings
from ..connectors.console_connector import run_console_loop
from ..logging_setup import setup_logging
from ..tasks.sweeper import run_reschedule_sweeper

logger = logging.getLogger(__name__)


class SweeperBackgroundRunner(threading.Thread):
    """Runs run_reschedule_sweeper on its own event loop until stop() is called."""

    def __init__(self, state) -> None:
        super().__init__(name="reschedule-sweeper", daemon=True)
        self._state = state
        self._loop: asyncio.AbstractEventLoop | None = None
        self._task: asyncio.Task[None] | None = None

    def run(self) -> None:
        loop = asyncio.new_event_loop()
        self._loop = loop
        settings = self._state.settings
        self._task = loop.create_task(
            run_reschedule_sweeper(
                self._state.workflow,
                interval_seconds=float(getattr(settings, "sweep_interval_seconds", 60.0)),
                batch_limit=int(getattr(settings, "sweep_batch_limit", 100)),
            )
        )
        try:
            loop.run_until_complete(self._task)
        except asyncio.CancelledError:
            logger.info("Sweeper stopped.")
        finally:
            loop.close()

    def stop(self) -> None:
        loop, task = self._loop, self._task
        if loop is not None and task is not None and not loop.is_closed():
            loop.call_soon_threadsafe(task.cancel)


def main() -> None:
    settings = get_settings()

    level_name = str(getattr(settings, "log_level", "INFO")).upper()
    console_level = getattr(logging, level_name, logging.INFO)
    log_file = setup_logging(log_dir=getattr(settings, "data_dir", ".local/delegation"), console_level=console_level)

    logger.info("Starting %s... (log file %s)", getattr(settings, "app_name", "delegation"), log_file)

    state = create_initial_state(settings=settings)

    sweeper: SweeperBackgroundRunner | None = None
    if settings.sweeper_enabled:
        sweeper = SweeperBackgroundRunner(state)
        sweeper.start()

    # Use an Event so main can wait without a busy while-loop.
    stop_main = threading.Event()

    def _handle_signal(signum, _frame) -> None:
        logger.info("Signal %s received, shutting down...", signum)
        stop_main.set()

    try:
        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)
    except (ValueError, OSError):
        # Some platforms may not support SIGTERM, etc.
        pass

    try:
        if settings.console_enabled:
            run_console_loop(state)
            stop_main.set()
        else:
            logger.info("Console disabled. Running the sweeper only. Press Ctrl+C to stop.")
            stop_main.wait()
    finally:
        if sweeper is not None:
            sweeper.stop()
            sweeper.join(timeout=10.0)
        state.store.close()
        logger.info("Bye.")


if __name__ == "__main__":
    main()
