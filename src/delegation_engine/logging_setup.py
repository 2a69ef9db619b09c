# src/delegation_engine/logging_setup.py

from __future__ import annotations

import logging
import sys
from pathlib import Path

_SWEEPER_LOGGER = "delegation_engine.tasks.sweeper"


class _ConsoleNoiseFilter(logging.Filter):
    """Keep the operator prompt readable while the sweeper ticks in the background."""

    def filter(self, record: logging.LogRecord) -> bool:
        name = record.name

        if name.startswith("delegation_engine."):
            if name == _SWEEPER_LOGGER:
                return record.levelno >= logging.WARNING
            return True

        # captured warnings.warn(...) and third-party libraries
        return record.levelno >= logging.ERROR


def setup_logging(
    *,
    log_dir: str | Path = ".local/delegation",
    console_level: int = logging.INFO,
    file_level: int = logging.DEBUG,
) -> Path:
    """
    Filtered stderr handler for the console, unfiltered delegation.log in log_dir.

    Replaces any handlers already on the root logger. Returns the log file path.
    """
    log_dir = Path(log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "delegation.log"

    root = logging.getLogger()
    root.setLevel(logging.DEBUG)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    fmt = logging.Formatter(
        fmt="%(asctime)s.%(msecs)03d %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(console_level)
    console.setFormatter(fmt)
    console.addFilter(_ConsoleNoiseFilter())
    root.addHandler(console)

    to_file = logging.FileHandler(str(log_file), encoding="utf-8")
    to_file.setLevel(file_level)
    to_file.setFormatter(fmt)
    root.addHandler(to_file)

    logging.captureWarnings(True)
    return log_file
