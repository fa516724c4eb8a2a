"""Logging setup shared by the CLI and the reference server."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(level: str | int = logging.INFO, log_path: Path | None = None) -> None:
    """Configure logging to output to stdout and optionally to a file.

    Safe to call more than once: handlers installed by a previous call are
    replaced.

    Args:
        level: Level name or number for the worldbackup logger.
        log_path: Optional path to a log file.
    """
    formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger("worldbackup")
    root_logger.setLevel(level)
    for handler in list(root_logger.handlers):
        if getattr(handler, "_worldbackup", False):
            root_logger.removeHandler(handler)
            handler.close()

    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_path:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(logging.FileHandler(log_path, encoding="utf-8"))

    for handler in handlers:
        handler.setFormatter(formatter)
        handler._worldbackup = True  # type: ignore[attr-defined]
        root_logger.addHandler(handler)
