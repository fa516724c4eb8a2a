"""Stream helpers for reading a tree that is being rewritten.

This module provides:
- open_source_file: open a source file for reading, retrying transient locks
- copy_stream: copy through a fixed-size buffer
"""

from __future__ import annotations

import logging
import time
from pathlib import Path
from typing import BinaryIO

logger = logging.getLogger(__name__)

COPY_BUFFER_SIZE = 8 * 1024

OPEN_ATTEMPTS = 3
OPEN_RETRY_DELAY = 0.1  # seconds


def open_source_file(
    path: Path,
    attempts: int = OPEN_ATTEMPTS,
    retry_delay: float = OPEN_RETRY_DELAY,
) -> BinaryIO:
    """Open a file of the live tree for reading.

    The owner may hold the file open for writing (a sharing violation on
    Windows) while we try to read it, so a PermissionError is retried a few
    times. A file that vanished between listing and opening is not retried.

    Args:
        path: File to open.
        attempts: Number of open attempts.
        retry_delay: Seconds between attempts.

    Returns:
        Binary file object, unbuffered reads go through the caller's buffer.

    Raises:
        OSError: If the file cannot be opened.
    """
    for attempt in range(1, attempts + 1):
        try:
            return open(path, "rb")
        except PermissionError:
            if attempt == attempts:
                raise
            logger.debug(f"{path} is locked, retrying open ({attempt}/{attempts})")
            time.sleep(retry_delay)
    raise RuntimeError("Unexpected open loop exit")


def copy_stream(
    src: BinaryIO,
    dst: BinaryIO,
    buffer_size: int = COPY_BUFFER_SIZE,
) -> int:
    """Copy src to dst, holding at most one buffer in memory.

    Returns:
        Number of bytes copied.
    """
    buf = bytearray(buffer_size)
    view = memoryview(buf)
    total = 0
    while True:
        count = src.readinto(view)  # type: ignore[attr-defined]
        if not count:
            return total
        dst.write(view[:count])
        total += count
