"""Streaming archive writer and local mirror copy.

This module provides:
- ArchiveWriter: stream a tree into one zip archive
- mirror_tree: copy a tree file by file into a local directory

Both read the live tree through TreeWalker and copy through a fixed 8 KiB
buffer: memory use does not depend on file or tree size. The walk order is
whatever the filesystem lists; nothing is sorted.
"""

from __future__ import annotations

import logging
import os
import time
import zipfile
from collections.abc import Callable
from pathlib import Path
from typing import BinaryIO

from worldbackup.core.exclusion import ExclusionSet
from worldbackup.core.streams import COPY_BUFFER_SIZE, copy_stream, open_source_file
from worldbackup.core.types import RunSummary
from worldbackup.core.walker import TreeWalker, WalkEntry

logger = logging.getLogger(__name__)

# Zip timestamps cannot express anything before 1980
_MIN_ZIP_TIME = (1980, 1, 1, 0, 0, 0)


def archive_entry_name(root: Path, relative: str) -> str:
    """Entry name: "<rootFolderName>/<relativePath>" with platform separators.

    zipfile stores os.sep as "/" inside the archive.
    """
    return f"{root.name}{os.sep}{relative}"


class ArchiveWriter:
    """Writes a directory tree as a single zip stream.

    The destination may be any writable binary stream, including
    non-seekable ones such as a chunked upload: zipfile then writes data
    descriptors after each entry.

    Usage:
        writer = ArchiveWriter(ExclusionSet(["cache"]))
        with open("world.zip", "wb") as f:
            summary = writer.stream_to_archive(world_dir, f)
    """

    def __init__(
        self,
        exclusions: ExclusionSet | None = None,
        compression: int = zipfile.ZIP_DEFLATED,
        buffer_size: int = COPY_BUFFER_SIZE,
        cancel_check: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the writer.

        Args:
            exclusions: Folder patterns to skip.
            compression: zipfile compression method.
            buffer_size: Copy buffer size in bytes.
            cancel_check: Polled between files.
        """
        self._exclusions = exclusions or ExclusionSet()
        self._compression = compression
        self._buffer_size = buffer_size
        self._cancel_check = cancel_check

    def stream_to_archive(self, root: Path, destination: BinaryIO) -> RunSummary:
        """Write every non-excluded, non-lock file of root into destination.

        A file that cannot be read is logged, recorded as failed and left out
        (or left truncated if it failed mid-copy; its entry is still closed),
        and the archive continues with the next file.

        Args:
            root: Directory to archive.
            destination: Writable binary stream; it is flushed, not closed.

        Returns:
            Summary of archived, skipped and failed files.
        """
        root = Path(root)
        walker = TreeWalker(root, self._exclusions, self._cancel_check)

        with zipfile.ZipFile(destination, "w", compression=self._compression) as archive:

            def add_entry(entry: WalkEntry) -> int:
                return self._write_entry(archive, root, entry)

            summary = walker.walk(add_entry)

        destination.flush()
        logger.info(f"Archived {root}: {summary}")
        return summary

    def write_archive(self, root: Path, archive_path: Path) -> RunSummary:
        """Archive root into a file, creating parent directories."""
        archive_path.parent.mkdir(parents=True, exist_ok=True)
        with open(archive_path, "wb") as f:
            return self.stream_to_archive(root, f)

    def _write_entry(self, archive: zipfile.ZipFile, root: Path, entry: WalkEntry) -> int:
        # Open the source first, so an unreadable file leaves no empty entry
        with open_source_file(entry.path) as src:
            info = zipfile.ZipInfo(
                archive_entry_name(root, entry.relative),
                date_time=_zip_time(entry.mtime),
            )
            info.compress_type = self._compression
            info.file_size = entry.size
            with archive.open(info, "w") as dst:
                return copy_stream(src, dst, self._buffer_size)


def _zip_time(mtime: float) -> tuple[int, int, int, int, int, int]:
    date_time = time.localtime(mtime)[:6]
    if date_time < _MIN_ZIP_TIME:
        return _MIN_ZIP_TIME
    return date_time  # type: ignore[return-value]


def mirror_tree(
    root: Path,
    target: Path,
    exclusions: ExclusionSet | None = None,
    buffer_size: int = COPY_BUFFER_SIZE,
    cancel_check: Callable[[], bool] | None = None,
) -> RunSummary:
    """Copy root file by file into target, preserving modification times.

    Args:
        root: Directory to copy.
        target: Directory receiving the copy (created if missing).
        exclusions: Folder patterns to skip.
        buffer_size: Copy buffer size in bytes.
        cancel_check: Polled between files.

    Returns:
        Summary of copied, skipped and failed files.
    """
    root = Path(root)
    target.mkdir(parents=True, exist_ok=True)

    def make_dir(relative: str, _source: Path) -> None:
        (target / relative).mkdir(parents=True, exist_ok=True)

    def copy_file(entry: WalkEntry) -> int:
        destination = target / entry.relative
        with open_source_file(entry.path) as src, open(destination, "wb") as dst:
            copied = copy_stream(src, dst, buffer_size)
        os.utime(destination, (entry.mtime, entry.mtime))
        return copied

    summary = TreeWalker(root, exclusions, cancel_check).walk(copy_file, make_dir)
    logger.info(f"Copied {root} to {target}: {summary}")
    return summary
