"""Exclusion-aware walk over a live directory tree.

This module provides:
- WalkEntry: a file found by the walker
- TreeWalker: depth-first walk that feeds each file to a visitor

Exclusion is decided per directory: an excluded directory is never listed,
so nothing below it is visited. Lock files are skipped regardless of the
exclusion set. A failure on one file (it vanished, it is locked, the visitor
could not copy it) is recorded in the RunSummary and the walk continues.
Fatal transfer errors and cancellation always propagate.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from worldbackup.core.exclusion import ExclusionSet, is_lock_file
from worldbackup.core.types import CancelledException, FatalTransferError, RunSummary

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WalkEntry:
    """A regular file found during a walk.

    Attributes:
        path: Absolute path of the file.
        relative: Path relative to the walked root, platform separators.
        size: Size in bytes at listing time.
        mtime: Last modification time at listing time.
    """

    path: Path
    relative: str
    size: int
    mtime: float


# A visitor may return the number of bytes it actually copied
FileVisitor = Callable[[WalkEntry], int | None]
DirVisitor = Callable[[str, Path], None]


class TreeWalker:
    """Depth-first walker over a source directory.

    Usage:
        walker = TreeWalker(world_dir, ExclusionSet(["DIM-1"]))
        summary = walker.walk(lambda entry: copy(entry.path))
    """

    def __init__(
        self,
        root: Path,
        exclusions: ExclusionSet | None = None,
        cancel_check: Callable[[], bool] | None = None,
    ) -> None:
        """Initialize the walker.

        Args:
            root: Directory to walk.
            exclusions: Folder patterns to skip.
            cancel_check: Polled before each entry; raising stops the walk.
        """
        self._root = Path(root)
        self._exclusions = exclusions or ExclusionSet()
        self._cancel_check = cancel_check

    @property
    def root(self) -> Path:
        return self._root

    def walk(
        self,
        visit_file: FileVisitor,
        visit_dir: DirVisitor | None = None,
    ) -> RunSummary:
        """Walk the tree, calling visit_file for every non-lock file.

        Args:
            visit_file: Called with each WalkEntry.
            visit_dir: Optional, called with (relative, absolute) for each
                directory that will be descended into (not for the root).

        Returns:
            Summary of visited, skipped and failed items.

        Raises:
            CancelledException: If the cancel check fired.
            FatalTransferError: If a visitor raised one.
        """
        summary = RunSummary()
        self._walk_dir(self._root, "", visit_file, visit_dir, summary)
        return summary

    def _check_cancel(self) -> None:
        if self._cancel_check and self._cancel_check():
            raise CancelledException(f"Walk of {self._root} cancelled")

    def _walk_dir(
        self,
        directory: Path,
        relative: str,
        visit_file: FileVisitor,
        visit_dir: DirVisitor | None,
        summary: RunSummary,
    ) -> None:
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as e:
            logger.warning(f"Cannot list {directory}: {e}")
            summary.failed(relative or ".", str(e))
            return

        for entry in entries:
            self._check_cancel()
            child_relative = os.path.join(relative, entry.name) if relative else entry.name

            if entry.is_symlink():
                summary.skipped(child_relative, "symlink")
                continue

            try:
                is_dir = entry.is_dir(follow_symlinks=False)
            except OSError as e:
                summary.failed(child_relative, str(e))
                continue

            if is_dir:
                if self._exclusions.is_excluded(child_relative):
                    logger.debug(f"Skipping excluded folder {child_relative}")
                    summary.skipped(child_relative, "excluded")
                    continue
                if visit_dir:
                    try:
                        visit_dir(child_relative, Path(entry.path))
                    except (FatalTransferError, CancelledException):
                        raise
                    except Exception as e:
                        logger.warning(f"Failed to prepare folder {child_relative}: {e}")
                        summary.failed(child_relative, str(e))
                        continue
                self._walk_dir(Path(entry.path), child_relative, visit_file, visit_dir, summary)
                continue

            if is_lock_file(entry.name):
                summary.skipped(child_relative, "lock file")
                continue

            self._visit(entry, child_relative, visit_file, summary)

    def _visit(
        self,
        entry: os.DirEntry[str],
        relative: str,
        visit_file: FileVisitor,
        summary: RunSummary,
    ) -> None:
        try:
            stat = entry.stat(follow_symlinks=False)
            walk_entry = WalkEntry(
                path=Path(entry.path),
                relative=relative,
                size=stat.st_size,
                mtime=stat.st_mtime,
            )
            copied = visit_file(walk_entry)
        except (FatalTransferError, CancelledException):
            raise
        except Exception as e:
            logger.warning(f"Failed to back up {relative}: {e}")
            summary.failed(relative, str(e))
            return
        summary.succeeded(relative, walk_entry.size if copied is None else copied)
