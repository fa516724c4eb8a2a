"""Exclusion of folders from a backup walk.

This module provides:
- ExclusionSet: ordered set of plain substring patterns
- is_excluded: predicate over a walker-constructed path
- is_lock_file: transient lock files that are never read

Patterns have no glob or regex meaning. A path is excluded when any pattern
occurs in it, after both sides are normalized to the platform separator.
Since the walker always supplies root-relative paths, a pattern such as
``"DIM-1"`` acts as a prefix filter on the ``DIM-1`` folder.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Iterator

LOCK_FILE_SUFFIX = ".lck"


def normalize_path(path: str) -> str:
    """Use the platform separator for both separator styles."""
    return path.replace("\\", os.sep).replace("/", os.sep)


def is_lock_file(name: str) -> bool:
    """Check whether a file name is an in-flight write lock."""
    return name.endswith(LOCK_FILE_SUFFIX)


def is_excluded(exclude_list: Iterable[str], candidate_path: str) -> bool:
    """Check whether a path matches or is nested under an excluded pattern.

    Args:
        exclude_list: Plain substring patterns.
        candidate_path: Path as constructed by the walker (root-relative).

    Returns:
        True if any non-empty pattern occurs in the path (case-sensitive).
    """
    candidate = normalize_path(candidate_path)
    for pattern in exclude_list:
        # An empty pattern would match everything
        if pattern and normalize_path(pattern) in candidate:
            return True
    return False


class ExclusionSet:
    """Ordered, de-duplicated set of exclusion patterns."""

    def __init__(self, patterns: Iterable[str] | None = None) -> None:
        """Initialize with patterns.

        Args:
            patterns: Folder patterns; empty strings are dropped.
        """
        self._patterns: list[str] = []
        for pattern in patterns or ():
            self.add_pattern(pattern)

    def add_pattern(self, pattern: str) -> None:
        """Add a pattern, keeping insertion order."""
        pattern = normalize_path(pattern.strip())
        if pattern and pattern not in self._patterns:
            self._patterns.append(pattern)

    def is_excluded(self, candidate_path: str) -> bool:
        """Check a walker-constructed path against all patterns."""
        return is_excluded(self._patterns, candidate_path)

    def __iter__(self) -> Iterator[str]:
        return iter(self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)

    def __repr__(self) -> str:
        return f"ExclusionSet({self._patterns!r})"
