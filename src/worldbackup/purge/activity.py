"""Set of identifiers considered active by a purge."""

from __future__ import annotations

import logging
import time
from collections.abc import Iterable, Iterator, Mapping
from pathlib import Path

logger = logging.getLogger(__name__)


class ActivityList:
    """Active identifiers (player names or UUIDs).

    Lookups are case-sensitive by default; is_active_ci() ignores case for
    data keyed by names typed by people.
    """

    def __init__(self, identifiers: Iterable[str] = ()) -> None:
        self._ids: set[str] = set()
        self._folded: set[str] = set()
        for identifier in identifiers:
            self.add(identifier)

    def add(self, identifier: str) -> None:
        self._ids.add(identifier)
        self._folded.add(identifier.casefold())

    def is_active(self, identifier: str) -> bool:
        return identifier in self._ids

    def is_active_ci(self, identifier: str) -> bool:
        return identifier.casefold() in self._folded

    def __contains__(self, identifier: object) -> bool:
        return identifier in self._ids

    def __iter__(self) -> Iterator[str]:
        return iter(self._ids)

    def __len__(self) -> int:
        return len(self._ids)

    @classmethod
    def from_last_seen(
        cls,
        last_seen: Mapping[str, float],
        away_seconds: float,
        now: float | None = None,
    ) -> ActivityList:
        """Active identifiers are those seen less than away_seconds ago.

        Args:
            last_seen: Identifier to last-seen Unix timestamp.
            away_seconds: Inactivity threshold.
            now: Current time, defaults to time.time().
        """
        now = time.time() if now is None else now
        return cls(i for i, seen in last_seen.items() if now - seen < away_seconds)

    @classmethod
    def from_data_files(
        cls,
        directory: Path,
        away_seconds: float,
        suffix: str = ".dat",
        now: float | None = None,
    ) -> ActivityList:
        """Use the modification time of "<id><suffix>" files as last-seen time.

        A server rewrites a player's data file while the player is online.
        """
        last_seen: dict[str, float] = {}
        if directory.is_dir():
            for path in directory.iterdir():
                if path.is_file() and path.name.endswith(suffix):
                    last_seen[path.name[: -len(suffix)]] = path.stat().st_mtime
        activity = cls.from_last_seen(last_seen, away_seconds, now)
        logger.debug(f"Found {len(activity)} active of {len(last_seen)} known in {directory}")
        return activity
