"""Data purges built on the batched task queue.

This module provides:
- DataPurge: contract of one purge
- RecordPurge: drop records owned by inactive owners from an owned mapping
- DatFilePurge: delete player data and stats files of inactive players

A purge runs on a background worker. Owned state is read through the
queue on the authority thread, and every mutation goes to the queue as a
SyncTask; only the authority thread touches owned state.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable, MutableMapping
from pathlib import Path
from typing import Any

from worldbackup.authority.tasks import BatchedTaskQueue, CallableTask, SyncTask
from worldbackup.purge.activity import ActivityList

logger = logging.getLogger(__name__)


class DataPurge(ABC):
    """One kind of data to purge."""

    name: str = "purge"

    @abstractmethod
    def purge(self, activity: ActivityList, queue: BatchedTaskQueue) -> int:
        """Queue the removal of everything owned by inactive identifiers.

        Args:
            activity: Identifiers that must be kept.
            queue: Queue receiving the mutation tasks.

        Returns:
            Number of items queued for removal.
        """


class RecordDeleteTask(SyncTask):
    """Light task removing one record from an owned mapping."""

    def __init__(self, records: MutableMapping[str, Any], key: str) -> None:
        self._records = records
        self._key = key

    def perform(self, context: Any) -> None:
        logger.debug(f"Deleting record {self._key}")
        self._records.pop(self._key, None)

    def __repr__(self) -> str:
        return f"RecordDeleteTask({self._key})"


class RecordPurge(DataPurge):
    """Purge records (regions, claims, homes) whose owner is inactive.

    Each record can first be regenerated by a heavy task, which runs on its
    own and before the record's deletion is even queued.

    Usage:
        purge = RecordPurge(regions, owner_of=lambda r: r.owner)
    """

    def __init__(
        self,
        records: MutableMapping[str, Any],
        owner_of: Callable[[Any], str],
        regenerate: Callable[[str, Any], None] | None = None,
        case_sensitive: bool = True,
        name: str = "records",
    ) -> None:
        """Initialize the purge.

        Args:
            records: Mapping owned by the authority thread, key to record.
            owner_of: Returns the owner identifier of a record.
            regenerate: Optional heavy operation run before deletion.
            case_sensitive: Match owners case-sensitively.
            name: Name used in logs and results.
        """
        self._records = records
        self._owner_of = owner_of
        self._regenerate = regenerate
        self._case_sensitive = case_sensitive
        self.name = name

    def _is_active(self, activity: ActivityList, owner: str) -> bool:
        if self._case_sensitive:
            return activity.is_active(owner)
        return activity.is_active_ci(owner)

    def purge(self, activity: ActivityList, queue: BatchedTaskQueue) -> int:
        purged = 0
        for key, record, owner in queue.read(self._snapshot):
            if self._is_active(activity, owner):
                continue
            logger.debug(f"Owner {owner} of {key} is inactive, purging")
            if self._regenerate is not None:
                queue.add_task(self._regen_task(self._regenerate, key, record))
            queue.add_task(RecordDeleteTask(self._records, key))
            purged += 1
        return purged

    def _snapshot(self) -> list[tuple[str, Any, str]]:
        return [(key, record, self._owner_of(record)) for key, record in self._records.items()]

    def _regen_task(self, regenerate: Callable[[str, Any], None], key: str, record: Any) -> SyncTask:
        def regen(_context: Any) -> None:
            regenerate(key, record)

        return CallableTask(regen, heavy=True, name=f"regenerate {key}")


class FileDeleteTask(SyncTask):
    """Light task deleting files; missing files are ignored."""

    def __init__(self, *paths: Path) -> None:
        self._paths = paths

    def perform(self, context: Any) -> None:
        for path in self._paths:
            path.unlink(missing_ok=True)

    def __repr__(self) -> str:
        return f"FileDeleteTask({', '.join(p.name for p in self._paths)})"


class DatFilePurge(DataPurge):
    """Delete <world>/playerdata/<id>.dat and <world>/stats/<id>.dat."""

    name = "datfiles"

    def __init__(self, world_dir: Path) -> None:
        self._playerdata = world_dir / "playerdata"
        self._stats = world_dir / "stats"

    def purge(self, activity: ActivityList, queue: BatchedTaskQueue) -> int:
        if not self._playerdata.is_dir():
            logger.debug(f"No player data in {self._playerdata}")
            return 0
        purged = 0
        for data_file in self._playerdata.iterdir():
            if not data_file.name.endswith(".dat"):
                continue
            player_id = data_file.name[: -len(".dat")]
            if activity.is_active(player_id):
                continue
            logger.debug(f"{player_id} is inactive, removing data files")
            queue.add_task(FileDeleteTask(data_file, self._stats / data_file.name))
            purged += 1
        return purged
