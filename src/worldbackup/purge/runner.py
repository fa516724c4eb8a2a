"""Run a set of purges against one activity list."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Any

from worldbackup.authority.bridge import SyncBridge
from worldbackup.authority.tasks import BatchedTaskQueue, TaskQueueStats
from worldbackup.core.config import DEFAULT_TASKS_LIMIT
from worldbackup.purge.activity import ActivityList
from worldbackup.purge.purges import DataPurge

logger = logging.getLogger(__name__)


@dataclass
class PurgeResult:
    """Outcome of one purge."""

    name: str
    purged: int = 0
    stats: TaskQueueStats | None = None
    error: str | None = None


class PurgeRunner:
    """Runs purges one after the other, each with its own queue.

    A purge that raises is logged and the next purge still runs. Each queue
    is flushed when its purge ends, successful or not.
    """

    def __init__(
        self,
        bridge: SyncBridge,
        purges: Iterable[DataPurge],
        context: Any = None,
        tasks_limit: int = DEFAULT_TASKS_LIMIT,
    ) -> None:
        self._bridge = bridge
        self._purges = list(purges)
        self._context = context
        self._tasks_limit = tasks_limit

    def run(self, activity: ActivityList) -> list[PurgeResult]:
        logger.info(f"Purge started, {len(activity)} active identifiers")
        results = []
        for purge in self._purges:
            queue = BatchedTaskQueue(self._bridge, self._context, self._tasks_limit)
            result = PurgeResult(purge.name, stats=queue.stats)
            try:
                with queue:
                    result.purged = purge.purge(activity, queue)
                logger.info(f"Purge {purge.name}: {result.purged} items removed")
            except Exception as e:
                logger.exception(f"Purge {purge.name} failed")
                result.error = str(e)
            results.append(result)
        return results
