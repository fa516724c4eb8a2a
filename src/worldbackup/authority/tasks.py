"""Batched submission of small mutation tasks.

This module provides:
- SyncTask: a unit of work for the authority thread
- CallableTask: SyncTask wrapping a plain function
- TaskQueueStats: counters of a BatchedTaskQueue
- BatchedTaskQueue: heavy tasks run at once, light tasks are batched

Every SyncBridge round trip costs one full scheduling latency of the
authority thread. Light tasks (deleting many unrelated records) are
order-insensitive and are sent together, tasks_limit at a time. Heavy tasks
(regenerating an area) go alone and immediately, so each one stays isolated
and observable.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, TypeVar

from worldbackup.authority.bridge import Lane, SyncBridge
from worldbackup.core.config import DEFAULT_TASKS_LIMIT
from worldbackup.core.types import SynchronizationError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class SyncTask(ABC):
    """A unit of work executed exactly once on the authority thread.

    Subclasses implement perform(). Tasks are never retried.
    """

    @property
    def is_heavy(self) -> bool:
        """Heavy tasks bypass batching and run immediately."""
        return False

    @abstractmethod
    def perform(self, context: Any) -> None:
        """Do the work. Runs on the authority thread.

        Args:
            context: Object handed to every task of a queue (e.g. the world).
        """


class CallableTask(SyncTask):
    """SyncTask wrapping a function of the queue context."""

    def __init__(
        self,
        func: Callable[[Any], Any],
        heavy: bool = False,
        name: str | None = None,
    ) -> None:
        self._func = func
        self._heavy = heavy
        self.name = name or getattr(func, "__name__", "task")

    @property
    def is_heavy(self) -> bool:
        return self._heavy

    def perform(self, context: Any) -> None:
        self._func(context)

    def __repr__(self) -> str:
        kind = "heavy" if self._heavy else "light"
        return f"CallableTask({self.name}, {kind})"


@dataclass
class TaskQueueStats:
    """Counters of a BatchedTaskQueue."""

    executed: int = 0
    failed: int = 0
    not_run: int = 0
    flushes: int = 0
    heavy: int = 0


class BatchedTaskQueue:
    """Accumulates light tasks and sends them as one SyncBridge call.

    Owned by a single background worker; not thread-safe.

    Usage:
        with BatchedTaskQueue(bridge, context=world) as tasks:
            for region in regions:
                tasks.add_task(RegionDeleteTask(region))
        # leaving the block flushes the remaining light tasks
    """

    def __init__(
        self,
        bridge: SyncBridge,
        context: Any = None,
        tasks_limit: int = DEFAULT_TASKS_LIMIT,
    ) -> None:
        """Initialize the queue.

        Args:
            bridge: Bridge to the authority thread.
            context: Passed to every task's perform().
            tasks_limit: Light tasks per automatic flush.
        """
        if tasks_limit <= 0:
            raise ValueError("tasks_limit must be positive")
        self._bridge = bridge
        self._context = context
        self._tasks_limit = tasks_limit
        self._tasks: list[SyncTask] = []
        self.stats = TaskQueueStats()

    @property
    def tasks_limit(self) -> int:
        return self._tasks_limit

    def __len__(self) -> int:
        """Number of light tasks waiting for a flush."""
        return len(self._tasks)

    def __enter__(self) -> BatchedTaskQueue:
        return self

    def __exit__(self, *args: object) -> None:
        self.flush()

    def add_task(self, task: SyncTask) -> None:
        """Run a heavy task now, or queue a light one.

        The batch is flushed automatically once it holds tasks_limit tasks.
        """
        if task.is_heavy:
            self.stats.heavy += 1
            if not self._bridge.run_on_authority_and_wait(self._runner([task])):
                self.stats.not_run += 1
            return

        self._tasks.append(task)
        if len(self._tasks) >= self._tasks_limit:
            self.flush()

    def read(self, func: Callable[[], T]) -> T:
        """Run a read of authority-owned state on the authority thread.

        Queued light tasks are flushed first, so the read sees them applied.

        Raises:
            SynchronizationError: The read failed or the authority thread
                was unavailable.
        """
        self.flush()
        call = self._bridge.submit_and_wait(func)
        if not call.completed:
            raise SynchronizationError(f"Could not read authority state: {call.state.name}")
        return call.result  # type: ignore[no-any-return]

    def flush(self) -> bool:
        """Run all queued light tasks in one authority call, in insertion order.

        The batch is cleared whether or not the authority thread could run
        it; tasks are never retried.

        Returns:
            True if the batch ran (individual task failures are counted in
            stats), False if the authority thread was unavailable.
        """
        if not self._tasks:
            return True
        batch, self._tasks = self._tasks, []
        self.stats.flushes += 1
        logger.debug(f"Flushing {len(batch)} light tasks")
        if self._bridge.run_on_authority_and_wait(self._runner(batch), lane=Lane.BATCH):
            return True
        self.stats.not_run += len(batch)
        logger.warning(f"Authority thread unavailable, dropped {len(batch)} tasks")
        return False

    def _runner(self, batch: list[SyncTask]) -> Callable[[], None]:
        def run_batch() -> None:
            for task in batch:
                try:
                    task.perform(self._context)
                    self.stats.executed += 1
                except Exception:
                    self.stats.failed += 1
                    logger.exception(f"Task {task!r} failed")

        return run_batch
