"""Base worker class with cooperative cancellation.

This module provides:
- WorkerState: Enum for worker lifecycle states
- WorkerResult: Result of a worker execution
- WorkerContext: What a running job can see
- BaseWorker: Abstract base class for interruptible background jobs
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum, auto
from typing import Any

from worldbackup.core.types import CancelledException

logger = logging.getLogger(__name__)


class WorkerState(Enum):
    """State of a worker."""

    IDLE = auto()
    RUNNING = auto()
    COMPLETED = auto()
    CANCELLED = auto()
    FAILED = auto()


@dataclass
class WorkerResult:
    """Result of a worker execution.

    Attributes:
        success: Whether the job ran to completion.
        result: Value returned by the job.
        error: Error message if failed.
        cancelled: Whether the job was cancelled.
        elapsed_time: Time taken in seconds.
    """

    success: bool
    result: Any = None
    error: str | None = None
    cancelled: bool = False
    elapsed_time: float = 0.0


@dataclass
class WorkerContext:
    """Context passed to a running job.

    Attributes:
        cancel_check: Returns True once cancellation was requested.
    """

    cancel_check: Callable[[], bool] = field(default=lambda: False)

    def raise_if_cancelled(self) -> None:
        if self.cancel_check():
            raise CancelledException()


class BaseWorker(ABC):
    """Abstract base class for interruptible background jobs.

    The stop signal is a flag polled by the job, not a forced interrupt: a
    job blocked in network I/O notices it at its next check.

    Subclasses implement _do_work() and worker_type.
    """

    def __init__(self) -> None:
        self._worker_state = WorkerState.IDLE
        self._cancel_requested = False
        self._lock = threading.Lock()
        self.last_result: WorkerResult | None = None

    @property
    @abstractmethod
    def worker_type(self) -> str:
        """Return the worker type name (e.g. 'backup')."""
        ...

    @property
    def state(self) -> WorkerState:
        return self._worker_state

    @property
    def is_running(self) -> bool:
        return self._worker_state == WorkerState.RUNNING

    @property
    def cancel_requested(self) -> bool:
        return self._cancel_requested

    def cancel(self) -> bool:
        """Request cancellation of the current job.

        Returns:
            True if cancellation was requested, False if not running.
        """
        with self._lock:
            if self._worker_state != WorkerState.RUNNING:
                return False
            self._cancel_requested = True
            logger.info(f"{self.worker_type} worker: cancellation requested")
            return True

    def execute(self, cancel_check: Callable[[], bool] | None = None) -> WorkerResult:
        """Run the job on the calling thread.

        Args:
            cancel_check: Optional external cancellation check.

        Returns:
            The result; also kept as last_result.
        """
        with self._lock:
            if self._worker_state == WorkerState.RUNNING:
                logger.warning(f"{self.worker_type} worker: already running")
                return WorkerResult(success=False, error="already running")
            self._worker_state = WorkerState.RUNNING
            self._cancel_requested = False

        start_time = time.time()

        def combined_cancel_check() -> bool:
            if self._cancel_requested:
                return True
            if cancel_check and cancel_check():
                self._cancel_requested = True
                return True
            return False

        ctx = WorkerContext(cancel_check=combined_cancel_check)

        try:
            value = self._do_work(ctx)
            elapsed = time.time() - start_time
            if self._cancel_requested:
                self._worker_state = WorkerState.CANCELLED
                result = WorkerResult(success=False, result=value, cancelled=True, elapsed_time=elapsed)
            else:
                self._worker_state = WorkerState.COMPLETED
                result = WorkerResult(success=True, result=value, elapsed_time=elapsed)

        except CancelledException:
            elapsed = time.time() - start_time
            self._worker_state = WorkerState.CANCELLED
            logger.info(f"{self.worker_type} worker: cancelled after {elapsed:.2f}s")
            result = WorkerResult(success=False, cancelled=True, elapsed_time=elapsed)

        except Exception as e:
            elapsed = time.time() - start_time
            self._worker_state = WorkerState.FAILED
            logger.exception(f"{self.worker_type} worker failed")
            result = WorkerResult(success=False, error=str(e), elapsed_time=elapsed)

        self.last_result = result
        return result

    @abstractmethod
    def _do_work(self, ctx: WorkerContext) -> Any:
        """Perform the actual work.

        Implementations check ctx.cancel_check() between units of work and
        raise CancelledException when it returns True.
        """
        ...
