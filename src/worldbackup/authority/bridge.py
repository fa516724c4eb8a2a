"""Cross-thread bridge to the single authoritative thread.

This module provides:
- Lane: submission lanes of the authority loop
- CallState, PendingCall: one submitted unit of work and its completion signal
- AuthorityLoop: the single consumer that owns the shared state
- SyncBridge: run a task on the authority thread and block until it is done

Only the authority thread may touch the state being backed up or purged.
Background workers hand it closures through a SyncBridge and wait. The loop
runs one call at a time; the IMMEDIATE lane is always drained before a BATCH
call is taken, and calls within a lane run in submission order.

The loop never holds a reference back to a bridge or to a worker: it only
executes what it is handed.
"""

from __future__ import annotations

import itertools
import logging
import queue
import threading
from collections.abc import Callable
from enum import Enum, IntEnum, auto
from typing import Any

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.1  # seconds


class Lane(IntEnum):
    """Submission lanes, lower value is served first."""

    IMMEDIATE = 0
    BATCH = 1


class CallState(Enum):
    """State of a submitted call."""

    PENDING = auto()
    COMPLETED = auto()
    FAILED = auto()
    NOT_RUN = auto()


class PendingCall:
    """A task submitted to the authority loop plus its completion signal."""

    def __init__(self, task: Callable[[], Any], lane: Lane = Lane.IMMEDIATE) -> None:
        self._task = task
        self.lane = lane
        self.result: Any = None
        self.error: BaseException | None = None
        self._state = CallState.PENDING
        self._done = threading.Event()

    @property
    def state(self) -> CallState:
        return self._state

    @property
    def completed(self) -> bool:
        """True if the task ran to completion without raising."""
        return self._state is CallState.COMPLETED

    def run(self) -> None:
        """Execute the task. Exceptions are logged, never propagated."""
        try:
            self.result = self._task()
            self._state = CallState.COMPLETED
        except Exception as e:
            logger.exception(f"Task {self._task!r} failed on the authority thread")
            self.error = e
            self._state = CallState.FAILED
        finally:
            self._done.set()

    def abandon(self) -> None:
        """Release the waiter without running the task."""
        if self._state is CallState.PENDING:
            self._state = CallState.NOT_RUN
        self._done.set()

    def wait(self, timeout: float | None = None) -> bool:
        """Block until the call is finished or abandoned."""
        return self._done.wait(timeout)


class AuthorityLoop:
    """Single-consumer loop that owns the shared mutable state.

    The loop either runs on its own thread (start()) or is driven by a host
    main loop calling run_pending() on every tick. Whichever thread executes
    calls is the authority thread.

    Usage:
        loop = AuthorityLoop()
        loop.start()
        SyncBridge(loop).run_on_authority_and_wait(save_world)
        loop.stop()
    """

    def __init__(self, name: str = "worldbackup-authority", max_pending: int = 0) -> None:
        """Initialize the loop.

        Args:
            name: Name of the loop thread.
            max_pending: Queue capacity, 0 for unbounded. Submitters block
                while the queue is full.
        """
        self._name = name
        self._queue: queue.PriorityQueue[tuple[int, int, PendingCall]] = queue.PriorityQueue(
            maxsize=max_pending
        )
        self._sequence = itertools.count()
        self._lock = threading.Lock()
        self._stopped = False
        self._thread: threading.Thread | None = None
        self._owner_ident: int | None = None
        self._executed = 0

    @property
    def is_running(self) -> bool:
        """True while the loop thread is alive and not stopped."""
        return not self._stopped and self._thread is not None and self._thread.is_alive()

    @property
    def is_stopped(self) -> bool:
        return self._stopped

    @property
    def executed_count(self) -> int:
        """Number of calls executed so far."""
        return self._executed

    @property
    def pending_count(self) -> int:
        return self._queue.qsize()

    def is_authority_thread(self) -> bool:
        """Check whether the calling thread is the authority thread."""
        return self._owner_ident == threading.get_ident()

    def start(self) -> None:
        """Run the loop on a dedicated thread."""
        with self._lock:
            if self._stopped:
                raise RuntimeError("Authority loop is stopped")
            if self._thread is not None:
                return
            self._thread = threading.Thread(target=self._run_loop, name=self._name, daemon=True)
        self._thread.start()
        logger.debug(f"Authority loop {self._name} started")

    def stop(self, timeout: float | None = 5.0) -> None:
        """Stop the loop and release every waiting submitter.

        Calls still queued are abandoned, not run. A call already running
        finishes normally.
        """
        with self._lock:
            self._stopped = True
        self._abandon_pending()
        thread = self._thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
        logger.debug(f"Authority loop {self._name} stopped")

    def submit(self, task: Callable[[], Any], lane: Lane = Lane.IMMEDIATE) -> PendingCall:
        """Queue a task for the authority thread.

        Returns:
            The pending call; it is already abandoned if the loop is stopped.
        """
        call = PendingCall(task, lane)
        while True:
            with self._lock:
                if self._stopped:
                    call.abandon()
                    return call
                sequence = next(self._sequence)
            try:
                self._queue.put((int(lane), sequence, call), timeout=POLL_INTERVAL)
                break
            except queue.Full:
                continue
        if self._stopped:
            # stop() may have drained the queue before our put landed
            self._abandon_pending()
        return call

    def run_pending(self) -> int:
        """Execute every queued call on the calling thread.

        For hosts that drive the loop from their own main loop. The calling
        thread becomes the authority thread.

        Returns:
            Number of calls executed.
        """
        self._owner_ident = threading.get_ident()
        count = 0
        while not self._stopped:
            try:
                _, _, call = self._queue.get_nowait()
            except queue.Empty:
                break
            self._execute(call)
            count += 1
        return count

    def _run_loop(self) -> None:
        self._owner_ident = threading.get_ident()
        while not self._stopped:
            try:
                _, _, call = self._queue.get(timeout=POLL_INTERVAL)
            except queue.Empty:
                continue
            if self._stopped:
                call.abandon()
                break
            self._execute(call)
        self._abandon_pending()

    def _execute(self, call: PendingCall) -> None:
        call.run()
        self._executed += 1

    def _abandon_pending(self) -> None:
        while True:
            try:
                _, _, call = self._queue.get_nowait()
            except queue.Empty:
                return
            call.abandon()


class SyncBridge:
    """Run units of work on the authority thread and wait for them.

    Owned by the background worker that created it. Tasks must be short:
    the authority thread is blocked for their whole duration.
    """

    def __init__(self, authority: AuthorityLoop) -> None:
        self._authority = authority
        self._round_trips = 0

    @property
    def round_trips(self) -> int:
        """Number of submissions made through this bridge."""
        return self._round_trips

    def submit_and_wait(self, task: Callable[[], Any], lane: Lane = Lane.IMMEDIATE) -> PendingCall:
        """Submit a task and block until it ran or was abandoned.

        Called from the authority thread itself, the task runs inline.
        """
        self._round_trips += 1
        if self._authority.is_authority_thread():
            call = PendingCall(task, lane)
            call.run()
            return call
        call = self._authority.submit(task, lane)
        call.wait()
        return call

    def run_on_authority_and_wait(
        self,
        task: Callable[[], Any],
        lane: Lane = Lane.IMMEDIATE,
    ) -> bool:
        """Run a task on the authority thread and wait for it.

        Returns:
            True if the task ran to completion. False if it raised (the error
            is logged) or if the authority thread stopped before running it.
        """
        call = self.submit_and_wait(task, lane)
        if call.state is CallState.NOT_RUN:
            logger.warning("Authority thread unavailable, task was not run")
        return call.completed
