"""Backup runs: one target end to end, all targets, and periodic runs.

This module provides:
- BackupRunner: hooks, transfer and rotation for one BackupTarget
- rotate_backups: drop the oldest run directories of a local destination
- TargetResult: outcome of one target in a BackupWorker run
- BackupWorker: runs every configured target, cancellable
- BackupScheduler: runs a BackupWorker on an interval
"""

from __future__ import annotations

import ftplib
import logging
import posixpath
import re
import shutil
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Any

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from worldbackup.authority.bridge import SyncBridge
from worldbackup.backup.archive import ArchiveWriter, mirror_tree
from worldbackup.backup.chunked import ChunkedUploadClient, ChunkedUploader, WriteMode, upload_file
from worldbackup.backup.ftp import FTPTransport, remote_join
from worldbackup.backup.worker import BaseWorker, WorkerContext
from worldbackup.core.config import DEFAULT_CHUNK_SIZE, BackupTarget, Destination, DestinationKind
from worldbackup.core.exclusion import ExclusionSet
from worldbackup.core.types import CancelledException, RunSummary, SynchronizationError
from worldbackup.core.walker import TreeWalker, WalkEntry

logger = logging.getLogger(__name__)

RUN_NAME_FORMAT = "%Y-%m-%d_%H-%M-%S"
RUN_NAME_PATTERN = re.compile(r"^\d{4}-\d{2}-\d{2}_\d{2}-\d{2}-\d{2}$")


def rotate_backups(directory: Path, max_backups: int) -> list[Path]:
    """Delete the oldest run directories beyond max_backups.

    Only directories named like a run are considered.

    Returns:
        The deleted directories.
    """
    if max_backups <= 0 or not directory.is_dir():
        return []
    runs = sorted(
        p for p in directory.iterdir() if p.is_dir() and RUN_NAME_PATTERN.match(p.name)
    )
    removed = runs[: max(0, len(runs) - max_backups)]
    for run_dir in removed:
        logger.info(f"Removing old backup {run_dir}")
        shutil.rmtree(run_dir)
    return removed


class BackupRunner:
    """Backs up one target at a time.

    before_backup and after_backup run on the authority thread; they are
    where the host flushes its state and suspends or resumes its own saves.
    """

    def __init__(
        self,
        bridge: SyncBridge,
        before_backup: Callable[[], Any] | None = None,
        after_backup: Callable[[], Any] | None = None,
        chunk_size: int = DEFAULT_CHUNK_SIZE,
        clock: Callable[[], datetime] = datetime.now,
        ftp_factory: Callable[[], ftplib.FTP] = ftplib.FTP,
        cloud_client_factory: Callable[[Destination], ChunkedUploadClient] | None = None,
    ) -> None:
        """Initialize the runner.

        Args:
            bridge: Bridge to the authority thread.
            before_backup: Hook run before the transfer.
            after_backup: Hook run after the transfer, even if it failed.
            chunk_size: Chunk size for cloud uploads.
            clock: Source of the run timestamp.
            ftp_factory: Creates ftplib.FTP instances.
            cloud_client_factory: Creates the chunked upload client of a
                cloud destination.
        """
        self._bridge = bridge
        self._before_backup = before_backup
        self._after_backup = after_backup
        self._chunk_size = chunk_size
        self._clock = clock
        self._ftp_factory = ftp_factory
        self._cloud_client_factory = cloud_client_factory or _default_cloud_client

    def run(
        self,
        target: BackupTarget,
        cancel_check: Callable[[], bool] | None = None,
    ) -> RunSummary:
        """Back up one target.

        Raises:
            SynchronizationError: before_backup could not run.
            FatalTransferError: The upload failed.
            CancelledException: The run was cancelled.
        """
        run_name = self._clock().strftime(RUN_NAME_FORMAT)
        logger.info(f"Backing up {target.source} to {target.destination.kind.value} ({run_name})")

        if self._before_backup is not None:
            if not self._bridge.run_on_authority_and_wait(self._before_backup):
                raise SynchronizationError(f"before_backup hook did not run for {target.source}")
        try:
            summary = self._transfer(target, run_name, cancel_check)
        finally:
            if self._after_backup is not None:
                if not self._bridge.run_on_authority_and_wait(self._after_backup):
                    logger.error(f"after_backup hook did not run for {target.source}")

        if target.destination.kind is DestinationKind.LOCAL:
            rotate_backups(Path(target.destination.path), target.max_backups)
        return summary

    def _transfer(
        self,
        target: BackupTarget,
        run_name: str,
        cancel_check: Callable[[], bool] | None,
    ) -> RunSummary:
        destination = target.destination
        exclusions = ExclusionSet(target.exclusions)

        if destination.kind is DestinationKind.LOCAL:
            run_dir = Path(destination.path) / run_name
            if target.archived:
                writer = ArchiveWriter(exclusions, cancel_check=cancel_check)
                return writer.write_archive(target.source, run_dir / f"{target.source.name}.zip")
            return mirror_tree(
                target.source, run_dir / target.source.name, exclusions, cancel_check=cancel_check
            )

        if destination.kind is DestinationKind.FTP:
            transport = FTPTransport(
                destination.host or "",
                destination.port,
                destination.username,
                destination.password,
                destination.timeout,
                ftp_factory=self._ftp_factory,
                cancel_check=cancel_check,
            )
            remote_dir = remote_join(destination.path, run_name)
            with transport:
                if target.archived:
                    return transport.upload_archive(target.source, remote_dir, exclusions)
                return transport.upload_tree(
                    target.source, remote_join(remote_dir, target.source.name), exclusions
                )

        with self._cloud_client_factory(destination) as client:
            remote_dir = posixpath.join(destination.path.strip("/"), run_name)
            if target.archived:
                return self._upload_archive(client, target, remote_dir, exclusions, cancel_check)
            return self._upload_tree(client, target, remote_dir, exclusions, cancel_check)

    def _upload_archive(
        self,
        client: ChunkedUploadClient,
        target: BackupTarget,
        remote_dir: str,
        exclusions: ExclusionSet,
        cancel_check: Callable[[], bool] | None,
    ) -> RunSummary:
        uploader = ChunkedUploader(
            client,
            f"{remote_dir}/{target.source.name}.zip",
            WriteMode.add(),
            self._chunk_size,
        )
        writer = ArchiveWriter(exclusions, cancel_check=cancel_check)
        summary = writer.stream_to_archive(target.source, uploader)
        uploader.finish()
        return summary

    def _upload_tree(
        self,
        client: ChunkedUploadClient,
        target: BackupTarget,
        remote_dir: str,
        exclusions: ExclusionSet,
        cancel_check: Callable[[], bool] | None,
    ) -> RunSummary:
        base = posixpath.join(remote_dir, target.source.name)

        def send_file(entry: WalkEntry) -> int:
            remote = upload_file(
                client,
                entry.path,
                remote_join(base, entry.relative),
                WriteMode.force(),
                self._chunk_size,
            )
            return remote.size

        return TreeWalker(target.source, exclusions, cancel_check).walk(send_file)


def _default_cloud_client(destination: Destination) -> ChunkedUploadClient:
    return ChunkedUploadClient(
        base_url=destination.url or "",
        token=destination.token,
        timeout=destination.timeout,
    )


@dataclass
class TargetResult:
    """Outcome of one target in a BackupWorker run."""

    source: Path
    summary: RunSummary | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.summary is not None and self.summary.ok


class BackupWorker(BaseWorker):
    """Backs up every configured target, one after the other.

    A failing target is logged and the next one still runs.
    """

    def __init__(self, runner: BackupRunner, targets: list[BackupTarget]) -> None:
        super().__init__()
        self._runner = runner
        self._targets = list(targets)

    @property
    def worker_type(self) -> str:
        return "backup"

    def _do_work(self, ctx: WorkerContext) -> list[TargetResult]:
        results: list[TargetResult] = []
        for target in self._targets:
            ctx.raise_if_cancelled()
            try:
                summary = self._runner.run(target, ctx.cancel_check)
                results.append(TargetResult(target.source, summary=summary))
            except CancelledException:
                raise
            except Exception as e:
                logger.exception(f"Backup of {target.source} failed")
                results.append(TargetResult(target.source, error=str(e)))
        return results


class BackupScheduler:
    """Runs a BackupWorker every interval_seconds.

    Only one run is active at a time; runs missed while one was active are
    coalesced into one.
    """

    JOB_ID = "worldbackup"

    def __init__(
        self,
        worker: BackupWorker,
        interval_seconds: float,
        run_on_start: bool = False,
    ) -> None:
        """Initialize the scheduler.

        Args:
            worker: Worker to run.
            interval_seconds: Time between two runs.
            run_on_start: Run once as soon as the scheduler starts.
        """
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._worker = worker
        self._interval = interval_seconds
        self._run_on_start = run_on_start
        self._scheduler: BackgroundScheduler | None = None
        self.runs = 0

    @property
    def is_running(self) -> bool:
        return self._scheduler is not None

    def _run_job(self) -> None:
        """Job function for a scheduled or triggered run."""
        if self._worker.is_running:
            logger.info("Backup already running, skipping this run")
            return
        self.runs += 1
        result = self._worker.execute()
        if result.success:
            logger.info("Backup run %d completed in %.1fs", self.runs, result.elapsed_time)
        elif result.cancelled:
            logger.info("Backup run %d cancelled", self.runs)
        else:
            logger.error("Backup run %d failed: %s", self.runs, result.error)

    def start(self) -> None:
        """Start the scheduler."""
        if self._scheduler is not None:
            return  # Already running

        self._scheduler = BackgroundScheduler()
        self._scheduler.add_job(
            self._run_job,
            trigger=IntervalTrigger(seconds=self._interval),
            id=self.JOB_ID,
            name="Periodic backup",
            max_instances=1,
            coalesce=True,
            replace_existing=True,
        )
        self._scheduler.start()
        logger.info("Backup scheduler started (every %ds)", self._interval)
        if self._run_on_start:
            self.trigger()

    def trigger(self) -> None:
        """Run a backup now, unless one is already running."""
        if self._scheduler is None:
            raise RuntimeError("Backup scheduler is not started")
        self._scheduler.add_job(
            self._run_job,
            id=f"{self.JOB_ID}-now",
            name="Triggered backup",
            max_instances=1,
            replace_existing=True,
        )

    def stop(self, wait: bool = True) -> None:
        """Cancel the running backup and stop the scheduler."""
        if self._scheduler is None:
            return
        self._worker.cancel()
        self._scheduler.shutdown(wait=wait)
        self._scheduler = None
        logger.info("Backup scheduler stopped")
