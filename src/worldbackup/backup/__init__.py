"""Backup transfers and runs.

Architecture:
    BackupScheduler → BackupWorker → BackupRunner → ArchiveWriter / transports

Components:
- **ArchiveWriter**, **mirror_tree**: zip stream or file copy of a tree
- **FTPTransport**: direct push, one STOR per file
- **ChunkedUploadClient**, **ChunkedUploader**: resumable chunked upload
- **BackupRunner**: hooks, transfer and rotation for one target
- **BackupWorker**, **BackupScheduler**: all targets, periodically
"""

from worldbackup.backup.archive import ArchiveWriter, archive_entry_name, mirror_tree
from worldbackup.backup.chunked import (
    ChunkedUploadClient,
    ChunkedUploader,
    ChunkedUploadSession,
    RemoteFile,
    UploadState,
    WriteMode,
    upload_file,
)
from worldbackup.backup.ftp import FTPTransport
from worldbackup.backup.retry import retry_with_backoff
from worldbackup.backup.runner import (
    BackupRunner,
    BackupScheduler,
    BackupWorker,
    TargetResult,
    rotate_backups,
)
from worldbackup.backup.worker import BaseWorker, WorkerResult, WorkerState

__all__ = [
    # Archive
    "ArchiveWriter",
    "archive_entry_name",
    "mirror_tree",
    # Chunked upload
    "ChunkedUploadClient",
    "ChunkedUploadSession",
    "ChunkedUploader",
    "RemoteFile",
    "UploadState",
    "WriteMode",
    "upload_file",
    # FTP
    "FTPTransport",
    # Retry
    "retry_with_backoff",
    # Runs
    "BackupRunner",
    "BackupScheduler",
    "BackupWorker",
    "TargetResult",
    "rotate_backups",
    # Workers
    "BaseWorker",
    "WorkerResult",
    "WorkerState",
]
