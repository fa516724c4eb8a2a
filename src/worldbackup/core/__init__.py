"""Core module - Configuration, result types, exclusion and tree walking."""

from worldbackup.core.config import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_INTERVAL_SECONDS,
    DEFAULT_TASKS_LIMIT,
    BackupConfig,
    BackupTarget,
    Destination,
    DestinationKind,
    load_config,
    save_config,
)
from worldbackup.core.exclusion import LOCK_FILE_SUFFIX, ExclusionSet, is_excluded, is_lock_file
from worldbackup.core.log import setup_logging
from worldbackup.core.streams import COPY_BUFFER_SIZE, copy_stream, open_source_file
from worldbackup.core.types import (
    BackupError,
    CancelledException,
    ConfigError,
    FatalTransferError,
    IntegrityError,
    ItemResult,
    ItemStatus,
    ProtocolError,
    RunSummary,
    ServerError,
    SynchronizationError,
    UnexpectedStatusError,
)
from worldbackup.core.walker import TreeWalker, WalkEntry

__all__ = [
    # Config
    "BackupConfig",
    "BackupTarget",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_INTERVAL_SECONDS",
    "DEFAULT_TASKS_LIMIT",
    "Destination",
    "DestinationKind",
    "load_config",
    "save_config",
    # Exclusion
    "ExclusionSet",
    "LOCK_FILE_SUFFIX",
    "is_excluded",
    "is_lock_file",
    # Logging
    "setup_logging",
    # Streams
    "COPY_BUFFER_SIZE",
    "copy_stream",
    "open_source_file",
    # Types
    "BackupError",
    "CancelledException",
    "ConfigError",
    "FatalTransferError",
    "IntegrityError",
    "ItemResult",
    "ItemStatus",
    "ProtocolError",
    "RunSummary",
    "ServerError",
    "SynchronizationError",
    "UnexpectedStatusError",
    # Walker
    "TreeWalker",
    "WalkEntry",
]
