"""Data purges run through the batched task queue."""

from worldbackup.purge.activity import ActivityList
from worldbackup.purge.purges import DataPurge, DatFilePurge, RecordPurge
from worldbackup.purge.runner import PurgeResult, PurgeRunner

__all__ = [
    "ActivityList",
    "DataPurge",
    "DatFilePurge",
    "PurgeResult",
    "PurgeRunner",
    "RecordPurge",
]
