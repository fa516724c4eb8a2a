"""Work handed to the single authoritative thread.

Components:
- **AuthorityLoop**: the single consumer owning the shared state
- **SyncBridge**: run a task on it and wait
- **BatchedTaskQueue**: heavy tasks at once, light tasks in batches
"""

from worldbackup.authority.bridge import AuthorityLoop, CallState, Lane, PendingCall, SyncBridge
from worldbackup.authority.tasks import BatchedTaskQueue, CallableTask, SyncTask, TaskQueueStats

__all__ = [
    "AuthorityLoop",
    "BatchedTaskQueue",
    "CallState",
    "CallableTask",
    "Lane",
    "PendingCall",
    "SyncBridge",
    "SyncTask",
    "TaskQueueStats",
]
