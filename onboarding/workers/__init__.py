"""Background workers."""

from .scheduler import AsyncioScheduler, ManualScheduler, Scheduler
from .sync import SyncWorker

__all__ = [
    "AsyncioScheduler",
    "ManualScheduler",
    "Scheduler",
    "SyncWorker",
]
