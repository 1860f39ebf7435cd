"""Domain layer definitions."""

from .sync import FailedWrite, PendingWrite, TimerHandle

__all__ = [
    "FailedWrite",
    "PendingWrite",
    "TimerHandle",
]
