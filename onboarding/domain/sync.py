"""Domain entities for write-behind synchronisation."""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


@dataclass(slots=True)
class PendingWrite:
    """A coalesced patch waiting for its debounce timer to fire."""

    entity_id: str
    patch: dict[str, Any]
    handle: TimerHandle | None = None
    debounce_ms: int = 0


@dataclass(slots=True)
class FailedWrite:
    """A patch the remote store rejected, kept for a later retry."""

    entity_id: str
    patch: dict[str, Any] = field(default_factory=dict)
    attempts: int = 0
    last_error: str | None = None
    failed_at: datetime | None = None
