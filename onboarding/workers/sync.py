from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone
from functools import partial
from typing import Any

from onboarding.domain import FailedWrite, PendingWrite
from onboarding.infrastructure import RemoteStore, RemoteStoreError
from onboarding.workers.scheduler import AsyncioScheduler, Scheduler

logger = logging.getLogger(__name__)


class SyncWorker:
    """Debounced, coalescing write-behind queue in front of a remote store.

    At most one pending timer exists per entity. A new patch for an entity
    with a pending timer cancels that timer and folds both patches into one,
    so the remote store receives the cumulative change once.
    """

    def __init__(
        self,
        remote: RemoteStore,
        scheduler: Scheduler | None = None,
        *,
        max_attempts: int = 3,
    ) -> None:
        self._remote = remote
        self._scheduler = scheduler or AsyncioScheduler()
        self._max_attempts = max(1, max_attempts)
        self._pending: dict[str, PendingWrite] = {}
        self._failed: dict[str, FailedWrite] = {}
        self._in_flight: set[asyncio.Task] = set()

    # ------------------------------------------------------------------
    # scheduling
    # ------------------------------------------------------------------
    def schedule(self, entity_id: str, patch: dict[str, Any], debounce_ms: int = 0) -> None:
        merged: dict[str, Any] = {}
        pending = self._pending.pop(entity_id, None)
        if pending is not None:
            if pending.handle is not None:
                pending.handle.cancel()
            merged.update(pending.patch)
        merged.update(patch)

        if debounce_ms > 0 and not self._scheduler.is_ready():
            logger.debug("No timer source for customer %s; writing without debounce", entity_id)
            debounce_ms = 0
        if debounce_ms <= 0:
            self._submit(entity_id, merged)
            return

        handle = self._scheduler.call_later(debounce_ms / 1000, partial(self._fire, entity_id))
        self._pending[entity_id] = PendingWrite(
            entity_id=entity_id, patch=merged, handle=handle, debounce_ms=debounce_ms
        )

    def cancel(self, entity_id: str) -> dict[str, Any] | None:
        """Drop the pending write for ``entity_id`` and return its patch."""

        pending = self.take(entity_id)
        return pending.patch if pending is not None else None

    def take(self, entity_id: str) -> PendingWrite | None:
        """Remove the pending write for ``entity_id`` without sending it."""

        pending = self._pending.pop(entity_id, None)
        if pending is not None and pending.handle is not None:
            pending.handle.cancel()
        return pending

    def restore(self, pending: PendingWrite) -> None:
        self.schedule(pending.entity_id, pending.patch, pending.debounce_ms)

    def discard(self, entity_id: str) -> None:
        self.cancel(entity_id)
        self._failed.pop(entity_id, None)

    def has_pending(self, entity_id: str) -> bool:
        return entity_id in self._pending

    def pending_ids(self) -> list[str]:
        return list(self._pending)

    def pending_patch(self, entity_id: str) -> dict[str, Any] | None:
        pending = self._pending.get(entity_id)
        return dict(pending.patch) if pending else None

    @property
    def failed_writes(self) -> dict[str, FailedWrite]:
        return dict(self._failed)

    @property
    def in_flight(self) -> int:
        return len(self._in_flight)

    # ------------------------------------------------------------------
    # dispatch
    # ------------------------------------------------------------------
    def _fire(self, entity_id: str) -> None:
        pending = self._pending.pop(entity_id, None)
        if pending is not None:
            self._submit(entity_id, pending.patch)

    def _submit(self, entity_id: str, patch: dict[str, Any], attempts: int = 0) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            # No event loop (scripts, sync callers): complete the write inline.
            asyncio.run(self._write(entity_id, patch, attempts))
            return
        task = loop.create_task(self._write(entity_id, patch, attempts))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _write(self, entity_id: str, patch: dict[str, Any], attempts: int = 0) -> bool:
        error: str | None = None
        try:
            ok = await self._remote.write(entity_id, patch)
        except RemoteStoreError as exc:
            ok = False
            error = str(exc)
        except Exception as exc:
            logger.exception("Unexpected error writing customer %s", entity_id)
            ok = False
            error = repr(exc)
        if ok:
            self._clear_superseded(entity_id, patch)
            return True

        logger.error("Remote write for customer %s failed: %s", entity_id, error or "rejected")
        self._record_failure(entity_id, patch, attempts + 1, error)
        return False

    def _record_failure(self, entity_id: str, patch: dict[str, Any], attempts: int, error: str | None) -> None:
        existing = self._failed.get(entity_id)
        merged = dict(existing.patch) if existing else {}
        merged.update(patch)
        self._failed[entity_id] = FailedWrite(
            entity_id=entity_id,
            patch=merged,
            attempts=max(attempts, existing.attempts if existing else 0),
            last_error=error,
            failed_at=datetime.now(timezone.utc),
        )

    def _clear_superseded(self, entity_id: str, patch: dict[str, Any]) -> None:
        failed = self._failed.get(entity_id)
        if failed is None:
            return
        remaining = {key: value for key, value in failed.patch.items() if key not in patch}
        if remaining:
            failed.patch = remaining
        else:
            del self._failed[entity_id]

    # ------------------------------------------------------------------
    # lifecycle helpers
    # ------------------------------------------------------------------
    async def drain(self) -> None:
        """Wait for every write already handed to the remote store."""

        while self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    async def flush(self) -> None:
        """Send every pending write now instead of waiting for its timer."""

        for entity_id in list(self._pending):
            self._fire(entity_id)
        await self.drain()

    async def retry_failed(self) -> int:
        """Replay the outbox once; returns how many entities were written."""

        written = 0
        for entity_id, failed in list(self._failed.items()):
            del self._failed[entity_id]
            if await self._write(entity_id, failed.patch, failed.attempts):
                written += 1
                continue
            retry = self._failed.get(entity_id)
            if retry is not None and retry.attempts >= self._max_attempts:
                logger.error(
                    "Giving up on customer %s after %d attempts; fields lost: %s",
                    entity_id,
                    retry.attempts,
                    ", ".join(sorted(retry.patch)),
                )
                del self._failed[entity_id]
        return written
