"""Remote persistence for customer records.

The cache in :mod:`onboarding.application.customers` is the working copy;
the store behind this contract holds the durable copy. Patches are plain
JSON-ready dictionaries keyed by customer id.
"""
from __future__ import annotations

import copy
import logging
from typing import Any, Protocol
from urllib.parse import urlparse

import httpx

logger = logging.getLogger(__name__)


class RemoteStoreError(RuntimeError):
    """Raised when the remote store cannot be reached or rejects a call."""


class RemoteStore(Protocol):
    """Contract for remote customer persistence."""

    async def read(self, entity_id: str) -> dict[str, Any] | None: ...

    async def read_all(self) -> list[dict[str, Any]]: ...

    async def write(self, entity_id: str, patch: dict[str, Any]) -> bool: ...

    async def delete(self, entity_id: str) -> bool: ...

    async def close(self) -> None: ...


class InMemoryRemoteStore:
    """Process-local store for development and tests."""

    def __init__(self, records: dict[str, dict[str, Any]] | None = None) -> None:
        self._records: dict[str, dict[str, Any]] = copy.deepcopy(records) if records else {}
        self.writes: list[tuple[str, dict[str, Any]]] = []
        self.deletes: list[str] = []

    @property
    def write_count(self) -> int:
        return len(self.writes)

    async def read(self, entity_id: str) -> dict[str, Any] | None:
        record = self._records.get(entity_id)
        return copy.deepcopy(record) if record is not None else None

    async def read_all(self) -> list[dict[str, Any]]:
        return [copy.deepcopy(record) for record in self._records.values()]

    async def write(self, entity_id: str, patch: dict[str, Any]) -> bool:
        self.writes.append((entity_id, copy.deepcopy(patch)))
        record = self._records.setdefault(entity_id, {"id": entity_id})
        record.update(copy.deepcopy(patch))
        return True

    async def delete(self, entity_id: str) -> bool:
        self.deletes.append(entity_id)
        return self._records.pop(entity_id, None) is not None

    async def close(self) -> None:
        return None

    def reset(self) -> None:
        self._records.clear()
        self.writes.clear()
        self.deletes.clear()


class HttpRemoteStore:
    """Client for the customer records HTTP API."""

    def __init__(
        self,
        base_url: str,
        *,
        api_key: str | None = None,
        timeout: float = 10.0,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        parsed = urlparse(base_url)
        if not parsed.scheme or not parsed.netloc:
            raise ValueError("base_url must include scheme and host")

        self._base_url = base_url.rstrip("/")
        headers = {"Content-Type": "application/json"}
        if api_key:
            headers["Authorization"] = f"Bearer {api_key}"
        self._headers = headers
        self._client = http_client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = http_client is None

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------
    def _url(self, entity_id: str | None = None) -> str:
        if entity_id is None:
            return f"{self._base_url}/customers"
        return f"{self._base_url}/customers/{entity_id}"

    async def _request(self, method: str, url: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, url, headers=self._headers, **kwargs)
        except httpx.HTTPError as exc:
            raise RemoteStoreError(f"{method} {url} failed: {exc}") from exc
        return response

    @staticmethod
    def _error_message(response: httpx.Response) -> str:
        try:
            body = response.json()
        except ValueError:
            return response.text or response.reason_phrase
        if isinstance(body, dict):
            return str(body.get("error") or body.get("detail") or body)
        return str(body)

    @staticmethod
    def _unwrap(body: Any) -> Any:
        if isinstance(body, dict) and "data" in body and len(body) == 1:
            return body["data"]
        return body

    # ------------------------------------------------------------------
    # RemoteStore
    # ------------------------------------------------------------------
    async def read(self, entity_id: str) -> dict[str, Any] | None:
        response = await self._request("GET", self._url(entity_id))
        if response.status_code == 404:
            return None
        if response.is_error:
            raise RemoteStoreError(f"read {entity_id}: {self._error_message(response)}")
        return self._unwrap(response.json())

    async def read_all(self) -> list[dict[str, Any]]:
        response = await self._request("GET", self._url())
        if response.is_error:
            raise RemoteStoreError(f"list customers: {self._error_message(response)}")
        body = self._unwrap(response.json())
        if isinstance(body, dict):
            body = body.get("items", [])
        return list(body or [])

    async def write(self, entity_id: str, patch: dict[str, Any]) -> bool:
        response = await self._request("PATCH", self._url(entity_id), json=patch)
        if response.is_error:
            raise RemoteStoreError(f"write {entity_id}: {self._error_message(response)}")
        return True

    async def delete(self, entity_id: str) -> bool:
        response = await self._request("DELETE", self._url(entity_id))
        if response.status_code == 404:
            return False
        if response.is_error:
            raise RemoteStoreError(f"delete {entity_id}: {self._error_message(response)}")
        return True

    async def close(self) -> None:
        if self._owns_client:
            await self._client.aclose()


def build_remote_store(
    remote_url: str | None,
    *,
    api_key: str | None = None,
    timeout: float = 10.0,
) -> RemoteStore:
    """Pick the HTTP store when a URL is configured, else the in-memory one."""

    if remote_url:
        return HttpRemoteStore(remote_url, api_key=api_key, timeout=timeout)
    logger.warning("ONBOARDING_REMOTE_URL not set; customer records are kept in memory only")
    return InMemoryRemoteStore()
