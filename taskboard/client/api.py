"""Task API client - typed wrapper around the taskboard REST endpoints.

Usage:
    async with TaskApiClient("http://localhost:8000") as api:
        page = await api.list_tasks(FilterCriteria(statuses={"PENDING"}))
        task = await api.create_task({"title": "Write report"})

Responses are returned as the decoded JSON (camelCase keys). Any non-2xx
response or transport failure raises ``TaskApiError``.
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urlsplit

import httpx

from .filters import FilterCriteria

log = logging.getLogger(__name__)


class TaskApiError(Exception):
    """Raised for error responses and network failures."""

    def __init__(self, message: str, status_code: int | None = None, details: Any = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.details = details


def _origin(base_url: str) -> str | None:
    parts = urlsplit(base_url)
    if not parts.scheme or not parts.netloc:
        return None
    return f"{parts.scheme}://{parts.netloc}"


class TaskApiClient:
    """Async client for the task REST API.

    The client sends an ``Origin`` header matching ``base_url`` so state-changing
    requests pass the server's same-origin check.
    """

    def __init__(
        self,
        base_url: str = "http://localhost:8000",
        *,
        transport: httpx.AsyncBaseTransport | None = None,
        headers: dict[str, str] | None = None,
        timeout: float = 10.0,
    ):
        self.base_url = base_url.rstrip("/")
        self._transport = transport
        self._timeout = timeout
        self._headers = {"Accept": "application/json"}
        origin = _origin(self.base_url)
        if origin:
            self._headers["Origin"] = origin
        self._headers.update(headers or {})
        self._client: httpx.AsyncClient | None = None

    async def __aenter__(self) -> "TaskApiClient":
        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=self._headers,
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None

    def _require_http_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("Client not initialized. Use 'async with' context.")
        return self._client

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: list[tuple[str, str]] | None = None,
        json: Any = None,
    ) -> Any:
        client = self._require_http_client()
        try:
            resp = await client.request(method, path, params=params, json=json)
        except httpx.HTTPError as exc:
            log.warning("%s %s failed: %s", method, path, exc)
            raise TaskApiError("Network error occurred") from exc

        try:
            data = resp.json()
        except ValueError:
            data = None

        if resp.is_error:
            message = None
            details = None
            if isinstance(data, dict):
                message = data.get("message") or data.get("error")
                details = data.get("details")
            raise TaskApiError(
                message or f"HTTP {resp.status_code}: {resp.reason_phrase}",
                status_code=resp.status_code,
                details=details,
            )
        return data

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    async def list_tasks(self, filters: FilterCriteria | None = None) -> dict[str, Any]:
        filters = filters or FilterCriteria()
        return await self._request("GET", "/tasks", params=filters.to_params())

    async def get_task(self, task_id: str) -> dict[str, Any]:
        return await self._request("GET", f"/tasks/{task_id}")

    async def create_task(self, data: dict[str, Any]) -> dict[str, Any]:
        return await self._request("POST", "/tasks", json=data)

    async def update_task(self, task_id: str, data: dict[str, Any]) -> dict[str, Any]:
        return await self._request("PATCH", f"/tasks/{task_id}", json=data)

    async def delete_task(self, task_id: str) -> dict[str, Any]:
        return await self._request("DELETE", f"/tasks/{task_id}")

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def bulk_update_tasks(self, ids: list[str], data: dict[str, Any]) -> list[dict[str, Any]]:
        return await self._request("PATCH", "/tasks/bulk", json={"ids": list(ids), "data": data})

    async def bulk_delete_tasks(self, ids: list[str]) -> dict[str, Any]:
        return await self._request("DELETE", "/tasks/bulk", json={"ids": list(ids)})

    # ------------------------------------------------------------------
    # Convenience
    # ------------------------------------------------------------------

    async def update_task_status(self, task_id: str, status: str) -> dict[str, Any]:
        return await self.update_task(task_id, {"status": status})

    async def search_tasks(self, query: str, filters: FilterCriteria | None = None) -> dict[str, Any]:
        filters = (filters or FilterCriteria()).with_changes(search=query)
        return await self.list_tasks(filters)
