"""Cache keys and cached reads for tasks."""

from __future__ import annotations

from typing import Any

from .api import TaskApiClient
from .cache import QueryCache, QueryKey
from .filters import FilterCriteria

TASKS: QueryKey = ("tasks",)
TASK_LISTS: QueryKey = TASKS + ("list",)
TASK_DETAILS: QueryKey = TASKS + ("detail",)


def list_key(filters: FilterCriteria) -> QueryKey:
    return TASK_LISTS + (filters.cache_key(),)


def detail_key(task_id: str) -> QueryKey:
    return TASK_DETAILS + (task_id,)


class TaskQueries:
    """Read-through access to tasks, backed by a ``QueryCache``."""

    def __init__(self, api: TaskApiClient, cache: QueryCache):
        self.api = api
        self.cache = cache

    async def list_tasks(self, filters: FilterCriteria | None = None) -> dict[str, Any]:
        filters = filters or FilterCriteria()
        return await self.cache.fetch_query(list_key(filters), lambda: self.api.list_tasks(filters))

    async def get_task(self, task_id: str) -> dict[str, Any]:
        return await self.cache.fetch_query(detail_key(task_id), lambda: self.api.get_task(task_id))
