"""Task mutations with optimistic cache updates.

Each mutation runs the same sequence against the ``QueryCache``:

1. cancel in-flight fetches for the affected keys
2. snapshot those entries
3. write the expected result into every affected entry
4. call the API
5. on success write the server's data (or purge deleted details);
   on failure restore the snapshot, notify and re-raise
6. invalidate the affected keys either way

Rollback only touches entries whose latest write is the mutation's own
optimistic write, so a newer result that landed meanwhile is kept.
"""

from __future__ import annotations

import asyncio
import enum
import logging
import math
from collections.abc import Awaitable, Callable, Iterable
from datetime import datetime, timezone
from typing import Any, TypeVar

from ..models.task import TaskStatus
from .api import TaskApiClient
from .cache import QueryCache, QueryKey
from .queries import TASK_LISTS, detail_key

log = logging.getLogger(__name__)

T = TypeVar("T")
Notify = Callable[[str, str, str], None]
ListUpdater = Callable[[Any], Any]

COMPLETED = TaskStatus.COMPLETED.value


def log_notify(title: str, description: str, variant: str = "default") -> None:
    if variant == "destructive":
        log.warning("%s: %s", title, description)
    else:
        log.info("%s: %s", title, description)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _plain(changes: dict[str, Any]) -> dict[str, Any]:
    return {key: value.value if isinstance(value, enum.Enum) else value for key, value in changes.items()}


def apply_changes(task: dict[str, Any], changes: dict[str, Any], now: str) -> dict[str, Any]:
    """Return ``task`` with ``changes`` merged the way the server will merge them."""
    updated = {**task, **changes, "updatedAt": now}
    if "status" in changes:
        if changes["status"] == COMPLETED:
            if task.get("status") != COMPLETED or not task.get("completedAt"):
                updated["completedAt"] = now
        else:
            updated["completedAt"] = None
    return updated


def _tasks_of(page: Any) -> list | None:
    if not isinstance(page, dict):
        return None
    tasks = page.get("tasks")
    return tasks if isinstance(tasks, list) else None


def replace_in_lists(ids: Iterable[str], fn: Callable[[dict], dict]) -> ListUpdater:
    id_set = set(ids)

    def updater(page: Any) -> Any:
        tasks = _tasks_of(page)
        if tasks is None or not any(t.get("id") in id_set for t in tasks):
            return page
        return {**page, "tasks": [fn(t) if t.get("id") in id_set else t for t in tasks]}

    return updater


def remove_from_lists(ids: Iterable[str]) -> ListUpdater:
    id_set = set(ids)

    def updater(page: Any) -> Any:
        tasks = _tasks_of(page)
        if tasks is None:
            return page
        kept = [t for t in tasks if t.get("id") not in id_set]
        removed = len(tasks) - len(kept)
        if not removed:
            return page
        pagination = dict(page.get("pagination") or {})
        if isinstance(pagination.get("total"), int):
            pagination["total"] = max(0, pagination["total"] - removed)
            if pagination.get("limit"):
                pagination["totalPages"] = math.ceil(pagination["total"] / pagination["limit"])
        return {**page, "tasks": kept, "pagination": pagination}

    return updater


class TaskMutations:
    def __init__(self, api: TaskApiClient, cache: QueryCache, notify: Notify | None = None):
        self.api = api
        self.cache = cache
        self.notify = notify or log_notify
        self._refetches: list[asyncio.Task] = []

    async def settled(self) -> None:
        """Wait for refetches started by finished mutations."""
        pending, self._refetches = self._refetches, []
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _mutate(
        self,
        *,
        affected: list[QueryKey],
        optimistic: Callable[[], dict[QueryKey, int]],
        call: Callable[[], Awaitable[T]],
        on_success: Callable[[T], None],
        success: tuple[str, Callable[[T], str]],
        failure_title: str,
    ) -> T:
        for prefix in affected:
            await self.cache.cancel_queries(prefix)
        snap = self.cache.snapshot(affected)
        written = optimistic()
        try:
            result = await call()
        except asyncio.CancelledError:
            self.cache.restore(snap, written)
            raise
        except Exception as exc:
            self.cache.restore(snap, written)
            self.notify(failure_title, str(exc), "destructive")
            raise
        else:
            on_success(result)
            title, describe = success
            self.notify(title, describe(result), "default")
            return result
        finally:
            for prefix in affected:
                for task in self.cache.invalidate_queries(prefix):
                    self._track(task)

    def _track(self, task: asyncio.Task) -> None:
        if task in self._refetches:
            return
        self._refetches.append(task)
        task.add_done_callback(self._forget)

    def _forget(self, task: asyncio.Task) -> None:
        if task in self._refetches:
            self._refetches.remove(task)

    # ------------------------------------------------------------------
    # Single task
    # ------------------------------------------------------------------

    async def create_task(self, data: dict[str, Any]) -> dict[str, Any]:
        def on_success(task: dict[str, Any]) -> None:
            self.cache.set_query_data(detail_key(task["id"]), task)

        return await self._mutate(
            affected=[TASK_LISTS],
            optimistic=dict,
            call=lambda: self.api.create_task(_plain(data)),
            on_success=on_success,
            success=("Task created", lambda t: f'"{t["title"]}" has been created successfully.'),
            failure_title="Failed to create task",
        )

    async def update_task(
        self,
        task_id: str,
        data: dict[str, Any],
        *,
        failure_title: str = "Failed to update task",
    ) -> dict[str, Any]:
        changes = _plain(data)
        key = detail_key(task_id)

        def optimistic() -> dict[QueryKey, int]:
            now = _now_iso()
            written = {}
            if self.cache.get_query_data(key) is not None:
                written[key] = self.cache.set_query_data(key, lambda old: apply_changes(old, changes, now))
            written.update(self.cache.set_queries_data(
                TASK_LISTS, replace_in_lists([task_id], lambda t: apply_changes(t, changes, now)),
            ))
            return written

        def on_success(task: dict[str, Any]) -> None:
            self.cache.set_query_data(detail_key(task["id"]), task)
            self.cache.set_queries_data(TASK_LISTS, replace_in_lists([task["id"]], lambda _: task))

        return await self._mutate(
            affected=[key, TASK_LISTS],
            optimistic=optimistic,
            call=lambda: self.api.update_task(task_id, changes),
            on_success=on_success,
            success=("Task updated", lambda t: f'"{t["title"]}" has been updated successfully.'),
            failure_title=failure_title,
        )

    async def update_task_status(self, task_id: str, status: TaskStatus | str) -> dict[str, Any]:
        return await self.update_task(
            task_id, {"status": status}, failure_title="Failed to update task status",
        )

    async def delete_task(self, task_id: str) -> dict[str, Any]:
        def optimistic() -> dict[QueryKey, int]:
            return self.cache.set_queries_data(TASK_LISTS, remove_from_lists([task_id]))

        def on_success(result: dict[str, Any]) -> None:
            self.cache.remove_queries(detail_key(result.get("id", task_id)))

        return await self._mutate(
            affected=[TASK_LISTS],
            optimistic=optimistic,
            call=lambda: self.api.delete_task(task_id),
            on_success=on_success,
            success=("Task deleted", lambda _: "The task has been deleted successfully."),
            failure_title="Failed to delete task",
        )

    # ------------------------------------------------------------------
    # Bulk
    # ------------------------------------------------------------------

    async def bulk_update_tasks(self, ids: list[str], data: dict[str, Any]) -> list[dict[str, Any]]:
        changes = _plain(data)
        keys = [detail_key(task_id) for task_id in ids]

        def optimistic() -> dict[QueryKey, int]:
            now = _now_iso()
            written = {}
            for key in keys:
                if self.cache.get_query_data(key) is not None:
                    written[key] = self.cache.set_query_data(key, lambda old: apply_changes(old, changes, now))
            written.update(self.cache.set_queries_data(
                TASK_LISTS, replace_in_lists(ids, lambda t: apply_changes(t, changes, now)),
            ))
            return written

        def on_success(tasks: list[dict[str, Any]]) -> None:
            by_id = {t["id"]: t for t in tasks}
            for task in tasks:
                self.cache.set_query_data(detail_key(task["id"]), task)
            self.cache.set_queries_data(TASK_LISTS, replace_in_lists(by_id, lambda t: by_id[t["id"]]))

        return await self._mutate(
            affected=[*keys, TASK_LISTS],
            optimistic=optimistic,
            call=lambda: self.api.bulk_update_tasks(ids, changes),
            on_success=on_success,
            success=("Tasks updated", lambda ts: f"{len(ts)} tasks have been updated successfully."),
            failure_title="Failed to update tasks",
        )

    async def bulk_delete_tasks(self, ids: list[str]) -> dict[str, Any]:
        def optimistic() -> dict[QueryKey, int]:
            return self.cache.set_queries_data(TASK_LISTS, remove_from_lists(ids))

        def on_success(result: dict[str, Any]) -> None:
            for task_id in result.get("deletedIds", ids):
                self.cache.remove_queries(detail_key(task_id))

        return await self._mutate(
            affected=[TASK_LISTS],
            optimistic=optimistic,
            call=lambda: self.api.bulk_delete_tasks(ids),
            on_success=on_success,
            success=(
                "Tasks deleted",
                lambda r: f"{len(r.get('deletedIds', ids))} tasks have been deleted successfully.",
            ),
            failure_title="Failed to delete tasks",
        )
