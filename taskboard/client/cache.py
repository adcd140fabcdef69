"""Client-side query cache.

Entries are keyed by tuples such as ``("tasks", "list", <filters>)`` and are
addressed either exactly or by key prefix. Every write bumps a cache-wide
version counter; mutations use those versions to undo only their own
optimistic writes.
"""

from __future__ import annotations

import asyncio
import copy
import itertools
import logging
import time
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from typing import Any

log = logging.getLogger(__name__)

QueryKey = tuple
Fetcher = Callable[[], Awaitable[Any]]

DEFAULT_STALE_TIME = 5 * 60.0


@dataclass
class CacheEntry:
    data: Any = None
    version: int = 0
    fetched_at: float | None = None
    stale: bool = True
    fetcher: Fetcher | None = None
    task: asyncio.Task | None = None


@dataclass
class Snapshot:
    """Cache contents captured before an optimistic write."""

    entries: dict[QueryKey, tuple[Any, int]] = field(default_factory=dict)


def key_matches(key: QueryKey, prefix: QueryKey) -> bool:
    return key[: len(prefix)] == prefix


class QueryCache:
    def __init__(self, *, stale_time: float = DEFAULT_STALE_TIME):
        self.stale_time = stale_time
        self._entries: dict[QueryKey, CacheEntry] = {}
        self._versions = itertools.count(1)

    def __contains__(self, key: QueryKey) -> bool:
        return key in self._entries

    def _matching(self, prefix: QueryKey) -> list[tuple[QueryKey, CacheEntry]]:
        return [(key, entry) for key, entry in self._entries.items() if key_matches(key, prefix)]

    def _write(self, entry: CacheEntry, data: Any) -> int:
        entry.data = data
        entry.version = next(self._versions)
        return entry.version

    # ------------------------------------------------------------------
    # Reads and writes
    # ------------------------------------------------------------------

    def get_query_data(self, key: QueryKey) -> Any:
        entry = self._entries.get(key)
        return entry.data if entry else None

    def get_version(self, key: QueryKey) -> int | None:
        entry = self._entries.get(key)
        return entry.version if entry else None

    def set_query_data(self, key: QueryKey, data: Any | Callable[[Any], Any]) -> int:
        """Write ``data`` (or ``data(old)`` when callable) and return the new version."""
        entry = self._entries.setdefault(key, CacheEntry())
        value = data(entry.data) if callable(data) else data
        return self._write(entry, value)

    def get_queries_data(self, prefix: QueryKey) -> list[tuple[QueryKey, Any]]:
        return [(key, entry.data) for key, entry in self._matching(prefix)]

    def set_queries_data(self, prefix: QueryKey, updater: Callable[[Any], Any]) -> dict[QueryKey, int]:
        """Apply ``updater`` to every populated entry under ``prefix``.

        Entries the updater returns unchanged (same object) are not rewritten.
        Returns the versions written, by key.
        """
        written: dict[QueryKey, int] = {}
        for key, entry in self._matching(prefix):
            if entry.data is None:
                continue
            new_data = updater(entry.data)
            if new_data is entry.data:
                continue
            written[key] = self._write(entry, new_data)
        return written

    def remove_queries(self, prefix: QueryKey) -> None:
        for key, entry in self._matching(prefix):
            if entry.task and not entry.task.done():
                entry.task.cancel()
            del self._entries[key]

    # ------------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------------

    def is_fresh(self, entry: CacheEntry, stale_time: float | None = None) -> bool:
        if entry.stale or entry.fetched_at is None:
            return False
        limit = self.stale_time if stale_time is None else stale_time
        return time.monotonic() - entry.fetched_at < limit

    async def fetch_query(self, key: QueryKey, fetcher: Fetcher, *, stale_time: float | None = None) -> Any:
        """Return cached data while fresh, otherwise fetch (sharing any in-flight fetch)."""
        entry = self._entries.setdefault(key, CacheEntry())
        entry.fetcher = fetcher
        if entry.data is not None and self.is_fresh(entry, stale_time):
            return entry.data
        if entry.task is None or entry.task.done():
            entry.task = asyncio.ensure_future(self._run_fetch(key, entry, fetcher))
        task = entry.task
        await asyncio.wait({task})
        if task.cancelled():
            # A mutation cancelled the fetch; hand back what the cache holds now.
            return self.get_query_data(key)
        return task.result()

    async def _run_fetch(self, key: QueryKey, entry: CacheEntry, fetcher: Fetcher) -> Any:
        data = await fetcher()
        if self._entries.get(key) is entry:
            self._write(entry, data)
            entry.fetched_at = time.monotonic()
            entry.stale = False
        return data

    async def cancel_queries(self, prefix: QueryKey) -> None:
        """Cancel in-flight fetches under ``prefix`` so they cannot overwrite later writes."""
        tasks = []
        for _, entry in self._matching(prefix):
            if entry.task and not entry.task.done():
                entry.task.cancel()
                tasks.append(entry.task)
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def invalidate_queries(self, prefix: QueryKey, *, refetch: bool = True) -> list[asyncio.Task]:
        """Mark entries stale and refetch the ones that know how to."""
        tasks = []
        for key, entry in self._matching(prefix):
            entry.stale = True
            if not refetch or entry.fetcher is None:
                continue
            if entry.task is None or entry.task.done():
                entry.task = asyncio.ensure_future(self._run_fetch(key, entry, entry.fetcher))
                entry.task.add_done_callback(_log_refetch_failure)
            tasks.append(entry.task)
        return tasks

    # ------------------------------------------------------------------
    # Snapshots
    # ------------------------------------------------------------------

    def snapshot(self, prefixes: Iterable[QueryKey]) -> Snapshot:
        snap = Snapshot()
        for prefix in prefixes:
            for key, entry in self._matching(prefix):
                snap.entries[key] = (copy.deepcopy(entry.data), entry.version)
        return snap

    def restore(self, snap: Snapshot, written: dict[QueryKey, int]) -> list[QueryKey]:
        """Put back snapshotted data for keys whose latest write is still ours.

        A key rewritten since (by another mutation or a fetch) keeps its newer
        data. Returns the keys restored.
        """
        restored = []
        for key, version in written.items():
            entry = self._entries.get(key)
            if entry is None or key not in snap.entries:
                continue
            if entry.version != version:
                log.debug("Skipping rollback of %r: entry changed since optimistic write", key)
                continue
            self._write(entry, snap.entries[key][0])
            restored.append(key)
        return restored


def _log_refetch_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    exc = task.exception()
    if exc is not None:
        log.warning("Background refetch failed: %s", exc)
