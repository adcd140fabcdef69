"""Test the client query cache."""

from __future__ import annotations

import asyncio

import pytest

from taskboard.client.cache import QueryCache

LIST_A = ("tasks", "list", "a")
LIST_B = ("tasks", "list", "b")
DETAIL = ("tasks", "detail", "c1")


class CountingFetcher:
    def __init__(self, value):
        self.value = value
        self.calls = 0
        self.release = asyncio.Event()
        self.release.set()

    async def __call__(self):
        self.calls += 1
        await self.release.wait()
        return self.value


@pytest.mark.asyncio
async def test_fetch_query_caches_fresh_data():
    cache = QueryCache()
    fetcher = CountingFetcher({"tasks": []})

    assert await cache.fetch_query(LIST_A, fetcher) == {"tasks": []}
    assert await cache.fetch_query(LIST_A, fetcher) == {"tasks": []}
    assert fetcher.calls == 1


@pytest.mark.asyncio
async def test_fetch_query_refetches_when_stale():
    cache = QueryCache(stale_time=0)
    fetcher = CountingFetcher("v")
    await cache.fetch_query(LIST_A, fetcher)
    await cache.fetch_query(LIST_A, fetcher)
    assert fetcher.calls == 2


@pytest.mark.asyncio
async def test_concurrent_fetches_share_one_request():
    cache = QueryCache()
    fetcher = CountingFetcher("shared")
    fetcher.release.clear()

    first = asyncio.ensure_future(cache.fetch_query(LIST_A, fetcher))
    second = asyncio.ensure_future(cache.fetch_query(LIST_A, fetcher))
    await asyncio.sleep(0)
    fetcher.release.set()

    assert await asyncio.gather(first, second) == ["shared", "shared"]
    assert fetcher.calls == 1


@pytest.mark.asyncio
async def test_cancelled_fetch_does_not_overwrite_data():
    cache = QueryCache()
    fetcher = CountingFetcher("from server")
    fetcher.release.clear()

    pending = asyncio.ensure_future(cache.fetch_query(LIST_A, fetcher))
    await asyncio.sleep(0)
    await cache.cancel_queries(("tasks",))
    cache.set_query_data(LIST_A, "optimistic")
    fetcher.release.set()

    assert await pending in (None, "optimistic")
    assert fetcher.calls <= 1
    assert cache.get_query_data(LIST_A) == "optimistic"


def test_set_queries_data_by_prefix():
    cache = QueryCache()
    cache.set_query_data(LIST_A, {"n": 1})
    cache.set_query_data(LIST_B, {"n": 2})
    cache.set_query_data(DETAIL, {"n": 3})

    written = cache.set_queries_data(("tasks", "list"), lambda page: {"n": page["n"] * 10})
    assert set(written) == {LIST_A, LIST_B}
    assert cache.get_query_data(LIST_A) == {"n": 10}
    assert cache.get_query_data(DETAIL) == {"n": 3}


def test_get_queries_data_by_prefix():
    cache = QueryCache()
    cache.set_query_data(LIST_A, "a")
    cache.set_query_data(DETAIL, "d")
    assert cache.get_queries_data(("tasks", "list")) == [(LIST_A, "a")]
    assert len(cache.get_queries_data(("tasks",))) == 2


def test_set_queries_data_skips_unchanged_entries():
    cache = QueryCache()
    cache.set_query_data(LIST_A, {"n": 1})
    version = cache.get_version(LIST_A)
    assert cache.set_queries_data(("tasks",), lambda page: page) == {}
    assert cache.get_version(LIST_A) == version


def test_restore_undoes_own_write():
    cache = QueryCache()
    cache.set_query_data(LIST_A, {"status": "PENDING"})
    snap = cache.snapshot([LIST_A])
    written = {LIST_A: cache.set_query_data(LIST_A, {"status": "COMPLETED"})}

    assert cache.restore(snap, written) == [LIST_A]
    assert cache.get_query_data(LIST_A) == {"status": "PENDING"}


def test_restore_keeps_newer_write():
    cache = QueryCache()
    cache.set_query_data(LIST_A, {"status": "PENDING"})
    snap = cache.snapshot([LIST_A])
    written = {LIST_A: cache.set_query_data(LIST_A, {"status": "COMPLETED"})}
    cache.set_query_data(LIST_A, {"status": "CANCELLED"})

    assert cache.restore(snap, written) == []
    assert cache.get_query_data(LIST_A) == {"status": "CANCELLED"}


def test_snapshot_is_a_copy():
    cache = QueryCache()
    page = {"tasks": [{"id": "c1"}]}
    cache.set_query_data(LIST_A, page)
    snap = cache.snapshot([("tasks",)])
    page["tasks"].clear()
    assert snap.entries[LIST_A][0] == {"tasks": [{"id": "c1"}]}


def test_remove_queries():
    cache = QueryCache()
    cache.set_query_data(DETAIL, {"id": "c1"})
    cache.set_query_data(LIST_A, {"tasks": []})
    cache.remove_queries(("tasks", "detail"))
    assert DETAIL not in cache
    assert LIST_A in cache


@pytest.mark.asyncio
async def test_invalidate_refetches_registered_queries():
    cache = QueryCache()
    fetcher = CountingFetcher("fresh")
    await cache.fetch_query(LIST_A, fetcher)
    cache.set_query_data(LIST_B, "no fetcher")

    tasks = cache.invalidate_queries(("tasks", "list"))
    assert len(tasks) == 1
    await asyncio.gather(*tasks)
    assert fetcher.calls == 2

    # Stale entries without a fetcher stay until something reads them
    assert cache.get_query_data(LIST_B) == "no fetcher"
