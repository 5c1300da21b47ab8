from __future__ import annotations

import asyncio
import json
import random

import pytest

from gameshelf.core.errors import ErrorKind, RemoteFetchFailed
from gameshelf.core.query_cache import (
    QueryCache,
    QueryCacheEntry,
    QueryObserver,
    QueryStatus,
    ResourceKey,
)
from tests.conftest import FakeClock, GatedFetch


def _assert_consistent(entry: QueryCacheEntry) -> None:
    """data is present iff success, error is present iff error."""
    assert (entry.data is not None) == (entry.status is QueryStatus.SUCCESS)
    assert (entry.error is not None) == (entry.status is QueryStatus.ERROR)


def test_resource_keys_compare_by_value() -> None:
    assert ResourceKey.of("getGame", "portal-2") == ResourceKey("getGame", ("portal-2",))
    assert ResourceKey.of("getGame", "portal-2") != ResourceKey.of("getScreens", "portal-2")
    assert len({ResourceKey.of("search", "p"), ResourceKey.of("search", "p")}) == 1
    key = ResourceKey.of("search", "portal")
    assert ResourceKey.from_json(key.to_json()) == key


def test_unknown_key_is_idle() -> None:
    entry = QueryCache().get_entry(ResourceKey.of("getGame", "nothing"))
    assert entry.status is QueryStatus.IDLE
    assert not entry.is_fetching


@pytest.mark.asyncio
async def test_concurrent_readers_share_a_single_fetch(clock: FakeClock) -> None:
    cache = QueryCache(clock=clock)
    key = ResourceKey.of("getGame", "portal-2")
    fetch = GatedFetch(result={"name": "Portal 2"})

    first = asyncio.create_task(cache.use_query(key, fetch))
    second = asyncio.create_task(cache.use_query(key, fetch))
    await asyncio.sleep(0)

    loading = cache.get_entry(key)
    assert loading.status is QueryStatus.LOADING
    assert loading.is_fetching
    _assert_consistent(loading)

    fetch.gate.set()
    results = await asyncio.gather(first, second)

    assert fetch.calls == 1
    for entry in results:
        assert entry.status is QueryStatus.SUCCESS
        assert entry.data == {"name": "Portal 2"}
        assert entry.fetched_at == clock.now
        _assert_consistent(entry)


@pytest.mark.asyncio
async def test_failures_are_captured_into_the_entry() -> None:
    cache = QueryCache()
    key = ResourceKey.of("getGame", "missing")
    fetch = GatedFetch(error=RemoteFetchFailed("GET /games/missing returned status 404"), open_gate=True)

    entry = await cache.use_query(key, fetch)

    assert entry.status is QueryStatus.ERROR
    assert entry.error.kind is ErrorKind.REMOTE_FETCH_FAILED
    assert "404" in entry.error.message
    assert entry.fetched_at is None
    _assert_consistent(entry)


@pytest.mark.asyncio
async def test_unexpected_exceptions_become_fetch_errors() -> None:
    cache = QueryCache()

    async def broken() -> dict:
        raise KeyError("results")

    entry = await cache.use_query(ResourceKey.of("search", "x"), broken)
    assert entry.is_error
    assert entry.error.kind is ErrorKind.REMOTE_FETCH_FAILED
    assert isinstance(entry.error.cause, KeyError)


@pytest.mark.asyncio
async def test_error_moves_back_to_loading_on_reinvocation() -> None:
    cache = QueryCache()
    key = ResourceKey.of("getGame", "portal-2")
    failing = GatedFetch(error=RemoteFetchFailed("boom"), open_gate=True)
    assert (await cache.use_query(key, failing)).is_error

    retry = GatedFetch(result={"name": "Portal 2"})
    task = asyncio.create_task(cache.use_query(key, retry))
    await asyncio.sleep(0)
    assert cache.get_entry(key).status is QueryStatus.LOADING
    _assert_consistent(cache.get_entry(key))

    retry.gate.set()
    entry = await task
    assert entry.is_success
    assert entry.data == {"name": "Portal 2"}


@pytest.mark.asyncio
async def test_disabled_query_never_fetches() -> None:
    cache = QueryCache()
    key = ResourceKey.of("getGame", "")
    fetch = GatedFetch(result={}, open_gate=True)

    entries = await asyncio.gather(*(cache.use_query(key, fetch, enabled=False) for _ in range(3)))

    assert fetch.calls == 0
    assert all(entry.status is QueryStatus.IDLE for entry in entries)


@pytest.mark.asyncio
async def test_fresh_entry_is_served_without_refetching(clock: FakeClock) -> None:
    cache = QueryCache(stale_time=60, clock=clock)
    key = ResourceKey.of("getGame", "portal-2")
    fetch = GatedFetch(result={"name": "Portal 2"}, open_gate=True)

    await cache.use_query(key, fetch)
    clock.advance(30)
    entry = await cache.use_query(key, fetch)

    assert fetch.calls == 1
    assert entry.is_success
    assert not entry.is_fetching


@pytest.mark.asyncio
async def test_stale_entry_is_served_while_refreshing_in_background(clock: FakeClock) -> None:
    cache = QueryCache(stale_time=60, clock=clock)
    key = ResourceKey.of("getGame", "portal-2")
    await cache.use_query(key, GatedFetch(result={"name": "Portal 2"}, open_gate=True))
    first_fetched_at = cache.get_entry(key).fetched_at

    clock.advance(61)
    refresh = GatedFetch(result={"name": "Portal 2 (Updated)"})
    entry = await cache.use_query(key, refresh)

    # Served immediately with the old data while the refresh runs
    assert entry.is_success
    assert entry.data == {"name": "Portal 2"}
    assert entry.is_fetching

    refresh.gate.set()
    refreshed = await cache.refetch(key, refresh)

    assert refresh.calls == 1
    assert refreshed.is_success
    assert refreshed.data == {"name": "Portal 2 (Updated)"}
    assert refreshed.fetched_at == clock.now
    assert refreshed.fetched_at > first_fetched_at
    assert not refreshed.is_fetching


@pytest.mark.asyncio
async def test_failed_background_refetch_keeps_previous_data(clock: FakeClock) -> None:
    cache = QueryCache(stale_time=60, clock=clock)
    key = ResourceKey.of("getGame", "portal-2")
    await cache.use_query(key, GatedFetch(result={"name": "Portal 2"}, open_gate=True))
    fetched_at = cache.get_entry(key).fetched_at

    clock.advance(120)
    await cache.use_query(key, GatedFetch(error=RemoteFetchFailed("timeout"), open_gate=True))
    await asyncio.sleep(0)
    entry = cache.get_entry(key)
    while entry.is_fetching:
        await asyncio.sleep(0)
        entry = cache.get_entry(key)

    assert entry.status is QueryStatus.SUCCESS
    assert entry.data == {"name": "Portal 2"}
    assert entry.fetched_at == fetched_at
    assert entry.error is None
    assert entry.background_error is not None
    assert entry.background_error.kind is ErrorKind.REMOTE_FETCH_FAILED


@pytest.mark.asyncio
async def test_cancelling_one_reader_does_not_cancel_the_shared_request() -> None:
    cache = QueryCache()
    key = ResourceKey.of("getScreens", "portal-2")
    fetch = GatedFetch(result=[{"image_url": "a.jpg"}])

    leaving = asyncio.create_task(cache.use_query(key, fetch))
    staying = asyncio.create_task(cache.use_query(key, fetch))
    await asyncio.sleep(0)

    leaving.cancel()
    with pytest.raises(asyncio.CancelledError):
        await leaving

    fetch.gate.set()
    entry = await staying
    assert fetch.calls == 1
    assert entry.is_success
    assert entry.data == [{"image_url": "a.jpg"}]


@pytest.mark.asyncio
async def test_switching_observer_key_discards_the_late_response() -> None:
    cache = QueryCache()
    k1 = ResourceKey.of("getGame", "portal")
    k2 = ResourceKey.of("getGame", "portal-2")
    slow = GatedFetch(result={"name": "Portal"})
    other = GatedFetch(result={"name": "Portal 2"}, open_gate=True)

    observer = QueryObserver(cache, k1, slow)
    pending = asyncio.create_task(observer.result())
    await asyncio.sleep(0)
    assert cache.get_entry(k1).is_loading

    observer.set_key(k2, other)
    slow.gate.set()
    entry = await pending

    # The result reflects the new active key, never k1's late data
    assert observer.key == k2
    assert entry.status is QueryStatus.IDLE
    assert entry.data is None
    # Nobody observes k1 any more, so its late response is dropped too
    assert cache.get_entry(k1).status is QueryStatus.IDLE
    assert cache.get_entry(k1).data is None

    entry = await observer.result()
    assert entry.data == {"name": "Portal 2"}
    observer.close()


@pytest.mark.asyncio
async def test_late_response_is_kept_while_another_observer_remains() -> None:
    cache = QueryCache()
    k1 = ResourceKey.of("getGame", "portal")
    slow = GatedFetch(result={"name": "Portal"})

    async with QueryObserver(cache, k1, slow) as switching, QueryObserver(cache, k1, slow) as staying:
        switching_result = asyncio.create_task(switching.result())
        staying_result = asyncio.create_task(staying.result())
        await asyncio.sleep(0)

        switching.set_key(ResourceKey.of("getGame", "other"))
        slow.gate.set()
        await asyncio.gather(switching_result, staying_result)

        assert slow.calls == 1
        assert staying.current().data == {"name": "Portal"}
        assert switching.current().is_idle


@pytest.mark.asyncio
async def test_removed_key_discards_in_flight_response() -> None:
    cache = QueryCache()
    key = ResourceKey.of("search", "portal")
    fetch = GatedFetch(result=[{"name": "Portal"}])

    pending = asyncio.create_task(cache.use_query(key, fetch))
    await asyncio.sleep(0)
    cache.remove(key)
    fetch.gate.set()
    await pending

    assert cache.get_entry(key).is_idle


@pytest.mark.asyncio
async def test_prefetch_never_raises() -> None:
    cache = QueryCache()
    key = ResourceKey.of("getGame", "missing")

    await cache.prefetch(key, GatedFetch(error=RemoteFetchFailed("404"), open_gate=True))

    assert cache.get_entry(key).is_error


@pytest.mark.asyncio
async def test_hydrated_entries_are_not_refetched_while_fresh(clock: FakeClock) -> None:
    server_cache = QueryCache(stale_time=300, clock=clock)
    key = ResourceKey.of("getGame", "portal-2")
    await server_cache.prefetch(key, GatedFetch(result={"name": "Portal 2", "slug": "portal-2"}, open_gate=True))
    await server_cache.prefetch(ResourceKey.of("getGame", "missing"), GatedFetch(error=RemoteFetchFailed("404"), open_gate=True))
    snapshot = json.loads(json.dumps(server_cache.dehydrate()))

    # Only successful entries travel
    assert len(snapshot["queries"]) == 1

    clock.advance(10)
    client_cache = QueryCache(stale_time=300, clock=clock)
    assert client_cache.hydrate(snapshot) == 1

    must_not_run = GatedFetch(error=AssertionError("fetch must not be called"), open_gate=True)
    entry = await client_cache.use_query(key, must_not_run)

    assert must_not_run.calls == 0
    assert entry.is_success
    assert entry.data == {"name": "Portal 2", "slug": "portal-2"}
    assert entry.fetched_at == server_cache.get_entry(key).fetched_at


@pytest.mark.asyncio
async def test_hydrate_keeps_newer_entries(clock: FakeClock) -> None:
    cache = QueryCache(clock=clock)
    key = ResourceKey.of("getGame", "portal-2")
    await cache.prefetch(key, GatedFetch(result={"name": "new"}, open_gate=True))

    older = {"version": 1, "queries": [{"key": key.to_json(), "data": {"name": "old"}, "fetched_at": clock.now - 100}]}
    assert cache.hydrate(older) == 0
    assert cache.get_entry(key).data == {"name": "new"}


def test_hydrate_skips_malformed_snapshots() -> None:
    cache = QueryCache()
    assert cache.hydrate(None) == 0
    assert cache.hydrate({"version": 99, "queries": []}) == 0
    assert cache.hydrate({"version": 1, "queries": [{"key": {"namespace": "x"}}]}) == 0


@pytest.mark.asyncio
async def test_invalidate_forces_the_next_read_to_refresh(clock: FakeClock) -> None:
    cache = QueryCache(stale_time=300, clock=clock)
    key = ResourceKey.of("bookmarks", "uid-1")
    await cache.use_query(key, GatedFetch(result=[], open_gate=True))

    cache.invalidate(key)
    assert cache.get_entry(key).is_invalidated

    refresh = GatedFetch(result=[{"name": "Portal 2"}], open_gate=True)
    await cache.use_query(key, refresh)
    entry = await cache.refetch(key, refresh)

    assert refresh.calls == 1
    assert entry.data == [{"name": "Portal 2"}]
    assert not entry.is_invalidated


@pytest.mark.asyncio
async def test_retry_runs_extra_attempts_with_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(random, "uniform", lambda a, b: 0)
    cache = QueryCache(retry=2, retry_delay=0)
    attempts = []

    async def flaky() -> dict:
        attempts.append(1)
        if len(attempts) < 3:
            raise RemoteFetchFailed("503")
        return {"name": "Portal 2"}

    entry = await cache.use_query(ResourceKey.of("getGame", "portal-2"), flaky)

    assert len(attempts) == 3
    assert entry.is_success


@pytest.mark.asyncio
async def test_observer_keeps_working_after_its_key_is_removed() -> None:
    cache = QueryCache()
    key = ResourceKey.of("getGame", "portal-2")
    fetch = GatedFetch(result={"name": "Portal 2"}, open_gate=True)

    async with QueryObserver(cache, key, fetch) as observer:
        assert (await observer.result()).is_success
        cache.remove(key)
        assert observer.current().is_idle

        entry = await observer.result()

        assert entry.is_success
        assert entry.data == {"name": "Portal 2"}
        assert fetch.calls == 2
        assert cache.get_entry(key) == entry


@pytest.mark.asyncio
async def test_cancelling_refetch_starts_a_new_request_and_drops_the_old_one() -> None:
    cache = QueryCache()
    key = ResourceKey.of("bookmarks", "uid-1")
    before_write = GatedFetch(result=["Half-Life 2"])
    after_write = GatedFetch(result=["Half-Life 2", "Portal 2"], open_gate=True)

    reader = asyncio.create_task(cache.use_query(key, before_write))
    await asyncio.sleep(0)
    assert cache.get_entry(key).is_loading

    entry = await cache.refetch(key, after_write, cancel_refetch=True)
    assert entry.data == ["Half-Life 2", "Portal 2"]
    assert after_write.calls == 1

    before_write.gate.set()
    # The reader follows the replacement request instead of reporting the older response
    joined = await reader
    assert joined.data == ["Half-Life 2", "Portal 2"]
    assert cache.get_entry(key).data == ["Half-Life 2", "Portal 2"]
    assert not cache.get_entry(key).is_fetching


@pytest.mark.asyncio
async def test_plain_refetch_joins_the_request_in_flight() -> None:
    cache = QueryCache()
    key = ResourceKey.of("bookmarks", "uid-1")
    fetch = GatedFetch(result=["Half-Life 2"])

    reader = asyncio.create_task(cache.use_query(key, fetch))
    await asyncio.sleep(0)
    refetching = asyncio.create_task(cache.refetch(key, fetch))
    await asyncio.sleep(0)
    fetch.gate.set()
    await asyncio.gather(reader, refetching)

    assert fetch.calls == 1
    assert cache.get_entry(key).data == ["Half-Life 2"]
