"""
Tests for the TTL/tag cache.

Validates:
1. Concurrent identical misses share one fetch
2. Lazy expiry against the injected clock
3. Failed fetches are not cached and can be retried
4. Tag and pattern invalidation
5. Sweep lifecycle
6. Invalidation detaches only the in-flight fetches it covers
"""
import asyncio

import pytest

from app.core.cache import CacheKeys, CacheService, CacheTags, CacheTTL


def test_ttl_presets_ordered_by_volatility():
    assert (CacheTTL.SHORT, CacheTTL.MEDIUM, CacheTTL.LONG, CacheTTL.STATIC) == (30, 120, 300, 600)


def test_get_returns_default_for_missing_key(cache):
    assert cache.get("vehicles:all") is None
    assert cache.get("vehicles:all", default="absent") == "absent"
    assert not cache.has("vehicles:all")


def test_entry_fresh_before_ttl_and_stale_after(cache, clock):
    cache.set("operators:all", ["FUTA"], ttl=30)

    clock.advance(29)
    assert cache.get("operators:all") == ["FUTA"]

    clock.advance(2)
    assert cache.get("operators:all") is None
    assert cache.stats()["size"] == 0, "expired entry should be dropped on access"


def test_entry_stale_exactly_at_ttl(cache, clock):
    cache.set("dispatch:all", [], ttl=CacheTTL.SHORT)
    clock.advance(CacheTTL.SHORT)
    assert not cache.has("dispatch:all")


def test_cached_none_is_a_hit(cache):
    cache.set("dispatch:missing", None)
    assert cache.has("dispatch:missing")


@pytest.mark.asyncio
async def test_concurrent_fetches_are_deduplicated(cache):
    calls = 0
    operators = [{"id": "op-1", "name": "Phuong Trang"}]

    async def load_operators_from_store():
        nonlocal calls
        calls += 1
        await asyncio.sleep(0.2)
        return operators

    results = await asyncio.gather(
        *(cache.fetch_with_cache(CacheKeys.OPERATORS_ALL, load_operators_from_store) for _ in range(10))
    )

    assert calls == 1, f"Expected 1 fetch, got {calls}"
    assert all(result is operators for result in results), "every caller should get the same object"
    assert cache.stats()["deduplicated"] == 9
    assert cache.stats()["pending"] == 0


@pytest.mark.asyncio
async def test_fresh_entry_returned_without_fetch(cache):
    cache.set("vehicles:all", ["51B-12345"], ttl=CacheTTL.LONG)

    async def fetcher():
        raise AssertionError("fetcher must not run for a fresh entry")

    assert await cache.fetch_with_cache("vehicles:all", fetcher) == ["51B-12345"]


@pytest.mark.asyncio
async def test_expired_entry_triggers_refetch(cache, clock):
    calls = 0

    async def fetcher():
        nonlocal calls
        calls += 1
        return calls

    assert await cache.fetch_with_cache("drivers:all", fetcher, ttl=30) == 1
    clock.advance(29)
    assert await cache.fetch_with_cache("drivers:all", fetcher, ttl=30) == 1
    clock.advance(2)
    assert await cache.fetch_with_cache("drivers:all", fetcher, ttl=30) == 2
    assert calls == 2


@pytest.mark.asyncio
async def test_stale_time_shorter_than_ttl(cache, clock):
    calls = 0

    async def fetcher():
        nonlocal calls
        calls += 1
        return calls

    await cache.fetch_with_cache("routes:all", fetcher, ttl=300, stale_time=60)
    clock.advance(61)
    # Still stored, but too old for a caller that asked for 60s freshness.
    assert cache.get("routes:all") == 1
    assert await cache.fetch_with_cache("routes:all", fetcher, ttl=300, stale_time=60) == 2


@pytest.mark.asyncio
async def test_force_refresh_bypasses_fresh_entry(cache):
    cache.set("vehicles:all", ["old"], ttl=CacheTTL.LONG)

    async def fetcher():
        return ["new"]

    assert await cache.fetch_with_cache("vehicles:all", fetcher, force_refresh=True) == ["new"]
    assert cache.get("vehicles:all") == ["new"]


@pytest.mark.asyncio
async def test_failed_fetch_not_cached_and_retry_succeeds(cache):
    attempts = 0

    async def flaky():
        nonlocal attempts
        attempts += 1
        await asyncio.sleep(0.01)
        if attempts == 1:
            raise RuntimeError("store unavailable")
        return "recovered"

    results = await asyncio.gather(
        *(cache.fetch_with_cache("schedules:all", flaky) for _ in range(3)),
        return_exceptions=True,
    )
    assert all(isinstance(result, RuntimeError) for result in results)
    assert attempts == 1
    assert not cache.has("schedules:all")
    assert cache.stats()["pending"] == 0, "in-flight marker must be cleared after failure"

    assert await cache.fetch_with_cache("schedules:all", flaky) == "recovered"
    assert attempts == 2


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_fetch(cache):
    started = asyncio.Event()

    async def slow():
        started.set()
        await asyncio.sleep(0.05)
        return "done"

    first = asyncio.ensure_future(cache.fetch_with_cache("locations:all", slow))
    await started.wait()
    second = asyncio.ensure_future(cache.fetch_with_cache("locations:all", slow))
    first.cancel()

    assert await second == "done"
    assert cache.get("locations:all") == "done"


@pytest.mark.asyncio
async def test_invalidation_during_fetch_discards_result(cache):
    release = asyncio.Event()

    async def fetcher():
        await release.wait()
        return "before-write"

    task = asyncio.ensure_future(cache.fetch_with_cache("dispatch:all", fetcher, tags=[CacheTags.DISPATCH]))
    await asyncio.sleep(0)
    cache.invalidate_by_tag(CacheTags.DISPATCH)
    release.set()

    assert await task == "before-write"
    assert not cache.has("dispatch:all")


@pytest.mark.asyncio
async def test_unrelated_invalidation_keeps_fetch_shared_and_stored(cache):
    calls = 0
    release = asyncio.Event()

    async def load_operators_from_store():
        nonlocal calls
        calls += 1
        await release.wait()
        return ["FUTA"]

    first = asyncio.ensure_future(
        cache.fetch_with_cache(CacheKeys.OPERATORS_ALL, load_operators_from_store, tags=[CacheTags.OPERATORS])
    )
    await asyncio.sleep(0)
    cache.invalidate_by_tag(CacheTags.DISPATCH)
    cache.delete(CacheKeys.dispatch("d-1"))
    cache.invalidate_by_pattern(r"^reports:")
    second = asyncio.ensure_future(
        cache.fetch_with_cache(CacheKeys.OPERATORS_ALL, load_operators_from_store, tags=[CacheTags.OPERATORS])
    )
    await asyncio.sleep(0)
    release.set()

    assert await first == ["FUTA"]
    assert await second == ["FUTA"]
    assert calls == 1, f"Expected 1 fetch, got {calls}"
    assert cache.get(CacheKeys.OPERATORS_ALL) == ["FUTA"], "result should still be stored"


@pytest.mark.asyncio
async def test_invalidation_during_fetch_starts_fresh_fetch_for_later_callers(cache):
    calls = 0
    release = asyncio.Event()

    async def fetcher():
        nonlocal calls
        calls += 1
        attempt = calls
        await release.wait()
        return attempt

    first = asyncio.ensure_future(cache.fetch_with_cache(CacheKeys.dispatch("d-1"), fetcher))
    await asyncio.sleep(0)
    cache.delete(CacheKeys.dispatch("d-1"))
    second = asyncio.ensure_future(cache.fetch_with_cache(CacheKeys.dispatch("d-1"), fetcher))
    await asyncio.sleep(0)
    release.set()

    assert await first == 1
    assert await second == 2
    assert cache.get(CacheKeys.dispatch("d-1")) == 2
    assert cache.stats()["pending"] == 0


def test_invalidate_by_tag_removes_only_tagged_entries(cache):
    cache.set("vehicles:all", [1], tags=[CacheTags.VEHICLES])
    cache.set("vehicles:veh-1", {"id": "veh-1"}, tags=[CacheTags.VEHICLES])
    cache.set("operators:all", [2], tags=[CacheTags.OPERATORS])

    assert cache.invalidate_by_tag(CacheTags.VEHICLES) == 2
    assert not cache.has("vehicles:all")
    assert cache.has("operators:all")
    assert cache.invalidate_by_tag(CacheTags.VEHICLES) == 0


def test_invalidate_by_pattern(cache):
    cache.set(CacheKeys.dispatch("a"), 1)
    cache.set(CacheKeys.dispatch("b"), 2)
    cache.set(CacheKeys.service_charges("a"), 3)

    assert cache.invalidate_by_pattern(r"^dispatch:") == 2
    assert cache.has(CacheKeys.service_charges("a"))


def test_delete_and_clear(cache):
    cache.set("a", 1, tags=["x"])
    cache.set("b", 2, tags=["x"])
    assert cache.delete("a") is True
    assert cache.delete("a") is False
    cache.clear()
    assert cache.stats()["size"] == 0
    assert cache.stats()["tags"] == {}


def test_cleanup_sweeps_only_expired(cache, clock):
    cache.set("short", 1, ttl=CacheTTL.SHORT)
    cache.set("static", 2, ttl=CacheTTL.STATIC)
    clock.advance(CacheTTL.SHORT + 1)

    assert cache.cleanup() == 1
    assert cache.stats()["keys"] == ["static"]


@pytest.mark.asyncio
async def test_sweep_start_stop(clock):
    cache = CacheService(clock=clock, sweep_interval_minutes=5)
    assert not cache.running
    cache.start()
    cache.start()
    assert cache.running
    cache.stop()
    assert not cache.running
    cache.stop()


def test_dispatch_list_keys_distinguish_filters():
    assert CacheKeys.dispatch_list() == CacheKeys.DISPATCH_ALL
    assert CacheKeys.dispatch_list("entered") != CacheKeys.dispatch_list("paid")
    assert CacheKeys.dispatch_list("entered").startswith("dispatch:")
