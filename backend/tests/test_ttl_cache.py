from __future__ import annotations

import asyncio

import pytest

from assistant.services.cache.ttl_cache import CacheEntry, ManualClock, TTLCache


def test_entry_is_fresh_strictly_before_ttl() -> None:
    entry = CacheEntry(value="v", filled_at=100.0, ttl=10.0)
    assert entry.is_fresh(109.9)
    assert not entry.is_fresh(110.0)
    assert entry.age(104.0) == pytest.approx(4.0)


def test_get_returns_none_for_expired_and_peek_still_sees_it() -> None:
    clock = ManualClock()
    cache = TTLCache(clock=clock)
    cache.set("k", 1, ttl=5)
    assert cache.get("k") == 1
    clock.advance(5)
    assert cache.get("k") is None
    assert cache.peek("k").value == 1


def test_set_evicts_least_recently_used() -> None:
    cache = TTLCache(clock=ManualClock(), maxsize=2)
    cache.set("a", 1, ttl=60)
    cache.set("b", 2, ttl=60)
    cache.get("a")
    cache.set("c", 3, ttl=60)
    assert cache.peek("b") is None
    assert cache.get("a") == 1
    assert cache.get("c") == 3


@pytest.mark.asyncio
async def test_fresh_entry_is_served_without_fetching() -> None:
    clock = ManualClock()
    cache = TTLCache(clock=clock)
    calls = 0

    async def fetcher():
        nonlocal calls
        calls += 1
        return f"value-{calls}"

    assert await cache.get_or_fetch("k", 10, fetcher) == "value-1"
    clock.advance(9)
    assert await cache.get_or_fetch("k", 10, fetcher) == "value-1"
    assert calls == 1
    assert cache.hits == 1


@pytest.mark.asyncio
async def test_expired_entry_is_refetched() -> None:
    clock = ManualClock()
    cache = TTLCache(clock=clock)
    values = iter(["first", "second"])

    async def fetcher():
        return next(values)

    assert await cache.get_or_fetch("k", 10, fetcher) == "first"
    clock.advance(10)
    assert await cache.get_or_fetch("k", 10, fetcher) == "second"
    assert cache.fetches == 2


@pytest.mark.asyncio
async def test_failed_refetch_serves_previous_value() -> None:
    clock = ManualClock()
    cache = TTLCache(clock=clock)

    async def ok():
        return ["cached"]

    async def boom():
        raise RuntimeError("upstream down")

    await cache.get_or_fetch("k", 1, ok)
    clock.advance(2)
    assert await cache.get_or_fetch("k", 1, boom) == ["cached"]
    assert cache.stale_served == 1


@pytest.mark.asyncio
async def test_failed_fetch_without_previous_value_raises() -> None:
    cache = TTLCache(clock=ManualClock())

    async def boom():
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError):
        await cache.get_or_fetch("k", 1, boom)
    assert cache.peek("k") is None


@pytest.mark.asyncio
async def test_concurrent_callers_share_one_fetch() -> None:
    cache = TTLCache(clock=ManualClock())
    release = asyncio.Event()
    calls = 0

    async def slow():
        nonlocal calls
        calls += 1
        await release.wait()
        return "shared"

    waiters = [asyncio.ensure_future(cache.get_or_fetch("k", 60, slow)) for _ in range(5)]
    await asyncio.sleep(0)
    release.set()
    results = await asyncio.gather(*waiters)

    assert results == ["shared"] * 5
    assert calls == 1
    assert cache.stats()["inflight"] == 0


@pytest.mark.asyncio
async def test_cancelling_one_waiter_keeps_shared_fetch_alive() -> None:
    cache = TTLCache(clock=ManualClock())
    release = asyncio.Event()

    async def slow():
        await release.wait()
        return "done"

    first = asyncio.ensure_future(cache.get_or_fetch("k", 60, slow))
    second = asyncio.ensure_future(cache.get_or_fetch("k", 60, slow))
    await asyncio.sleep(0)

    first.cancel()
    await asyncio.sleep(0)
    release.set()

    assert await second == "done"
    assert first.cancelled()
    assert cache.get("k") == "done"


@pytest.mark.asyncio
async def test_cancelling_last_waiter_cancels_fetch() -> None:
    cache = TTLCache(clock=ManualClock())
    fetch_cancelled = asyncio.Event()

    async def hangs():
        try:
            await asyncio.sleep(60)
        except asyncio.CancelledError:
            fetch_cancelled.set()
            raise
        return "never"

    waiter = asyncio.ensure_future(cache.get_or_fetch("k", 60, hangs))
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    waiter.cancel()
    with pytest.raises(asyncio.CancelledError):
        await waiter

    await asyncio.wait_for(fetch_cancelled.wait(), timeout=1)
    assert cache.peek("k") is None
