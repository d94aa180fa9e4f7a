from __future__ import annotations

import asyncio
import time
from collections import OrderedDict
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Generic, Optional, Protocol, TypeVar

from assistant.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


class Clock(Protocol):
    def now(self) -> float: ...


class MonotonicClock:
    def now(self) -> float:
        return time.monotonic()


class ManualClock:
    """Clock that only moves when told to. Used to drive expiry in tests."""

    def __init__(self, start: float = 0.0):
        self._now = float(start)

    def now(self) -> float:
        return self._now

    def advance(self, seconds: float) -> None:
        self._now += float(seconds)


@dataclass(frozen=True)
class CacheEntry(Generic[T]):
    value: T
    filled_at: float
    ttl: float

    def is_fresh(self, now: float) -> bool:
        return (now - self.filled_at) < self.ttl

    def age(self, now: float) -> float:
        return max(0.0, now - self.filled_at)


@dataclass
class _InFlight:
    task: "asyncio.Task[Any]"
    waiters: int = 0


class TTLCache:
    """Keyed store with per-entry TTL shared by every data tier of the assistant.

    `get_or_fetch` serves fresh entries without I/O, refetches expired ones, and
    falls back to the previous value when a refetch fails. Concurrent callers
    for the same key share a single in-flight fetch.
    """

    def __init__(self, *, clock: Optional[Clock] = None, maxsize: int = 256):
        self.clock: Clock = clock or MonotonicClock()
        self.maxsize = max(1, int(maxsize))
        self._items: "OrderedDict[str, CacheEntry[Any]]" = OrderedDict()
        self._inflight: Dict[str, _InFlight] = {}
        self.hits = 0
        self.misses = 0
        self.fetches = 0
        self.stale_served = 0

    def get(self, key: str) -> Optional[Any]:
        entry = self._items.get(key)
        if entry is None or not entry.is_fresh(self.clock.now()):
            return None
        self._items.move_to_end(key)
        return entry.value

    def peek(self, key: str) -> Optional[CacheEntry[Any]]:
        return self._items.get(key)

    def set(self, key: str, value: Any, ttl: float) -> None:
        self._items[key] = CacheEntry(value=value, filled_at=self.clock.now(), ttl=float(ttl))
        self._items.move_to_end(key)
        while len(self._items) > self.maxsize:
            self._items.popitem(last=False)

    def invalidate(self, key: str) -> None:
        self._items.pop(key, None)

    def clear(self) -> None:
        self._items.clear()

    async def get_or_fetch(
        self,
        key: str,
        ttl: float,
        fetcher: Callable[[], Awaitable[T]],
    ) -> T:
        entry = self._items.get(key)
        if entry is not None and entry.is_fresh(self.clock.now()):
            self.hits += 1
            self._items.move_to_end(key)
            return entry.value
        self.misses += 1

        inflight = self._inflight.get(key)
        if inflight is None:
            task = asyncio.ensure_future(self._refresh(key, ttl, fetcher))
            inflight = _InFlight(task=task)
            self._inflight[key] = inflight
            task.add_done_callback(lambda _t, k=key, f=inflight: self._clear_inflight(k, f))

        inflight.waiters += 1
        try:
            return await asyncio.shield(inflight.task)
        except asyncio.CancelledError:
            # Last interested caller gone: release the underlying fetch.
            if inflight.waiters <= 1 and not inflight.task.done():
                inflight.task.cancel()
            raise
        finally:
            inflight.waiters -= 1

    async def _refresh(self, key: str, ttl: float, fetcher: Callable[[], Awaitable[T]]) -> T:
        previous = self._items.get(key)
        self.fetches += 1
        try:
            value = await fetcher()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            if previous is not None:
                self.stale_served += 1
                logger.warning(f"Refetch failed for key={key}; serving stale value: {exc}")
                return previous.value
            logger.warning(f"Fetch failed for key={key} with no cached value: {exc}")
            raise
        self.set(key, value, ttl)
        logger.debug(f"Cache filled key={key} ttl={ttl:.0f}s")
        return value

    def _clear_inflight(self, key: str, inflight: _InFlight) -> None:
        if self._inflight.get(key) is inflight:
            self._inflight.pop(key, None)

    def stats(self) -> Dict[str, Any]:
        total = int(self.hits + self.misses)
        hit_rate = float(self.hits / total) if total > 0 else 0.0
        return {
            "size": len(self._items),
            "hits": int(self.hits),
            "misses": int(self.misses),
            "fetches": int(self.fetches),
            "stale_served": int(self.stale_served),
            "inflight": len(self._inflight),
            "hit_rate": round(hit_rate, 4),
        }
