"""In-process TTL cache with tag invalidation and request deduplication.

One ``CacheService`` is built at startup and handed to every service that
reads through it. Entries expire lazily on access; the periodic sweep only
bounds memory. Concurrent ``fetch_with_cache`` calls for the same key share a
single in-flight fetch.
"""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Iterable, Optional, Set, TypeVar

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from app.core.clock import Clock, SystemClock

logger = logging.getLogger(__name__)

T = TypeVar("T")

_MISSING = object()


def _render_param(value: Any) -> str:
    if value is None:
        return "*"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


class CacheTTL:
    """TTL presets in seconds, chosen per data shape."""

    SHORT = 30  # dispatch records, reports
    MEDIUM = 120  # drivers, schedules
    LONG = 300  # vehicles, operators, routes
    STATIC = 600  # locations, vehicle types


class CacheTags:
    VEHICLES = "vehicles"
    DRIVERS = "drivers"
    ROUTES = "routes"
    OPERATORS = "operators"
    LOCATIONS = "locations"
    SCHEDULES = "schedules"
    DISPATCH = "dispatch"
    SERVICE_CHARGES = "service-charges"
    REPORTS = "reports"
    STATIC = "static"


class CacheKeys:
    VEHICLES_ALL = "vehicles:all"
    OPERATORS_ALL = "operators:all"
    DRIVERS_ALL = "drivers:all"
    ROUTES_ALL = "routes:all"
    LOCATIONS_ALL = "locations:all"
    SCHEDULES_ALL = "schedules:all"
    DISPATCH_ALL = "dispatch:all"

    @staticmethod
    def vehicle(vehicle_id: str) -> str:
        return f"vehicles:{vehicle_id}"

    @staticmethod
    def vehicles_by_operator(operator_id: str) -> str:
        return f"vehicles:operator:{operator_id}"

    @staticmethod
    def operator(operator_id: str) -> str:
        return f"operators:{operator_id}"

    @staticmethod
    def dispatch(dispatch_id: str) -> str:
        return f"dispatch:{dispatch_id}"

    @staticmethod
    def dispatch_list(
        status: Optional[str] = None,
        vehicle_id: Optional[str] = None,
        start: Any = None,
        end: Any = None,
    ) -> str:
        if status is None and vehicle_id is None and start is None and end is None:
            return CacheKeys.DISPATCH_ALL
        parts = [
            f"status={status or '*'}",
            f"vehicle={vehicle_id or '*'}",
            f"from={start.isoformat() if start else '*'}",
            f"to={end.isoformat() if end else '*'}",
        ]
        return "dispatch:list:" + "|".join(parts)

    @staticmethod
    def service_charges(dispatch_id: str) -> str:
        return f"service-charges:dispatch:{dispatch_id}"

    @staticmethod
    def report(name: str, *params: Any) -> str:
        rendered = ":".join(_render_param(p) for p in params)
        return f"reports:{name}:{rendered}" if rendered else f"reports:{name}"


@dataclass
class CacheEntry:
    value: Any
    created_at: float
    expires_at: float
    tags: Set[str] = field(default_factory=set)

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    def is_stale(self, now: float, stale_time: Optional[float]) -> bool:
        if self.is_expired(now):
            return True
        return stale_time is not None and now - self.created_at >= stale_time


@dataclass(eq=False)
class PendingFetch:
    """An in-flight fetch and the tags its result will be stored under."""

    tags: Set[str]
    future: Optional[asyncio.Future] = None
    # Set when an invalidation covers this key or one of its tags.
    invalidated: bool = False


class CacheService:
    def __init__(
        self,
        clock: Optional[Clock] = None,
        default_ttl: float = CacheTTL.MEDIUM,
        sweep_interval_minutes: float = 5,
    ) -> None:
        self.clock = clock or SystemClock()
        self.default_ttl = default_ttl
        self.sweep_interval_minutes = sweep_interval_minutes
        self._entries: Dict[str, CacheEntry] = {}
        self._tag_index: Dict[str, Set[str]] = {}
        self._pending: Dict[str, PendingFetch] = {}
        self._hits = 0
        self._misses = 0
        self._deduplicated = 0
        self._scheduler: Optional[AsyncIOScheduler] = None

    # -- basic operations -------------------------------------------------

    def get(self, key: str, default: Any = None) -> Any:
        value = self._lookup(key, None)
        return default if value is _MISSING else value

    def has(self, key: str) -> bool:
        return self._lookup(key, None) is not _MISSING

    def set(
        self,
        key: str,
        value: Any,
        ttl: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> None:
        ttl = self.default_ttl if ttl is None else ttl
        now = self.clock.time()
        self._remove(key)
        entry = CacheEntry(value=value, created_at=now, expires_at=now + ttl, tags=set(tags))
        self._entries[key] = entry
        for tag in entry.tags:
            self._tag_index.setdefault(tag, set()).add(key)

    def delete(self, key: str) -> bool:
        self._invalidate_pending(lambda pending_key, pending: pending_key == key)
        return self._remove(key)

    def invalidate_by_tag(self, tag: str) -> int:
        self._invalidate_pending(lambda pending_key, pending: tag in pending.tags)
        keys = list(self._tag_index.get(tag, ()))
        removed = sum(1 for key in keys if self._remove(key))
        if removed:
            logger.debug("cache_invalidate_tag", extra={"tag": tag, "removed": removed})
        return removed

    def invalidate_by_pattern(self, pattern: str) -> int:
        regex = re.compile(pattern)
        self._invalidate_pending(lambda pending_key, pending: regex.search(pending_key) is not None)
        keys = [key for key in self._entries if regex.search(key)]
        for key in keys:
            self._remove(key)
        return len(keys)

    def clear(self) -> None:
        self._invalidate_pending(lambda pending_key, pending: True)
        self._entries.clear()
        self._tag_index.clear()

    def cleanup(self) -> int:
        """Drop every expired entry. Returns the number removed."""
        now = self.clock.time()
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            self._remove(key)
        if expired:
            logger.info("cache_sweep", extra={"removed": len(expired), "remaining": len(self._entries)})
        return len(expired)

    def stats(self) -> dict[str, Any]:
        return {
            "size": len(self._entries),
            "keys": sorted(self._entries),
            "tags": {tag: len(keys) for tag, keys in self._tag_index.items()},
            "pending": len(self._pending),
            "hits": self._hits,
            "misses": self._misses,
            "deduplicated": self._deduplicated,
        }

    # -- read-through ------------------------------------------------------

    async def fetch_with_cache(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: Optional[float] = None,
        stale_time: Optional[float] = None,
        force_refresh: bool = False,
        tags: Iterable[str] = (),
    ) -> T:
        """Return the cached value for ``key`` or load it with ``fetcher``.

        A fresh entry is returned without I/O unless ``force_refresh`` is set.
        ``stale_time`` defaults to the TTL. Callers arriving while a fetch for
        the same key is in flight await that fetch instead of starting another.
        A failed fetch is not cached and its error reaches every waiter.
        """
        ttl = self.default_ttl if ttl is None else ttl
        if not force_refresh:
            value = self._lookup(key, stale_time)
            if value is not _MISSING:
                self._hits += 1
                return value

        pending = self._pending.get(key)
        if pending is not None:
            self._deduplicated += 1
        else:
            self._misses += 1
            pending = PendingFetch(tags=set(tags))
            pending.future = asyncio.ensure_future(self._run_fetch(key, fetcher, ttl, pending))
            self._pending[key] = pending
            pending.future.add_done_callback(lambda fut: self._fetch_done(key, pending, fut))

        # A caller that stops waiting does not cancel the shared fetch.
        return await asyncio.shield(pending.future)

    async def _run_fetch(
        self,
        key: str,
        fetcher: Callable[[], Awaitable[T]],
        ttl: float,
        pending: PendingFetch,
    ) -> T:
        value = await fetcher()
        if pending.invalidated:
            logger.debug("cache_fetch_discarded", extra={"key": key})
        else:
            self.set(key, value, ttl=ttl, tags=pending.tags)
        return value

    def _fetch_done(self, key: str, pending: PendingFetch, fut: asyncio.Future) -> None:
        if self._pending.get(key) is pending:
            del self._pending[key]
        if fut.cancelled():
            return
        exc = fut.exception()
        if exc is not None:
            logger.warning("cache_fetch_failed", extra={"key": key, "error": str(exc)})

    # -- sweep lifecycle ---------------------------------------------------

    def start(self) -> None:
        """Schedule the periodic sweep on the running event loop."""
        if self._scheduler is not None:
            return
        self._scheduler = AsyncIOScheduler()
        self._scheduler.add_job(
            self._sweep,
            "interval",
            minutes=self.sweep_interval_minutes,
            id="cache_sweep",
            max_instances=1,
            coalesce=True,
        )
        self._scheduler.start()
        logger.info("cache_sweep_started", extra={"interval_minutes": self.sweep_interval_minutes})

    def stop(self) -> None:
        if self._scheduler is None:
            return
        self._scheduler.shutdown(wait=False)
        self._scheduler = None
        logger.info("cache_sweep_stopped")

    @property
    def running(self) -> bool:
        return self._scheduler is not None

    async def _sweep(self) -> None:
        self.cleanup()

    # -- internals ---------------------------------------------------------

    def _invalidate_pending(self, matches: Callable[[str, PendingFetch], bool]) -> None:
        """Detach in-flight fetches an invalidation covers.

        Their callers still get the value, but it is not stored and later
        callers start a fresh fetch. Unrelated fetches are left alone.
        """
        for key in [k for k, pending in self._pending.items() if matches(k, pending)]:
            self._pending.pop(key).invalidated = True

    def _lookup(self, key: str, stale_time: Optional[float]) -> Any:
        entry = self._entries.get(key)
        if entry is None:
            return _MISSING
        now = self.clock.time()
        if entry.is_expired(now):
            self._remove(key)
            return _MISSING
        if entry.is_stale(now, stale_time):
            return _MISSING
        return entry.value

    def _remove(self, key: str) -> bool:
        entry = self._entries.pop(key, None)
        if entry is None:
            return False
        for tag in entry.tags:
            keys = self._tag_index.get(tag)
            if keys is not None:
                keys.discard(key)
                if not keys:
                    del self._tag_index[tag]
        return True
