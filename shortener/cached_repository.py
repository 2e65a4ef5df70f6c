"""Cache-aside decorator for short URL repositories.

Flow Diagram — get_by_id()
==========================
::
    ┌─────────────┐
    │ get_by_id() │
    └──────┬──────┘
           ▼
    ┌─────────────┐
    │ Check cache │
    └──────┬──────┘
    ┌──────┼───────────────┐
    │ HIT  │ NEGATIVE HIT  │ MISS
    ▼      ▼               ▼
┌───────┐ ┌───────┐   ┌──────────────┐
│Return │ │Return │   │ Per-id lock, │
│ view  │ │ None  │   │ re-check     │
└───────┘ └───────┘   └──────┬───────┘
                             ▼
                      ┌──────────────┐
                      │ Query store  │
                      └──────┬───────┘
                   FOUND?    │
                   ┌─────────┴─────────┐
                   │ YES               │ NO
                   ▼                   ▼
            ┌─────────────┐     ┌─────────────┐
            │ Cache view  │     │ Cache ABSENT│
            │ 5m abs,     │     │ 30s abs     │
            │ 2m sliding  │     │             │
            └─────────────┘     └─────────────┘

Write Policies
==============
- add: store first, then write-through the new view.
- update: store first, then overwrite the cached view.
- increment_click_count: store first, then remove the cached entry.
- A failing cache never fails a store operation: cache errors are logged
  and counted, and the store result is returned.

Classes:
    CachedShortUrlRepository:  ShortUrlRepository wrapping another repository and a Cache.
"""

import asyncio
import logging
import weakref
from typing import Any

from prometheus_client import Counter

from shortener.cache import ABSENT, MISSING, Cache
from shortener.config import Settings
from shortener.enums import CacheStatus
from shortener.exceptions import DataStoreError
from shortener.repository import ShortUrlRepository
from shortener.schemas import ReadShortUrlView, UpdateShortUrl

__all__ = ["CachedShortUrlRepository"]

logger = logging.getLogger("shortener.cached_repository")

CACHE_LOOKUPS_TOTAL = Counter(
    "shortener_cache_lookups_total",
    "Short URL cache lookups by outcome",
    ["result"],
)
STORE_READS_TOTAL = Counter(
    "shortener_store_reads_total",
    "Short URL store reads caused by cache misses",
)
STORE_WRITES_TOTAL = Counter(
    "shortener_store_writes_total",
    "Short URL store writes by operation",
    ["operation"],
)
CACHE_FAILURES_TOTAL = Counter(
    "shortener_cache_failures_total",
    "Cache writes and invalidations that failed",
    ["operation"],
)


class CachedShortUrlRepository(ShortUrlRepository):
    """Cache-aside repository.

    Holds the inner repository and the cache by composition and exposes the
    same contract, so the shortening service cannot tell the two apart.

    Concurrent misses for the same id inside one process are collapsed into a
    single store read.
    """

    def __init__(
        self,
        inner: ShortUrlRepository,
        cache: Cache,
        absolute_ttl: float = 300.0,
        sliding_ttl: float = 120.0,
        negative_ttl: float = 30.0,
    ) -> None:
        self._inner = inner
        self._cache = cache
        self._absolute_ttl = absolute_ttl
        self._sliding_ttl = sliding_ttl
        self._negative_ttl = negative_ttl
        self._miss_locks: weakref.WeakValueDictionary[int, asyncio.Lock] = weakref.WeakValueDictionary()

    @classmethod
    def from_settings(
        cls, inner: ShortUrlRepository, cache: Cache, settings: Settings
    ) -> "CachedShortUrlRepository":
        return cls(
            inner,
            cache,
            absolute_ttl=settings.CACHE_ABSOLUTE_TTL_SECONDS,
            sliding_ttl=settings.CACHE_SLIDING_TTL_SECONDS,
            negative_ttl=settings.CACHE_NEGATIVE_TTL_SECONDS,
        )

    @staticmethod
    def cache_key(short_url_id: int) -> str:
        return f"ShortUrl:{short_url_id}"

    async def add(self, long_url: str) -> int:
        added = await self._inner.add(long_url)
        STORE_WRITES_TOTAL.labels(operation="add").inc()
        if added:
            # An in-flight miss for this id may still cache ABSENT; wait for it.
            async with self._miss_lock(added):
                await self._cache_view(added, ReadShortUrlView(long_url=long_url))
            logger.debug(f"ShortUrl id={added} added and cached")
        return added

    async def get_by_id(self, short_url_id: int) -> ReadShortUrlView | None:
        cached = await self._cache.try_get(self.cache_key(short_url_id))
        if cached is not MISSING:
            return self._from_cache(short_url_id, cached)

        CACHE_LOOKUPS_TOTAL.labels(result=CacheStatus.MISS).inc()
        lock = self._miss_lock(short_url_id)
        async with lock:
            # Another coroutine may have filled the entry while we waited.
            cached = await self._cache.try_get(self.cache_key(short_url_id))
            if cached is not MISSING:
                return None if cached is ABSENT else cached

            logger.debug(f"Cache miss for ShortUrl id={short_url_id}, fetching from store")
            from_store = await self._inner.get_by_id(short_url_id)
            STORE_READS_TOTAL.inc()

            if from_store is not None:
                await self._cache_view(short_url_id, from_store)
                logger.debug(f"ShortUrl id={short_url_id} found in store and cached")
            else:
                await self._cache_set(short_url_id, ABSENT, absolute_ttl=self._negative_ttl)
                logger.debug(
                    f"ShortUrl id={short_url_id} not found in store, caching absence for {self._negative_ttl}s"
                )

        return from_store

    async def update(self, short_url: UpdateShortUrl) -> None:
        await self._inner.update(short_url)
        STORE_WRITES_TOTAL.labels(operation="update").inc()
        async with self._miss_lock(short_url.id):
            await self._cache_view(short_url.id, ReadShortUrlView(long_url=short_url.long_url))
        logger.debug(f"ShortUrl id={short_url.id} updated and cache refreshed")

    async def increment_click_count(self, short_url_id: int) -> None:
        await self._inner.increment_click_count(short_url_id)
        STORE_WRITES_TOTAL.labels(operation="increment_click_count").inc()
        try:
            await self._cache.remove(self.cache_key(short_url_id))
        except DataStoreError as exc:
            CACHE_FAILURES_TOTAL.labels(operation="remove").inc()
            logger.error(f"Cache invalidation failed for ShortUrl id={short_url_id}: {exc}")
            return
        logger.debug(f"ShortUrl id={short_url_id} click count incremented, cache invalidated")

    def _from_cache(self, short_url_id: int, cached: Any) -> ReadShortUrlView | None:
        if cached is ABSENT:
            CACHE_LOOKUPS_TOTAL.labels(result=CacheStatus.NEGATIVE_HIT).inc()
            logger.debug(f"Negative cache hit for ShortUrl id={short_url_id}")
            return None
        CACHE_LOOKUPS_TOTAL.labels(result=CacheStatus.HIT).inc()
        logger.debug(f"Cache hit for ShortUrl id={short_url_id}")
        return cached

    async def _cache_view(self, short_url_id: int, view: ReadShortUrlView) -> None:
        await self._cache_set(
            short_url_id,
            view,
            absolute_ttl=self._absolute_ttl,
            sliding_ttl=self._sliding_ttl,
        )

    async def _cache_set(self, short_url_id: int, value: Any, **ttls: float) -> None:
        """Populate the cache; the store stays authoritative if the cache is down."""
        try:
            await self._cache.set(self.cache_key(short_url_id), value, **ttls)
        except DataStoreError as exc:
            CACHE_FAILURES_TOTAL.labels(operation="set").inc()
            logger.error(f"Cache write failed for ShortUrl id={short_url_id}: {exc}")

    def _miss_lock(self, short_url_id: int) -> asyncio.Lock:
        lock = self._miss_locks.get(short_url_id)
        if lock is None:
            lock = asyncio.Lock()
            self._miss_locks[short_url_id] = lock
        return lock
