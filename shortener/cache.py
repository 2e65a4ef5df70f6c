"""Expiring key/value caches used in front of the short URL store.

Entry Lifetime Diagram
======================
::
    set(key, value, absolute_ttl=300, sliding_ttl=120)
      │
      ├─ absolute deadline = set time + 300s   (never moves)
      └─ sliding deadline  = last hit + 120s   (moves on every hit)

    entry expires at min(absolute deadline, sliding deadline)

Markers
=======
- ``MISSING`` is returned by ``try_get`` when there is no live entry.
- ``ABSENT`` is a value callers store to record "the store has no such key"
  (negative entry). It is returned as-is by ``try_get``, so a cached
  not-found is never mistaken for an uncached key.

How to Use
===========
**In-process**::
    cache = MemoryCache(max_entries=100_000)
    await cache.set("ShortUrl:1", view, absolute_ttl=300, sliding_ttl=120)
    value = await cache.try_get("ShortUrl:1")
    if value is MISSING: ...
    elif value is ABSENT: ...

**Shared Redis**::
    cache = RedisCache(redis.from_url(url, decode_responses=True), ReadShortUrlView, prefix="shortener")

Classes:
    Cache:  Async contract consumed by the cache-aside repository.
    MemoryCache:  Thread-safe in-process cache with absolute and sliding expiration.
    RedisCache:  Redis-backed cache emulating sliding expiration with PEXPIRE.
"""

import json
import logging
import threading
import time
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

import redis.asyncio as redis
from pydantic import BaseModel, ValidationError
from redis.exceptions import RedisError

from shortener.exceptions import DataStoreError

__all__ = ["MISSING", "ABSENT", "Cache", "MemoryCache", "RedisCache"]

logger = logging.getLogger("shortener.cache")


class _Marker:
    __slots__ = ("_name",)

    def __init__(self, name: str) -> None:
        self._name = name

    def __repr__(self) -> str:
        return self._name


MISSING = _Marker("MISSING")
ABSENT = _Marker("ABSENT")


def _validate_ttl(name: str, ttl: float | None) -> None:
    if ttl is not None and ttl <= 0:
        raise ValueError(f"{name} must be positive, got {ttl!r}")


class Cache(ABC):
    """Async expiring key/value store."""

    @abstractmethod
    async def set(
        self,
        key: str,
        value: Any,
        absolute_ttl: float | None = None,
        sliding_ttl: float | None = None,
    ) -> None:
        pass

    @abstractmethod
    async def try_get(self, key: str) -> Any:
        """Return the live value for key, or MISSING."""

    @abstractmethod
    async def remove(self, key: str) -> None:
        pass

    async def ping(self) -> bool:
        return True


@dataclass
class _CacheEntry:
    value: Any
    absolute_deadline: float | None
    sliding_ttl: float | None
    last_access: float

    def expires_at(self) -> float | None:
        deadlines = []
        if self.absolute_deadline is not None:
            deadlines.append(self.absolute_deadline)
        if self.sliding_ttl is not None:
            deadlines.append(self.last_access + self.sliding_ttl)
        return min(deadlines) if deadlines else None

    def is_expired(self, now: float) -> bool:
        expires_at = self.expires_at()
        return expires_at is not None and now >= expires_at


class MemoryCache(Cache):
    """Thread-safe in-process cache.

    Expired entries are dropped lazily on access and purged before eviction.
    When ``max_entries`` is reached the oldest inserted entry is evicted.
    """

    def __init__(self, max_entries: int | None = None, clock: Callable[[], float] = time.monotonic) -> None:
        if max_entries is not None and max_entries < 1:
            raise ValueError(f"max_entries must be at least 1, got {max_entries!r}")
        self._entries: dict[str, _CacheEntry] = {}
        self._max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()

    async def set(
        self,
        key: str,
        value: Any,
        absolute_ttl: float | None = None,
        sliding_ttl: float | None = None,
    ) -> None:
        _validate_ttl("absolute_ttl", absolute_ttl)
        _validate_ttl("sliding_ttl", sliding_ttl)
        now = self._clock()
        entry = _CacheEntry(
            value=value,
            absolute_deadline=now + absolute_ttl if absolute_ttl is not None else None,
            sliding_ttl=sliding_ttl,
            last_access=now,
        )
        with self._lock:
            self._entries.pop(key, None)
            if self._max_entries is not None and len(self._entries) >= self._max_entries:
                self._evict(now)
            self._entries[key] = entry

    async def try_get(self, key: str) -> Any:
        now = self._clock()
        with self._lock:
            entry = self._entries.get(key)
            if entry is None:
                return MISSING
            if entry.is_expired(now):
                del self._entries[key]
                return MISSING
            entry.last_access = now
            return entry.value

    async def remove(self, key: str) -> None:
        with self._lock:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def _evict(self, now: float) -> None:
        # Caller holds the lock.
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now)]
        for key in expired:
            del self._entries[key]
        while len(self._entries) >= self._max_entries:
            oldest = next(iter(self._entries))
            del self._entries[oldest]


class RedisCache(Cache):
    """Redis-backed cache for pydantic values.

    Each key holds a JSON envelope with the value (or the negative marker),
    the absolute deadline and the sliding window. The Redis TTL is set to the
    nearest deadline and re-armed on every hit, capped by the absolute one.
    """

    def __init__(
        self,
        client: redis.Redis,
        model: type[BaseModel],
        prefix: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._client = client
        self._model = model
        self._prefix = prefix
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self._prefix}:{key}" if self._prefix else key

    async def set(
        self,
        key: str,
        value: Any,
        absolute_ttl: float | None = None,
        sliding_ttl: float | None = None,
    ) -> None:
        _validate_ttl("absolute_ttl", absolute_ttl)
        _validate_ttl("sliding_ttl", sliding_ttl)
        now_ms = int(self._clock() * 1000)
        absolute_ms = int(absolute_ttl * 1000) if absolute_ttl is not None else None
        sliding_ms = int(sliding_ttl * 1000) if sliding_ttl is not None else None

        envelope = {
            "absent": value is ABSENT,
            "value": None if value is ABSENT else self._model.model_validate(value).model_dump(mode="json"),
            "deadline_ms": now_ms + absolute_ms if absolute_ms is not None else None,
            "sliding_ms": sliding_ms,
        }
        ttls = [ttl for ttl in (absolute_ms, sliding_ms) if ttl is not None]
        try:
            await self._client.set(self._key(key), json.dumps(envelope), px=min(ttls) if ttls else None)
        except RedisError as exc:
            raise DataStoreError(f"Redis SET failed for {key}: {exc}") from exc

    async def try_get(self, key: str) -> Any:
        redis_key = self._key(key)
        try:
            raw = await self._client.get(redis_key)
        except RedisError as exc:
            raise DataStoreError(f"Redis GET failed for {key}: {exc}") from exc
        if raw is None:
            return MISSING

        try:
            envelope = json.loads(raw)
            value = ABSENT if envelope["absent"] else self._model.model_validate(envelope["value"])
        except (json.JSONDecodeError, KeyError, TypeError, ValidationError) as exc:
            logger.error(f"Cache deserialization error for {key}: {exc}")
            return MISSING

        await self._refresh_sliding_window(redis_key, envelope)
        return value

    async def remove(self, key: str) -> None:
        try:
            await self._client.delete(self._key(key))
        except RedisError as exc:
            raise DataStoreError(f"Redis DEL failed for {key}: {exc}") from exc

    async def ping(self) -> bool:
        return bool(await self._client.ping())

    async def _refresh_sliding_window(self, redis_key: str, envelope: dict[str, Any]) -> None:
        sliding_ms = envelope.get("sliding_ms")
        if sliding_ms is None:
            return
        ttl_ms = sliding_ms
        deadline_ms = envelope.get("deadline_ms")
        if deadline_ms is not None:
            ttl_ms = min(ttl_ms, deadline_ms - int(self._clock() * 1000))
        if ttl_ms <= 0:
            return
        try:
            await self._client.pexpire(redis_key, ttl_ms)
        except RedisError as exc:
            raise DataStoreError(f"Redis PEXPIRE failed for {redis_key}: {exc}") from exc
