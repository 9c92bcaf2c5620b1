"""Key-value cache used for read-through caching and as a lock service.

Two backends share the ``CacheStore`` protocol:

* ``InMemoryCacheStore`` keeps entries in a process-local dict with
  monotonic-clock expiry.  Suitable for a single replica and for tests.
* ``RedisCacheStore`` talks to Redis through ``redis.asyncio`` so that
  ``set_nx`` is a cluster-wide compare-and-set.

Values are JSON-encoded on write and decoded on read, so callers can store
strings, numbers, lists and dicts interchangeably on either backend.

``ttl`` follows the Redis convention: ``-2`` when the key does not exist,
``-1`` when it exists without an expiry, otherwise the remaining whole
seconds.
"""

import json
import logging
import math
from collections.abc import Callable
from time import monotonic
from typing import Any, Protocol

import redis.asyncio as redis_asyncio

from woolet_ai.config.settings import Settings

logger = logging.getLogger("woolet.cache")

KEY_MISSING = -2
NO_EXPIRY = -1


class CacheBackendError(Exception):
    """Raised when the cache backend is unavailable or misconfigured."""


class CacheStore(Protocol):
    async def get(self, key: str) -> Any | None: ...

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None: ...

    async def delete(self, key: str) -> None: ...

    async def set_nx(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Set ``key`` only if absent; return whether this call created it."""

    async def ttl(self, key: str) -> int: ...


class InMemoryCacheStore:
    def __init__(self, clock: Callable[[], float] = monotonic) -> None:
        self._clock = clock
        self._entries: dict[str, tuple[str, float | None]] = {}

    def _live(self, key: str) -> tuple[str, float | None] | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        _, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry

    def _expiry(self, ttl_seconds: int | None) -> float | None:
        if ttl_seconds is None:
            return None
        return self._clock() + max(ttl_seconds, 0)

    async def get(self, key: str) -> Any | None:
        entry = self._live(key)
        return json.loads(entry[0]) if entry else None

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        self._entries[key] = (json.dumps(value), self._expiry(ttl_seconds))

    async def delete(self, key: str) -> None:
        self._entries.pop(key, None)

    async def set_nx(self, key: str, value: Any, ttl_seconds: int) -> bool:
        if self._live(key) is not None:
            return False
        self._entries[key] = (json.dumps(value), self._expiry(ttl_seconds))
        return True

    async def ttl(self, key: str) -> int:
        entry = self._live(key)
        if entry is None:
            return KEY_MISSING
        expires_at = entry[1]
        if expires_at is None:
            return NO_EXPIRY
        return max(math.ceil(expires_at - self._clock()), 0)


class RedisCacheStore:
    """Redis-backed cache for multi-replica deployments."""

    def __init__(
        self,
        redis_url: str | None = None,
        key_prefix: str = "woolet",
        client: Any | None = None,
    ) -> None:
        self._key_prefix = key_prefix
        if client is not None:
            self._client = client
            return
        if not redis_url:
            raise CacheBackendError("Redis cache backend selected but WOOLET_REDIS_URL is not set")
        try:
            self._client = redis_asyncio.from_url(redis_url, decode_responses=True)
        except Exception as exc:  # pragma: no cover - runtime guard
            raise CacheBackendError(f"Failed to initialize Redis cache backend: {exc}") from exc

    def _key(self, key: str) -> str:
        return f"{self._key_prefix}:{key}" if self._key_prefix else key

    async def get(self, key: str) -> Any | None:
        raw = await self._client.get(self._key(key))
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except ValueError:
            # Written by something other than this store; hand back the raw string.
            return raw

    async def set(self, key: str, value: Any, ttl_seconds: int | None = None) -> None:
        payload = json.dumps(value)
        if ttl_seconds is None:
            await self._client.set(self._key(key), payload)
        else:
            await self._client.setex(self._key(key), max(ttl_seconds, 1), payload)

    async def delete(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def set_nx(self, key: str, value: Any, ttl_seconds: int) -> bool:
        created = await self._client.set(
            self._key(key), json.dumps(value), nx=True, ex=max(ttl_seconds, 1)
        )
        return bool(created)

    async def ttl(self, key: str) -> int:
        return int(await self._client.ttl(self._key(key)))

    async def close(self) -> None:
        await self._client.aclose()


def build_cache_store(settings: Settings) -> CacheStore:
    backend = settings.cache_backend_normalized
    if backend == "redis":
        store: CacheStore = RedisCacheStore(
            redis_url=settings.redis_url, key_prefix=settings.redis_prefix
        )
    elif backend == "memory":
        store = InMemoryCacheStore()
    else:
        raise CacheBackendError(f"Unknown cache backend: {settings.cache_backend}")
    logger.info("cache_store_built", extra={"backend": backend})
    return store
