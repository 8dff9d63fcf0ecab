"""Caching layer for listing, stats, review page and place search responses."""

import asyncio
import hashlib
import json
import time
import uuid
from typing import Any, Protocol

import redis.asyncio as redis
from pydantic import BaseModel
from redis.exceptions import RedisError

from review_aggregator.core.errors import CacheWriteError
from review_aggregator.telemetry.logger import get_logger

LISTING_NAMESPACE = "listing"
LISTINGS_NAMESPACE = "listings"
REVIEW_PAGES_NAMESPACE = "review_pages"
PLACES_NAMESPACE = "places"


def generate_cache_key(
    namespace: str,
    params: BaseModel | None = None,
    scope: str | None = None,
    prefix: str = "reviews",
) -> str:
    """Deterministic key for validated request parameters.

    Defaults are dumped explicitly, so a query that omits a parameter and one
    that passes its default value share a key.

    Args:
        namespace: Resource family, e.g. ``listings``
        params: Validated pydantic parameters
        scope: Optional sub-key used for targeted invalidation
        prefix: Global key prefix

    Returns:
        ``{prefix}:{namespace}[:{scope}]:{digest}``
    """
    payload = params.model_dump(mode="json") if params is not None else {}
    encoded = json.dumps(payload, sort_keys=True, separators=(",", ":"))
    digest = hashlib.sha256(encoded.encode()).hexdigest()[:16]
    parts = [prefix, namespace] + ([scope] if scope else []) + [digest]
    return ":".join(parts)


class CacheStore(Protocol):
    async def get(self, key: str) -> bytes | None: ...

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> bool: ...

    async def invalidate_prefix(self, prefix: str) -> int: ...


class MemoryCacheStore:
    """Process-local store with per-entry expiry."""

    def __init__(self, clock=time.monotonic):
        self._entries: dict[str, tuple[bytes, float]] = {}
        self._clock = clock

    async def get(self, key: str) -> bytes | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        self._entries[key] = (value, self._clock() + ttl_seconds)
        return True

    async def invalidate_prefix(self, prefix: str) -> int:
        keys = [key for key in self._entries if key.startswith(prefix)]
        for key in keys:
            del self._entries[key]
        return len(keys)

    def __len__(self) -> int:
        return len(self._entries)


class RedisCacheStore:
    """Store backed by ``redis.asyncio``."""

    def __init__(self, client: redis.Redis, scan_count: int = 500):
        self.client = client
        self.scan_count = scan_count

    @classmethod
    def from_url(cls, url: str) -> "RedisCacheStore":
        return cls(redis.Redis.from_url(url))

    async def get(self, key: str) -> bytes | None:
        return await self.client.get(key)

    async def set(self, key: str, value: bytes, ttl_seconds: int) -> bool:
        try:
            return bool(await self.client.set(key, value, ex=ttl_seconds))
        except RedisError as e:
            raise CacheWriteError(str(e)) from e

    async def invalidate_prefix(self, prefix: str) -> int:
        deleted = 0
        batch: list[Any] = []
        async for key in self.client.scan_iter(match=f"{prefix}*", count=self.scan_count):
            batch.append(key)
            if len(batch) >= self.scan_count:
                deleted += await self.client.delete(*batch)
                batch = []
        if batch:
            deleted += await self.client.delete(*batch)
        return deleted

    async def aclose(self) -> None:
        await self.client.aclose()


class ReviewCache:
    """JSON cache over a ``CacheStore``. Failures are logged, never raised."""

    def __init__(
        self,
        store: CacheStore,
        ttl_seconds: int = 300,
        prefix: str = "reviews",
        enabled: bool = True,
    ):
        """Initialize cache.

        Args:
            store: Backing store
            ttl_seconds: Time to live for every entry
            prefix: Global key prefix
            enabled: When False every lookup misses and writes are skipped
        """
        self.store = store
        self.ttl_seconds = ttl_seconds
        self.prefix = prefix
        self.enabled = enabled
        self._pending: set[asyncio.Task] = set()
        self.logger = get_logger("review_cache")

        self.logger.info(
            "Review cache initialized",
            extra={
                "ttl_seconds": ttl_seconds,
                "store": type(store).__name__,
                "enabled": enabled,
                "operation": "cache_init",
            },
        )

    def key(self, namespace: str, params: BaseModel | None = None, scope: str | None = None) -> str:
        return generate_cache_key(namespace, params, scope=scope, prefix=self.prefix)

    async def get_json(self, key: str) -> Any | None:
        """Cached value or None on miss, expiry, disabled cache or store failure."""
        if not self.enabled:
            return None
        start_time = time.time()
        try:
            data = await self.store.get(key)
        except (RedisError, OSError) as e:
            self.logger.warning(
                "Cache read failed, treating as miss",
                extra={
                    "cache_key": key,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "operation": "cache_get_failed",
                },
            )
            return None

        if data is None:
            self.logger.info(
                "Cache miss",
                extra={
                    "cache_key": key,
                    "duration_seconds": time.time() - start_time,
                    "operation": "cache_miss",
                },
            )
            return None

        try:
            value = json.loads(data)
        except ValueError:
            self.logger.warning(
                "Cached entry is not valid JSON, ignoring",
                extra={"cache_key": key, "operation": "cache_entry_corrupt"},
            )
            return None

        self.logger.info(
            "Cache hit",
            extra={
                "cache_key": key,
                "duration_seconds": time.time() - start_time,
                "operation": "cache_hit",
            },
        )
        return value

    async def set_json(self, key: str, value: Any) -> bool:
        """Best-effort write; returns False instead of raising."""
        if not self.enabled:
            return False
        correlation_id = str(uuid.uuid4())
        start_time = time.time()
        data = json.dumps(value, separators=(",", ":")).encode()

        try:
            stored = await self.store.set(key, data, self.ttl_seconds)
        except (CacheWriteError, RedisError, OSError) as e:
            self.logger.error(
                "Cache write failed",
                extra={
                    "correlation_id": correlation_id,
                    "cache_key": key,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "operation": "cache_set_failed",
                },
            )
            return False

        self.logger.info(
            "Cache set operation completed",
            extra={
                "correlation_id": correlation_id,
                "cache_key": key,
                "data_size_bytes": len(data),
                "ttl_seconds": self.ttl_seconds,
                "duration_seconds": time.time() - start_time,
                "operation": "cache_set_complete",
            },
        )
        return stored

    def set_in_background(self, key: str, value: Any) -> None:
        """Schedule ``set_json`` without waiting on it."""
        if not self.enabled:
            return
        task = asyncio.create_task(self.set_json(key, value))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def flush(self) -> None:
        """Wait for background writes scheduled so far."""
        if self._pending:
            await asyncio.gather(*self._pending)

    async def invalidate_prefix(self, prefix: str) -> int:
        correlation_id = str(uuid.uuid4())
        try:
            removed = await self.store.invalidate_prefix(prefix)
        except (RedisError, OSError) as e:
            self.logger.error(
                "Cache invalidation failed",
                extra={
                    "correlation_id": correlation_id,
                    "prefix": prefix,
                    "error": str(e),
                    "error_type": type(e).__name__,
                    "operation": "cache_invalidate_failed",
                },
            )
            return 0

        self.logger.info(
            "Cache prefix invalidated",
            extra={
                "correlation_id": correlation_id,
                "prefix": prefix,
                "removed": removed,
                "operation": "cache_invalidate_success",
            },
        )
        return removed

    async def invalidate_listing(self, listing_id: str | None) -> None:
        """Drop listing and review pages and, when given, one listing's detail and stats."""
        if listing_id:
            await self.invalidate_prefix(f"{self.prefix}:{LISTING_NAMESPACE}:{listing_id}:")
        await self.invalidate_prefix(f"{self.prefix}:{LISTINGS_NAMESPACE}:")
        await self.invalidate_prefix(f"{self.prefix}:{REVIEW_PAGES_NAMESPACE}:")
