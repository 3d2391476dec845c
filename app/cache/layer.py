import asyncio
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Optional

from cachetools import TTLCache
from redis.asyncio import Redis, RedisError

from app.core.config import Settings
from app.models import percentage

logger = logging.getLogger(__name__)

# Anything Redis can throw at us, including a call cut off by our own timeout.
CACHE_FAILURES = (RedisError, OSError, asyncio.TimeoutError)


@dataclass
class CacheStats:
    """Process-wide cache counters, never reset."""

    hits: int = 0
    misses: int = 0
    errors: int = 0


def hit_rate(stats: CacheStats) -> int:
    return percentage(stats.hits, stats.hits + stats.misses)


class CacheLayer:
    """
    Cache-aside access to Redis.

    Redis is only an accelerator: no method raises because of it.
    - get() reports failures and degraded mode as a miss
    - set() becomes a no-op when Redis is unreachable
    - invalidate() always tries Redis and swallows failures
    - every Redis call is bounded by ``cache_op_timeout``

    A failed call marks the layer disconnected (degraded mode). While degraded,
    get() and set() short-circuit and the connection is probed again at most once
    per ``cache_retry_interval``, or on demand through ping().
    """

    def __init__(self, settings: Settings, client: Redis | None = None):
        self._settings = settings
        self._redis = client
        self._connected = False
        self._last_failure: float | None = None
        self.stats = CacheStats()

        # Per-key locks so concurrent misses on one key hit the database once.
        # Entries outlive any realistic load and are dropped after 5 minutes.
        self._locks = TTLCache(maxsize=10_000, ttl=300)

    @property
    def connected(self) -> bool:
        return self._connected

    async def init_cache(self):
        """Make the single startup connection attempt."""
        if self._redis is None:
            self._redis = Redis.from_url(
                self._settings.redis_dsn,
                encoding="utf-8",
                decode_responses=True,
                max_connections=self._settings.redis_pool_size,
                socket_connect_timeout=5,
                socket_keepalive=True,
                health_check_interval=30,
            )

        try:
            await self._call(self._redis.ping())
        except CACHE_FAILURES as e:
            logger.error(f"Redis connection failed: {e}")
            logger.warning("App will work without cache (degraded mode)")
            self._connected = False
            self._last_failure = time.monotonic()
            return

        self._connected = True
        logger.info("Redis connection established")

    def _key(self, key: str) -> str:
        return f"{self._settings.cache_namespace}{key}"

    def _serialize(self, value: Any) -> str:
        try:
            return json.dumps(value, default=str)
        except (TypeError, ValueError) as e:
            logger.error(f"Serialization failed: {e}")
            raise

    async def _call(self, awaitable):
        return await asyncio.wait_for(
            awaitable, timeout=self._settings.cache_op_timeout
        )

    def _mark_disconnected(self, error: Exception):
        if self._connected:
            logger.warning(f"Redis unavailable, switching to degraded mode: {error}")
        self._connected = False
        self._last_failure = time.monotonic()

    def _record_error(self, operation: str, key: str, error: Exception):
        self.stats.errors += 1
        logger.error(f"Cache {operation} error on {key}: {error!r}")
        self._mark_disconnected(error)

    async def _available(self) -> bool:
        if self._connected:
            return True
        if self._redis is None:
            return False
        if (
            self._last_failure is not None
            and time.monotonic() - self._last_failure
            < self._settings.cache_retry_interval
        ):
            return False
        return await self._probe()

    async def _probe(self) -> bool:
        try:
            await self._call(self._redis.ping())
        except CACHE_FAILURES as e:
            logger.debug(f"Redis still unreachable: {e!r}")
            self._last_failure = time.monotonic()
            return False
        self._connected = True
        logger.info("Redis connection re-established")
        return True

    async def get(self, key: str, record: bool = True) -> Optional[Any]:
        """
        Read and deserialize a cached value.

        Args:
            key: Cache key (namespaced automatically)
            record: Count the lookup as a hit or miss

        Returns:
            The cached value, or None on a miss, in degraded mode, or on error
        """
        if not await self._available():
            if record:
                self.stats.misses += 1
            return None

        try:
            raw = await self._call(self._redis.get(self._key(key)))
        except CACHE_FAILURES as e:
            self._record_error("GET", key, e)
            return None

        if raw is None:
            if record:
                self.stats.misses += 1
            logger.debug(f"CACHE MISS: {key}")
            return None

        try:
            value = json.loads(raw)
        except json.JSONDecodeError as e:
            self.stats.errors += 1
            logger.error(f"Discarding undecodable cache entry {key}: {e}")
            return None

        if record:
            self.stats.hits += 1
        logger.debug(f"CACHE HIT: {key}")
        return value

    def reject(self, key: str, error: Exception):
        """Count a cached value the caller could not use."""
        self.stats.errors += 1
        logger.error(f"Discarding malformed cache entry {key}: {error}")

    async def set(self, key: str, value: Any, ttl: Optional[int] = None):
        """Store a value as JSON with an expiry, best effort."""
        if not await self._available():
            return

        ttl = ttl or self._settings.cache_ttl_seconds
        data = self._serialize(value)
        try:
            await self._call(self._redis.set(self._key(key), data, ex=ttl))
            logger.debug(f"CACHE SET: {key} (TTL: {ttl}s)")
        except CACHE_FAILURES as e:
            self._record_error("SET", key, e)

    async def invalidate(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern, best effort.

        Attempted whenever a client exists, degraded mode included. Success
        while degraded ends degraded mode.

        Returns the number of keys removed.
        """
        if self._redis is None:
            return 0

        deleted_count = 0
        try:
            cursor = 0
            while True:
                cursor, keys = await self._call(
                    self._redis.scan(cursor, match=self._key(pattern), count=100)
                )
                if keys:
                    await self._call(self._redis.delete(*keys))
                    deleted_count += len(keys)
                if cursor == 0:
                    break
        except CACHE_FAILURES as e:
            self._record_error("INVALIDATE", pattern, e)
            return deleted_count

        if not self._connected:
            self._connected = True
            logger.info("Redis connection re-established")

        if deleted_count:
            logger.debug(
                f"CACHE INVALIDATED: {deleted_count} keys matching {pattern!r}"
            )
        return deleted_count

    def lock_for(self, key: str) -> asyncio.Lock:
        return self._locks.setdefault(key, asyncio.Lock())

    async def ping(self) -> str:
        """Health probe: "healthy", "unhealthy" or "disconnected"."""
        if self._redis is None:
            return "disconnected"
        if not self._connected:
            return "healthy" if await self._probe() else "disconnected"
        try:
            await self._call(self._redis.ping())
        except CACHE_FAILURES as e:
            self._mark_disconnected(e)
            return "unhealthy"
        return "healthy"

    def get_stats(self) -> dict:
        return {
            "hits": self.stats.hits,
            "misses": self.stats.misses,
            "errors": self.stats.errors,
            "hitRate": hit_rate(self.stats),
        }

    async def health(self) -> dict:
        return {"status": await self.ping(), "stats": self.get_stats()}

    async def close(self):
        """Graceful shutdown of cache connections."""
        if self._redis:
            try:
                await self._redis.aclose()
                logger.info("Redis connection closed")
            except Exception as e:
                logger.error(f"Error closing Redis: {e}")
