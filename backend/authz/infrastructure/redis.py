"""Redis client for the shared permission cache and worker coordination.

This module provides async Redis operations for:
- TTL'd cache entries and their invalidation
- Cache metric counters and the warming set
- The expiry sweep lock and its invalidation retry set

Callers decide how to treat RedisError: cache reads degrade to a miss,
invalidations propagate.
"""

from __future__ import annotations

import asyncio
import logging
from enum import Enum, auto

from redis.asyncio import Redis as AsyncRedis, from_url as async_from_url

logger = logging.getLogger(__name__)


class _RedisLifecycleState(Enum):
    """Lifecycle states for the Redis singleton.

    State transitions:
    - UNINITIALIZED -> INITIALIZED (via init_redis)
    - INITIALIZED -> CLOSED (via close_redis)
    - CLOSED -> INITIALIZED (via init_redis - allows restart)
    """
    UNINITIALIZED = auto()
    INITIALIZED = auto()
    CLOSED = auto()


class RedisClient:
    """Async Redis client. Holds no cache state in process memory."""

    def __init__(self, redis_url: str) -> None:
        self._redis_url = redis_url
        self._redis: AsyncRedis | None = None

    async def connect(self) -> None:
        """Establish Redis connection."""
        if self._redis is None:
            self._redis = async_from_url(
                self._redis_url,
                encoding="utf-8",
                decode_responses=True,
            )
            logger.info("Redis connection established")

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None
            logger.info("Redis connection closed")

    async def _ensure_connected(self) -> AsyncRedis:
        if self._redis is None:
            await self.connect()
        assert self._redis is not None
        return self._redis

    # ------------------------------------------------------------------
    # Values
    # ------------------------------------------------------------------

    async def get_value(self, key: str) -> str | None:
        redis = await self._ensure_connected()
        return await redis.get(key)

    async def set_value(self, key: str, value: str, ttl_seconds: int | None = None) -> None:
        """Set a string value with optional TTL."""
        redis = await self._ensure_connected()
        if ttl_seconds:
            await redis.setex(key, ttl_seconds, value)
        else:
            await redis.set(key, value)

    async def delete_keys(self, *keys: str) -> int:
        """Delete keys in one round trip. Returns how many existed."""
        if not keys:
            return 0
        redis = await self._ensure_connected()
        return int(await redis.delete(*keys))

    async def exists(self, key: str) -> bool:
        redis = await self._ensure_connected()
        return bool(await redis.exists(key))

    async def get_ttl(self, key: str) -> int:
        """Remaining TTL in seconds (-2 missing, -1 no expiry)."""
        redis = await self._ensure_connected()
        return int(await redis.ttl(key))

    async def delete_matching(self, pattern: str, batch_size: int = 500) -> int:
        """Delete every key matching ``pattern`` using SCAN, never KEYS."""
        redis = await self._ensure_connected()
        deleted = 0
        batch: list[str] = []
        async for key in redis.scan_iter(match=pattern, count=batch_size):
            batch.append(key)
            if len(batch) >= batch_size:
                deleted += int(await redis.delete(*batch))
                batch = []
        if batch:
            deleted += int(await redis.delete(*batch))
        return deleted

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    async def increment_counter(self, key: str, ttl_seconds: int | None = None) -> int:
        """Increment a counter and set its TTL on first increment."""
        redis = await self._ensure_connected()
        async with redis.pipeline(transaction=True) as pipe:
            pipe.incr(key)
            if ttl_seconds is not None:
                pipe.expire(key, ttl_seconds, nx=True)
            results = await pipe.execute()
            return int(results[0])

    async def get_counter(self, key: str) -> int:
        redis = await self._ensure_connected()
        value = await redis.get(key)
        return int(value) if value else 0

    # ------------------------------------------------------------------
    # Sorted and plain sets
    # ------------------------------------------------------------------

    async def bump_score(self, key: str, member: str, max_members: int) -> None:
        """Increment ``member`` and trim the set to the top ``max_members``."""
        redis = await self._ensure_connected()
        async with redis.pipeline(transaction=True) as pipe:
            pipe.zincrby(key, 1, member)
            pipe.zremrangebyrank(key, 0, -(max_members + 1))
            await pipe.execute()

    async def top_members(self, key: str, limit: int) -> list[str]:
        redis = await self._ensure_connected()
        return list(await redis.zrevrange(key, 0, limit - 1))

    async def add_members(self, key: str, *members: str) -> None:
        if not members:
            return
        redis = await self._ensure_connected()
        await redis.sadd(key, *members)

    async def remove_members(self, key: str, *members: str) -> None:
        if not members:
            return
        redis = await self._ensure_connected()
        await redis.srem(key, *members)

    async def get_members(self, key: str) -> set[str]:
        redis = await self._ensure_connected()
        return set(await redis.smembers(key))

    # ------------------------------------------------------------------
    # Locks
    # ------------------------------------------------------------------

    async def try_acquire_lock(self, key: str, owner: str, ttl_seconds: int = 60) -> bool:
        """SET NX EX. Only one worker holds ``key`` at a time."""
        redis = await self._ensure_connected()
        acquired = await redis.set(key, owner, nx=True, ex=ttl_seconds)
        return bool(acquired)

    async def extend_lock(self, key: str, owner: str, ttl_seconds: int = 60) -> bool:
        """Refresh the TTL if ``owner`` still holds the lock."""
        redis = await self._ensure_connected()
        if await redis.get(key) != owner:
            return False
        return bool(await redis.expire(key, ttl_seconds))

    async def release_lock(self, key: str, owner: str) -> None:
        redis = await self._ensure_connected()
        if await redis.get(key) == owner:
            await redis.delete(key)


# Global instance (created at startup, not at import)
_redis_client: RedisClient | None = None
_redis_state: _RedisLifecycleState = _RedisLifecycleState.UNINITIALIZED
_redis_lock: asyncio.Lock = asyncio.Lock()


async def init_redis(redis_url: str) -> RedisClient:
    """Initialize the global Redis client.

    Idempotent: an already initialized client is returned as is.

    Args:
        redis_url: Redis connection URL

    Returns:
        Redis client instance
    """
    global _redis_client, _redis_state

    async with _redis_lock:
        if _redis_state == _RedisLifecycleState.INITIALIZED:
            assert _redis_client is not None
            logger.debug("Redis already initialized, returning existing client")
            return _redis_client

        logger.info("Initializing Redis client (current state: %s)", _redis_state.name)
        _redis_client = RedisClient(redis_url)
        await _redis_client.connect()
        _redis_state = _RedisLifecycleState.INITIALIZED
        return _redis_client


async def close_redis() -> None:
    """Close the global Redis client. Safe to call when not initialized."""
    global _redis_client, _redis_state

    async with _redis_lock:
        if _redis_state != _RedisLifecycleState.INITIALIZED:
            logger.debug("Redis not initialized (state: %s), nothing to close", _redis_state.name)
            return

        if _redis_client is not None:
            await _redis_client.disconnect()
            _redis_client = None
        _redis_state = _RedisLifecycleState.CLOSED
        logger.info("Redis client closed")


def get_redis() -> RedisClient:
    """Get the global async Redis client.

    Raises:
        RuntimeError: If Redis client not initialized
    """
    if _redis_state != _RedisLifecycleState.INITIALIZED or _redis_client is None:
        raise RuntimeError("Redis client not initialized. Call init_redis() first.")
    return _redis_client


def _reset_for_testing() -> None:
    global _redis_client, _redis_state, _redis_lock
    _redis_client = None
    _redis_state = _RedisLifecycleState.UNINITIALIZED
    # a contended lock binds to the loop it was awaited on
    _redis_lock = asyncio.Lock()
