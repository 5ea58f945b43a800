"""Redis client and the shared duplicate-invitation index.

When several bot processes front the same guilds, the unordered-pair index
has to live outside any one process. RedisDuplicateIndex keeps the same
contract as the in-process DuplicateIndex:

    claim   -> SET key owner NX EX ttl      (atomic check-and-insert)
    release -> compare-and-delete script    (only the current owner may release)

Usage:
    from trade_engine.infrastructure.redis_client import get_redis, init_redis

    await init_redis()
    index = RedisDuplicateIndex(get_redis(), ttl_seconds=3600)
"""

from __future__ import annotations

import redis.asyncio as aioredis

from trade_engine.config import get_settings
from trade_engine.logging_config import get_logger

logger = get_logger(__name__)

_redis_client: aioredis.Redis | None = None


async def init_redis() -> aioredis.Redis:
    """Initialize and return the Redis client. Called during app startup."""
    global _redis_client
    settings = get_settings()
    _redis_client = aioredis.from_url(
        settings.redis_url,
        decode_responses=True,
    )
    # Verify connectivity
    await _redis_client.ping()
    logger.info("redis.connected", url=settings.redis_url)
    return _redis_client


def get_redis() -> aioredis.Redis:
    """Return the Redis client singleton. Must call init_redis() first."""
    if _redis_client is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis_client


async def close_redis() -> None:
    """Close the Redis connection. Called during app shutdown."""
    global _redis_client
    if _redis_client is not None:
        await _redis_client.aclose()
        logger.info("redis.disconnected")
        _redis_client = None


# --- Duplicate Index ---

_RELEASE_SCRIPT = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
end
return 0
"""


class RedisDuplicateIndex:
    """Unordered participant pair -> live trade id, shared across processes."""

    def __init__(
        self,
        client: aioredis.Redis,
        ttl_seconds: int = 3600,
        prefix: str = "trade:pair",
    ) -> None:
        self._client = client
        self._ttl = ttl_seconds
        self._prefix = prefix

    def _key(self, key: tuple[str, str]) -> str:
        low, high = key
        return f"{self._prefix}:{low}:{high}"

    async def claim(self, key: tuple[str, str], owner_id: str) -> str | None:
        redis_key = self._key(key)
        inserted = await self._client.set(redis_key, owner_id, nx=True, ex=self._ttl)
        if inserted:
            return None
        existing = await self._client.get(redis_key)
        if existing is None:
            # Released between SET and GET; still reported as taken.
            return ""
        return existing

    async def release(self, key: tuple[str, str], owner_id: str) -> bool:
        removed = await self._client.eval(_RELEASE_SCRIPT, 1, self._key(key), owner_id)
        if not removed:
            logger.debug("pair_index.release_skipped", key=key, owner_id=owner_id)
        return bool(removed)

    async def lookup(self, key: tuple[str, str]) -> str | None:
        return await self._client.get(self._key(key))
