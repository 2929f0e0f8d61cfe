"""Redis async client shared by the location store."""

from typing import Optional

import redis.asyncio as aioredis

from freight.config import settings

_client: Optional[aioredis.Redis] = None


async def get_redis() -> aioredis.Redis:
    """Return the process-wide client, creating its pool on first use."""
    global _client
    if _client is None:
        _client = aioredis.Redis(
            connection_pool=aioredis.ConnectionPool.from_url(
                settings.redis_url, decode_responses=True
            )
        )
    return _client


async def close_redis() -> None:
    global _client
    if _client is not None:
        await _client.aclose()
        _client = None
