"""
Redis client initialization.

Backs the shared exchange-rate cache when rate_cache_backend is "redis".
"""

import redis.asyncio as redis
from redis.exceptions import RedisError
from freight_ledger.app.core.config import settings


redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def ping_redis() -> bool:
    """
    Test Redis connection.

    Returns:
        True if connection successful, False otherwise
    """
    try:
        return await redis_client.ping()
    except (RedisError, OSError):
        return False
