"""
Redis client initialization.

Redis backs the distributed per-client ledger lock when the service runs as
several processes (ledger_lock_backend = "redis").
"""

import redis.asyncio as redis
from dentallab.app.core.config import settings


# Connections are opened lazily on first command
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
    except redis.RedisError:
        return False
