"""
Redis client initialization and connection management.

Redis backs the read projection cache. It is best-effort: nothing in the
request path may fail because Redis is down.
"""

import redis.asyncio as redis
from lastmile.app.core.config import settings


redis_client = redis.from_url(
    settings.redis_url,
    decode_responses=settings.redis_decode_responses,
)


async def get_redis():
    """
    Get Redis client instance.
    
    Used as a FastAPI dependency so tests can swap in a fake.
    """
    return redis_client


async def ping_redis(client=None) -> bool:
    """
    Test Redis connection.
    
    Returns:
        True if connection successful, False otherwise
    """
    try:
        return bool(await (client or redis_client).ping())
    except Exception:
        return False
