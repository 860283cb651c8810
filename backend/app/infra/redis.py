import logging
import os

from redis.asyncio import Redis as AsyncRedis

logger = logging.getLogger("modl.redis")


def get_async_redis_client(redis_url: str | None = None) -> AsyncRedis:
    """Create an async Redis client from the given URL or the REDIS_URL variable."""
    url = redis_url or os.getenv("REDIS_URL")
    if not url:
        raise ValueError("REDIS_URL environment variable must be set")
    logger.debug("Creating async Redis client")
    return AsyncRedis.from_url(url, decode_responses=True)
