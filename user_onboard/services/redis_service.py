"""Redis connection used for event fan-out."""

from typing import Optional

import redis.asyncio as redis
import structlog

logger = structlog.get_logger(__name__)


async def connect_redis(url: str) -> Optional[redis.Redis]:
    """Create and ping a Redis client.

    Args:
        url: Redis connection URL

    Returns:
        Redis client or None if connection fails (graceful degradation)
    """
    client = redis.from_url(
        url,
        encoding="utf-8",
        decode_responses=True,
    )
    try:
        await client.ping()
    except Exception as e:
        logger.warning("redis_connection_failed", error=str(e))
        await client.aclose()
        return None

    logger.info("redis_connected", url=url.split("@")[-1])
    return client


async def close_redis(client: Optional[redis.Redis]) -> None:
    """Close a Redis client if one was opened."""
    if client is not None:
        await client.aclose()
        logger.info("redis_connection_closed")
