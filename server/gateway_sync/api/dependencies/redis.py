from collections.abc import AsyncIterator

from redis.asyncio import Redis

from gateway_sync.core.config import get_settings
from gateway_sync.core.logging import get_logger

logger = get_logger(__name__)


async def get_redis_client() -> AsyncIterator[Redis | None]:
    settings = get_settings()
    client: Redis | None = None
    if settings.redis_enabled:
        try:
            client = Redis.from_url(settings.redis_url)
        except ValueError as exc:
            logger.warning("redis.unavailable", error=str(exc))
    try:
        yield client
    finally:
        if client is not None:
            await client.aclose()
