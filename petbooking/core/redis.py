from typing import Optional

import redis.asyncio as redis
import structlog

from petbooking.core.config import settings

logger = structlog.get_logger(__name__)


class RedisClient:
    """Redis client holding short-lived booking locks."""

    def __init__(self, url: str):
        self.url = url
        self.redis_pool = None

    async def init_redis(self):
        """Initialize Redis connection pool."""
        try:
            self.redis_pool = redis.ConnectionPool.from_url(
                self.url,
                decode_responses=True,
                retry_on_timeout=True,
                socket_keepalive=True,
            )

            # Test connection
            async with redis.Redis(connection_pool=self.redis_pool) as r:
                await r.ping()
                logger.info("Redis connection established")

        except Exception as e:
            logger.error("Failed to connect to Redis", exc_info=e)
            raise

    async def get_redis(self) -> redis.Redis:
        """Get Redis client instance."""
        if not self.redis_pool:
            await self.init_redis()
        return redis.Redis(connection_pool=self.redis_pool)

    async def acquire_lock(self, key: str, ttl_seconds: int) -> bool:
        """SET NX with expiry. False when someone else holds the key."""
        client = await self.get_redis()
        acquired = await client.set(f"lock:{key}", "1", nx=True, ex=ttl_seconds)
        if not acquired:
            logger.info("Lock already held", key=key)
        return bool(acquired)

    async def release_lock(self, key: str) -> bool:
        try:
            client = await self.get_redis()
            return await client.delete(f"lock:{key}") > 0
        except redis.RedisError as e:
            # The lock expires on its own
            logger.error("Redis lock release error", key=key, exc_info=e)
            return False

    async def close(self):
        if self.redis_pool:
            await self.redis_pool.disconnect()
            self.redis_pool = None


# Global Redis client instance, absent when no Redis is configured
redis_client: Optional[RedisClient] = (
    RedisClient(settings.REDIS_URL) if settings.REDIS_URL else None
)
