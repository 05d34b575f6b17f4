import logging
from redis import asyncio as aioredis
from orderdesk.core.config import settings

logger = logging.getLogger(__name__)

class RedisClient:
    def __init__(self, url: str = None):
        self.url = url or settings.REDIS_URL
        self.redis = None

    async def connect(self):
        if not self.redis:
            self.redis = await aioredis.from_url(self.url, encoding="utf-8", decode_responses=True)
            logger.info("Connected to Redis.")

    async def close(self):
        if self.redis:
            await self.redis.aclose()
            self.redis = None

    async def incr_with_expiry(self, key: str, ttl: int) -> int:
        """
        Atomically increments a counter key and returns the new value.
        The expiry is set when the key is first created.
        """
        if not self.redis:
            await self.connect()

        current = await self.redis.incr(key)
        if current == 1:
            await self.redis.expire(key, ttl)
        return current

    async def incr_by(self, key: str, amount: int) -> int:
        if not self.redis:
            await self.connect()
        return await self.redis.incrby(key, amount)

redis_client = RedisClient()

