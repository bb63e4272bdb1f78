import json
import logging
from redis import asyncio as aioredis
from storefront.core.config import settings

logger = logging.getLogger(__name__)

class RedisClient:
    def __init__(self):
        self.redis = None

    async def connect(self):
        if not self.redis:
            self.redis = await aioredis.from_url(settings.REDIS_URL, encoding="utf-8", decode_responses=True)
            logger.info("Connected to Redis.")

    async def close(self):
        if self.redis:
            await self.redis.aclose()

    @staticmethod
    def _order_key(order_number: str) -> str:
        return f"order:{order_number}"

    async def get_cached_order(self, order_number: str):
        if not self.redis:
            await self.connect()
        try:
            data = await self.redis.get(self._order_key(order_number))
            return json.loads(data) if data else None
        except Exception as e:
            logger.error(f"Redis get error: {e}")
            return None

    async def set_cached_order(self, order_number: str, data: dict, ttl: int = None):
        if not self.redis:
            await self.connect()
        ttl = ttl or settings.ORDER_CACHE_TTL_SECONDS
        try:
            await self.redis.set(self._order_key(order_number), json.dumps(data, default=str), ex=ttl)
        except Exception as e:
            logger.error(f"Redis set error: {e}")

    async def invalidate_order(self, order_number: str):
        if not self.redis:
            await self.connect()
        try:
            await self.redis.delete(self._order_key(order_number))
        except Exception as e:
            logger.error(f"Redis delete error: {e}")

    async def check_rate_limit(self, ip_address: str, limit: int, window: int) -> bool:
        """
        Returns True if request is allowed, False if rate limited.
        """
        if not settings.API_RATE_LIMIT_ENABLED:
            return True

        if not self.redis:
            await self.connect()

        key = f"rate_limit:orders:{ip_address}"
        try:
            # Fixed window counter
            current = await self.redis.incr(key)
            if current == 1:
                await self.redis.expire(key, window)

            return current <= limit
        except Exception as e:
            logger.error(f"Redis rate limit error: {e}")
            return True # Fail open to avoid blocking checkout on cache failure

redis_client = RedisClient()

async def get_redis():
    if not redis_client.redis:
        await redis_client.connect()
    return redis_client
