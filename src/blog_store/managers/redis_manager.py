"""
# Redis Manager

Owns the `redis.asyncio` client used by the recency index.

The client is created lazily from `settings.REDIS_URL` with
`decode_responses=True` and `settings.REDIS_SOCKET_TIMEOUT` applied to both
connect and socket operations, so every stream command is bounded.

## Usage Example

```python
from blog_store.managers.redis_manager import redis_manager

client = await redis_manager.get_client()
entries = await client.xrevrange("blogs:recent:10", count=10)
```
"""

from typing import Optional

from redis import asyncio as aioredis
from redis.exceptions import RedisError

from blog_store.config import settings
from blog_store.managers.logging_manager import get_logger

logger = get_logger(prefix="[REDIS]")


class RedisManager:
    """Lifecycle wrapper around the async redis client."""

    def __init__(self, url: Optional[str] = None):
        self.url = url or settings.REDIS_URL
        self.client: Optional[aioredis.Redis] = None

    async def connect(self) -> aioredis.Redis:
        if self.client is None:
            self.client = aioredis.from_url(
                self.url,
                decode_responses=True,
                socket_timeout=settings.REDIS_SOCKET_TIMEOUT,
                socket_connect_timeout=settings.REDIS_SOCKET_TIMEOUT,
            )
            logger.info("Redis client created for %s", self.url.split("@")[-1])
        return self.client

    async def get_client(self) -> aioredis.Redis:
        return await self.connect()

    def key(self, name: str) -> str:
        """Apply the configured key prefix to a key name."""
        if settings.REDIS_KEY_PREFIX:
            return f"{settings.REDIS_KEY_PREFIX}:{name}"
        return name

    async def health_check(self) -> bool:
        if self.client is None:
            logger.warning("Health check failed: No redis client available")
            return False
        try:
            return bool(await self.client.ping())
        except RedisError as e:
            logger.error("Redis health check failed: %s", e)
            return False

    async def disconnect(self):
        if self.client is None:
            return
        await self.client.aclose()
        self.client = None
        logger.info("Redis client closed")


# Global redis manager instance
redis_manager = RedisManager()
