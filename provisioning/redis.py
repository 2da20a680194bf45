from collections.abc import AsyncGenerator

import redis.asyncio as aioredis

from provisioning.config import settings

redis_pool = aioredis.ConnectionPool.from_url(settings.redis_url)


async def get_redis() -> AsyncGenerator[aioredis.Redis, None]:
    client = aioredis.Redis(connection_pool=redis_pool)
    try:
        yield client
    finally:
        await client.aclose()
