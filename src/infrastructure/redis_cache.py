# src/infrastructure/redis_cache.py
import os
import redis.asyncio as aioredis

REDIS_URL = os.getenv("REDIS_URL", "redis://localhost:6379/0")


def get_redis_client(url: str = REDIS_URL) -> aioredis.Redis:
    # from_url does not connect until the first command
    return aioredis.from_url(url, decode_responses=True)
