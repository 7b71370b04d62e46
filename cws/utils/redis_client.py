# cws/utils/redis_client.py
import redis.asyncio as redis


def get_redis_client(url: str) -> redis.Redis:
    """Returns a Redis client backed by its own connection pool."""
    pool = redis.ConnectionPool.from_url(
        url,
        encoding="utf-8",
        decode_responses=True
    )
    return redis.Redis(connection_pool=pool)
