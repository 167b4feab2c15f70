import redis

from linkshortener.core.config import settings


def get_redis_client() -> redis.Redis:
    """
    Creates a Redis client using settings.redis_url.
    decode_responses=True returns str instead of bytes.
    """
    return redis.Redis.from_url(settings.redis_url, decode_responses=True)
