import redis.asyncio as redis


def get_redis(url: str | None):
    """
    Build an asyncio Redis client, or None when no url is configured so
    callers can fall back to an in-process store.
    """
    if not url:
        return None
    return redis.from_url(url, decode_responses=True)
