from redis.asyncio import Redis, from_url


def build_redis(redis_url: str | None) -> Redis | None:
    if not redis_url:
        return None
    return from_url(redis_url, decode_responses=True)
