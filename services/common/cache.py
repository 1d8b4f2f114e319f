"""Async Redis clients and the lock primitives built on them."""

from __future__ import annotations

from redis.asyncio import Redis

from .config import ServiceSettings

_CACHE: dict[str, Redis] = {}


def get_redis_client(redis_url: str) -> Redis:
    """Return a cached Redis client for the given URL."""

    if redis_url not in _CACHE:
        _CACHE[redis_url] = Redis.from_url(redis_url, decode_responses=True)
    return _CACHE[redis_url]


def resolve_redis(settings: ServiceSettings) -> Redis | None:
    """Return a Redis client or None if not configured."""

    if not settings.redis_url:
        return None
    return get_redis_client(settings.redis_url)


async def close_redis_connections() -> None:
    """Close all cached Redis connections (used for shutdown/tests)."""

    for redis in _CACHE.values():
        await redis.aclose()
    _CACHE.clear()


async def acquire_lock(redis: Redis, key: str, token: str, *, ttl_seconds: int) -> bool:
    """Take ``key`` for ``token`` unless someone else holds it; the lock expires after ``ttl_seconds``."""

    return bool(await redis.set(key, token, nx=True, ex=ttl_seconds))


async def release_lock(redis: Redis, key: str, token: str) -> bool:
    """Drop ``key`` only while ``token`` still holds it; an expired or stolen lock is left alone."""

    if await redis.get(key) != token:
        return False
    await redis.delete(key)
    return True
