"""Shared Redis client for the key store."""

from redis import asyncio as redis_async

from warden.core.settings import RedisSettings


class _RedisHolder:
    """Lazy singleton for the async Redis client."""

    client: redis_async.Redis | None = None


_holder = _RedisHolder()


def get_redis() -> redis_async.Redis:
    """Return the process-wide client, creating it on first use."""
    if _holder.client is None:
        settings = RedisSettings()
        _holder.client = redis_async.Redis.from_url(
            settings.url,
            decode_responses=True,
            socket_timeout=settings.socket_timeout,
        )
    return _holder.client


async def close_redis() -> None:
    """Release the client's connection pool."""
    if _holder.client is not None:
        await _holder.client.aclose()
    _holder.client = None
