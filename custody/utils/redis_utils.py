"""Redis connection utilities.

Clients, URLs and the job lock shared by the broker and the reconciliation
tasks.
"""

from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

import redis.asyncio as redis
from loguru import logger

from custody.config.settings import settings


def get_redis_client() -> redis.Redis:
    """
    Create a Redis client with settings from config.

    Returns:
        redis.Redis: Client with decode_responses=True, close with aclose()
    """
    return redis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        password=settings.redis_password,
        db=settings.redis_db,
        decode_responses=True,
    )


def get_redis_url(masked: bool = False) -> str:
    """
    Build the Redis URL.

    Args:
        masked: Replace the password by *** (for logs)
    """
    auth = ""
    if settings.redis_password:
        auth = ":***@" if masked else f":{settings.redis_password}@"
    return f"redis://{auth}{settings.redis_host}:{settings.redis_port}/{settings.redis_db}"


@asynccontextmanager
async def job_lock(name: str, timeout: int) -> AsyncIterator[bool]:
    """
    Non-blocking distributed lock around a periodic job.

    Yields True if this process holds the lock. The lock expires after
    `timeout` seconds even if the holder dies.

    Example:
        >>> async with job_lock("reconcile", 600) as acquired:
        ...     if acquired:
        ...         await run()
    """
    client = get_redis_client()
    lock = client.lock(f"custody:lock:{name}", timeout=timeout, blocking=False)
    acquired = False
    try:
        acquired = await lock.acquire()
        yield acquired
    finally:
        if acquired:
            try:
                await lock.release()
            except redis.RedisError as e:
                # Expired while running; next run takes it over
                logger.warning(f"Lock {name} lost before release: {e}")
        await client.aclose()
