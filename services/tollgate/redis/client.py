"""
Redis connection for the distributed workspace write lock.

Only opened when ``locking.backend`` is ``redis``; the local backend never
touches Redis. Lock keys are plain strings, so responses are decoded.
"""

import redis.asyncio as aioredis

from tollgate.config import LockBackend, settings
from tollgate.logging_config import get_logger

logger = get_logger(__name__)

# Set in init_redis() during startup when the redis lock backend is active
_redis: aioredis.Redis | None = None


async def init_redis() -> None:
    """Connect to Redis if the workspace lock needs it."""
    global _redis  # noqa: PLW0603
    if settings.locking.backend != LockBackend.REDIS:
        logger.debug("Redis not needed by the local lock backend")
        return

    # A lock round trip must finish well inside the writer's wait budget
    _redis = aioredis.from_url(
        str(settings.redis_url),
        decode_responses=True,
        socket_timeout=settings.locking.blocking_timeout_seconds,
    )
    await _redis.ping()
    logger.info("Redis lock backend connected", key_prefix=settings.locking.key_prefix)


async def close_redis() -> None:
    global _redis  # noqa: PLW0603
    if _redis is not None:
        logger.info("Closing Redis connection pool")
        await _redis.aclose()
        _redis = None


def get_redis_client() -> aioredis.Redis:
    """Return the lock backend's client. Raises if init_redis() has not connected."""
    if _redis is None:
        raise RuntimeError("Redis lock backend not initialized, call init_redis() first")
    return _redis


async def get_redis_health() -> bool:
    """Check Redis health for the readiness check."""
    if _redis is None:
        return False
    try:
        await _redis.ping()
    except Exception as e:
        logger.error("Redis health check failed", error=str(e))
        return False
    return True
