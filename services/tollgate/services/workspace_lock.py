"""Workspace-scoped write serialization.

Mutations on one workspace run one at a time; mutations on different
workspaces never contend. The local backend holds one asyncio.Lock per
workspace and only serializes writers inside a single process. The redis
backend uses a Redis lock keyed by workspace id and serializes writers
across replicas.
"""

import asyncio
import weakref
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from redis.exceptions import LockError, RedisError

from tollgate.config import LockBackend, settings
from tollgate.errors import PersistenceError
from tollgate.logging_config import get_logger
from tollgate.redis.client import get_redis_client

logger = get_logger(__name__)

# Entries disappear once no writer holds or waits on the lock
_local_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = weakref.WeakValueDictionary()


def _get_local_lock(workspace_id: str) -> asyncio.Lock:
    lock = _local_locks.get(workspace_id)
    if lock is None:
        lock = asyncio.Lock()
        _local_locks[workspace_id] = lock
    return lock


@asynccontextmanager
async def _local_workspace_lock(workspace_id: str) -> AsyncGenerator[None]:
    lock = _get_local_lock(workspace_id)
    try:
        await asyncio.wait_for(lock.acquire(), timeout=settings.locking.blocking_timeout_seconds)
    except TimeoutError as e:
        logger.warning("Timed out waiting for workspace lock", workspace_id=workspace_id)
        raise PersistenceError(f"Workspace {workspace_id} is busy, retry the operation") from e
    try:
        yield
    finally:
        lock.release()


@asynccontextmanager
async def _redis_workspace_lock(workspace_id: str) -> AsyncGenerator[None]:
    cfg = settings.locking
    redis = get_redis_client()
    lock = redis.lock(
        f"{cfg.key_prefix}{workspace_id}",
        timeout=cfg.timeout_seconds,
        blocking_timeout=cfg.blocking_timeout_seconds,
    )
    try:
        acquired = await lock.acquire()
    except RedisError as e:
        logger.error("Workspace lock unavailable", workspace_id=workspace_id, error=str(e))
        raise PersistenceError(f"Could not lock workspace {workspace_id}") from e
    if not acquired:
        logger.warning("Timed out waiting for workspace lock", workspace_id=workspace_id)
        raise PersistenceError(f"Workspace {workspace_id} is busy, retry the operation")
    try:
        yield
    finally:
        try:
            await lock.release()
        except LockError:
            # Expired mid-operation; the transaction outcome is already decided
            logger.warning("Workspace lock expired before release", workspace_id=workspace_id)


@asynccontextmanager
async def workspace_write_lock(workspace_id: str) -> AsyncGenerator[None]:
    """Hold the write lock for one workspace for the duration of the block."""
    if settings.locking.backend == LockBackend.REDIS:
        async with _redis_workspace_lock(workspace_id):
            yield
    else:
        async with _local_workspace_lock(workspace_id):
            yield
