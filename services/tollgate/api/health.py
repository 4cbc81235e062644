"""
Liveness and readiness endpoints.

Readiness covers what a mutation needs: the database, plus Redis when it
backs the workspace write lock. Resolution only needs the database.
"""

from collections.abc import Awaitable, Callable

from fastapi import APIRouter, Response, status

from tollgate.config import LockBackend, settings
from tollgate.db.session import get_db_health
from tollgate.logging_config import get_logger
from tollgate.redis.client import get_redis_health

router = APIRouter(tags=["health"])
logger = get_logger(__name__)


def _dependency_checks() -> dict[str, Callable[[], Awaitable[bool]]]:
    checks: dict[str, Callable[[], Awaitable[bool]]] = {"database": get_db_health}
    if settings.locking.backend == LockBackend.REDIS:
        checks["redis"] = get_redis_health
    return checks


@router.get("/health", status_code=status.HTTP_200_OK)
async def health() -> dict[str, str]:
    """Liveness: the process is serving requests."""
    return {"status": "healthy"}


@router.get("/ready", status_code=status.HTTP_200_OK)
async def ready(response: Response) -> dict:
    results = {
        name: "healthy" if await check() else "unhealthy"
        for name, check in _dependency_checks().items()
    }
    body = {
        "status": "ready",
        "lock-backend": settings.locking.backend.value,
        "checks": results,
    }

    if any(value != "healthy" for value in results.values()):
        logger.warning("Readiness check failed", checks=results)
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE
        body["status"] = "not ready"
    return body
