"""
FastAPI application factory for the Tollgate API server.

Uses lifespan handler for startup/shutdown with async resource management.
"""

import uuid
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from tollgate.config import settings
from tollgate.db.session import close_db, init_db
from tollgate.errors import (
    ConflictError,
    NotFoundError,
    PersistenceError,
    TollgateError,
    ValidationError,
)
from tollgate.logging_config import configure_logging, get_logger
from tollgate.redis.client import close_redis, init_redis

from .health import router as health_router

logger = get_logger(__name__)

_ERROR_STATUS: dict[type[TollgateError], int] = {
    ValidationError: 422,
    NotFoundError: 404,
    ConflictError: 409,
    PersistenceError: 503,
}


def error_status(exc: TollgateError) -> int:
    for error_type, status_code in _ERROR_STATUS.items():
        if isinstance(exc, error_type):
            return status_code
    return 500


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
    """Application lifespan handler for startup and shutdown."""
    # Startup
    configure_logging(
        json_logs=settings.json_logs, log_level=settings.log_level, app_name=settings.app_name
    )
    logger.info(
        "Starting Tollgate API server",
        version="0.1.0",
        lock_backend=settings.locking.backend,
        identity_header=settings.identity_header,
    )

    await init_db()
    await init_redis()

    yield

    # Shutdown
    logger.info("Shutting down Tollgate API server")
    await close_redis()
    await close_db()


def create_application() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title="Tollgate API",
        description="Tollgate - workspace permission resolution and audit",
        version="0.1.0",
        lifespan=lifespan,
        docs_url="/api/docs",
        redoc_url="/api/redoc",
        openapi_url="/api/openapi.json",
    )

    # CORS middleware
    if settings.cors.allow_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=settings.cors.allow_origins,
            allow_credentials=settings.cors.allow_credentials,
            allow_methods=settings.cors.allow_methods,
            allow_headers=settings.cors.allow_headers,
        )

    # Request ID middleware
    @app.middleware("http")
    async def add_request_id(request: Request, call_next):  # type: ignore[no-untyped-def]
        """Ensure every request has a request ID for logging correlation."""
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        structlog.contextvars.bind_contextvars(request_id=request_id)

        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        structlog.contextvars.unbind_contextvars("request_id")

        return response

    # Engine errors
    @app.exception_handler(TollgateError)
    async def tollgate_exception_handler(request: Request, exc: TollgateError) -> JSONResponse:
        """Map engine error kinds to HTTP status codes."""
        status_code = error_status(exc)
        headers = {"Retry-After": "1"} if isinstance(exc, PersistenceError) else None
        if status_code >= 500:
            logger.warning("Request failed", error=str(exc), path=str(request.url.path))
        return JSONResponse(
            status_code=status_code,
            content={"detail": str(exc)},
            headers=headers,
        )

    # Global exception handler
    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        """Global exception handler for unhandled errors."""
        logger.error("Unhandled exception", exc_info=exc, path=str(request.url.path))
        return JSONResponse(
            status_code=500,
            content={"detail": "Internal server error"},
        )

    # Health endpoints (no prefix)
    app.include_router(health_router)

    # Permission catalog and resolution
    from tollgate.api.routers.permissions import router as permissions_router

    app.include_router(permissions_router, prefix=settings.api_prefix)

    # Workspace members and ownership
    from tollgate.api.routers.members import router as members_router

    app.include_router(members_router, prefix=settings.api_prefix)

    # Custom role CRUD
    from tollgate.api.routers.roles import router as roles_router

    app.include_router(roles_router, prefix=settings.api_prefix)

    # Group CRUD and membership
    from tollgate.api.routers.groups import router as groups_router

    app.include_router(groups_router, prefix=settings.api_prefix)

    # Role assignment management
    from tollgate.api.routers.assignments import router as assignments_router

    app.include_router(assignments_router, prefix=settings.api_prefix)

    # Board and project overrides
    from tollgate.api.routers.overrides import router as overrides_router

    app.include_router(overrides_router, prefix=settings.api_prefix)

    # Audit log
    from tollgate.api.routers.audit import router as audit_router

    app.include_router(audit_router, prefix=settings.api_prefix)

    return app


# Application instance
app = create_application()
