"""FastAPI dependencies for caller identity and permission checks.

Authentication happens upstream: the session layer in front of Tollgate
verifies the caller and forwards their user id in the identity header
(``X-User-Id`` by default). Requests without it are rejected with 401.

Authorization is Tollgate's own job: ``require_permission`` resolves the
caller in the path's workspace and rejects with 403 unless the code is
granted.
"""

import uuid
from collections.abc import Awaitable, Callable
from dataclasses import dataclass

from fastapi import Depends, HTTPException, Path, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.config import settings
from tollgate.db.session import get_db
from tollgate.errors import ValidationError
from tollgate.logging_config import get_logger
from tollgate.services.resolution_service import check_permission

logger = get_logger(__name__)

# URL segment -> resource type
RESOURCE_KINDS = {"boards": "board", "projects": "project"}


@dataclass
class AuthenticatedUser:
    """Caller identity forwarded by the upstream session layer."""

    user_id: str


async def get_current_user(request: Request) -> AuthenticatedUser:
    user_id = (request.headers.get(settings.identity_header) or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Missing {settings.identity_header} header",
        )
    return AuthenticatedUser(user_id=user_id)


def require_permission(code: str) -> Callable[..., Awaitable[AuthenticatedUser]]:
    """Dependency factory: the caller must hold ``code`` in the path's workspace."""

    async def _check(
        workspace_id: str = Path(...),
        user: AuthenticatedUser = Depends(get_current_user),
        db: AsyncSession = Depends(get_db),
    ) -> AuthenticatedUser:
        decision = await check_permission(db, user.user_id, workspace_id, code)
        if not decision.allowed:
            logger.info(
                "Permission denied",
                user=user.user_id,
                workspace_id=workspace_id,
                permission=code,
            )
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission '{code}' required",
            )
        return user

    return _check


def resource_type_for(resource_kind: str) -> str:
    resource_type = RESOURCE_KINDS.get(resource_kind)
    if resource_type is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Not found")
    return resource_type


async def require_resource_share(
    workspace_id: str = Path(...),
    resource_kind: str = Path(...),
    resource_id: str = Path(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> AuthenticatedUser:
    """The caller must hold ``board.share`` / ``project.share`` on the resource."""
    resource_type = resource_type_for(resource_kind)
    code = f"{resource_type}.share"
    decision = await check_permission(
        db, user.user_id, workspace_id, code, resource_type, resource_id
    )
    if not decision.allowed:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=f"Permission '{code}' required",
        )
    return user


# ── Request payload helpers ──────────────────────────────────────────────


def body_attributes(body: dict) -> dict:
    """Pull ``data.attributes`` out of a JSON:API-style request body."""
    data = body.get("data")
    if not isinstance(data, dict):
        raise ValidationError("Request body must contain a 'data' object")
    attrs = data.get("attributes", {})
    if not isinstance(attrs, dict):
        raise ValidationError("'data.attributes' must be an object")
    return attrs


def parse_uuid(value: object, field_name: str) -> uuid.UUID:
    if not isinstance(value, str):
        raise ValidationError(f"'{field_name}' is required")
    try:
        return uuid.UUID(value)
    except ValueError as e:
        raise ValidationError(f"'{field_name}' must be a UUID") from e
