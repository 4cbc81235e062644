"""Board and project override endpoints.

``{kind}`` is ``boards`` or ``projects``. Managing overrides on a resource
requires ``board.share`` / ``project.share`` on that resource.

Endpoints:
    GET    /api/v1/workspaces/{ws}/{kind}/{rid}/overrides                          - list
    PUT    /api/v1/workspaces/{ws}/{kind}/{rid}/users/{user_id}/overrides/{code}   - set
    DELETE /api/v1/workspaces/{ws}/{kind}/{rid}/users/{user_id}/overrides/{code}   - clear one
    DELETE /api/v1/workspaces/{ws}/{kind}/{rid}/users/{user_id}/overrides          - clear all
    PUT    /api/v1/workspaces/{ws}/{kind}/{rid}/users/{user_id}/permission-level   - view/edit/admin
"""

from fastapi import APIRouter, Body, Depends, Path
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.api.dependencies import (
    AuthenticatedUser,
    body_attributes,
    require_resource_share,
    resource_type_for,
)
from tollgate.db.session import get_db
from tollgate.services import override_service

router = APIRouter(tags=["overrides"])

_BASE = "/workspaces/{workspace_id}/{resource_kind}/{resource_id}"


@router.get(_BASE + "/overrides")
async def list_overrides(
    workspace_id: str = Path(...),
    resource_kind: str = Path(...),
    resource_id: str = Path(...),
    user: AuthenticatedUser = Depends(require_resource_share),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    overrides = await override_service.list_resource_overrides(
        db, workspace_id, resource_type_for(resource_kind), resource_id
    )
    return JSONResponse(content={"data": [override_service.override_json(o) for o in overrides]})


@router.put(_BASE + "/users/{user_id}/overrides/{permission_code}")
async def set_override(
    workspace_id: str = Path(...),
    resource_kind: str = Path(...),
    resource_id: str = Path(...),
    user_id: str = Path(...),
    permission_code: str = Path(...),
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(require_resource_share),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Grant or deny one code to one user on this resource. Last write wins."""
    attrs = body_attributes(body)
    override = await override_service.set_override(
        db,
        user.user_id,
        workspace_id,
        resource_type_for(resource_kind),
        resource_id,
        user_id,
        permission_code,
        attrs.get("effect", ""),
    )
    return JSONResponse(content={"data": override_service.override_json(override)})


@router.delete(_BASE + "/users/{user_id}/overrides/{permission_code}", status_code=204)
async def clear_override(
    workspace_id: str = Path(...),
    resource_kind: str = Path(...),
    resource_id: str = Path(...),
    user_id: str = Path(...),
    permission_code: str = Path(...),
    user: AuthenticatedUser = Depends(require_resource_share),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await override_service.clear_override(
        db,
        user.user_id,
        workspace_id,
        resource_type_for(resource_kind),
        resource_id,
        user_id,
        permission_code,
    )
    return Response(status_code=204)


@router.delete(_BASE + "/users/{user_id}/overrides", status_code=204)
async def clear_user_overrides(
    workspace_id: str = Path(...),
    resource_kind: str = Path(...),
    resource_id: str = Path(...),
    user_id: str = Path(...),
    user: AuthenticatedUser = Depends(require_resource_share),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await override_service.clear_user_overrides(
        db, user.user_id, workspace_id, resource_type_for(resource_kind), resource_id, user_id
    )
    return Response(status_code=204)


@router.put(_BASE + "/users/{user_id}/permission-level")
async def apply_permission_level(
    workspace_id: str = Path(...),
    resource_kind: str = Path(...),
    resource_id: str = Path(...),
    user_id: str = Path(...),
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(require_resource_share),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Replace a user's overrides on this resource with a view/edit/admin bundle."""
    attrs = body_attributes(body)
    overrides = await override_service.apply_permission_level(
        db,
        user.user_id,
        workspace_id,
        resource_type_for(resource_kind),
        resource_id,
        user_id,
        attrs.get("level", ""),
    )
    return JSONResponse(content={"data": [override_service.override_json(o) for o in overrides]})
