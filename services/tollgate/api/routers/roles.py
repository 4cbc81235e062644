"""Custom role CRUD endpoints.

Endpoints:
    GET    /api/v1/workspaces/{ws}/roles              - list custom roles
    POST   /api/v1/workspaces/{ws}/roles              - create custom role
    GET    /api/v1/workspaces/{ws}/roles/{role_id}    - show role
    PATCH  /api/v1/workspaces/{ws}/roles/{role_id}    - update custom role
    DELETE /api/v1/workspaces/{ws}/roles/{role_id}    - delete role (cascades to assignments)
"""

import uuid

from fastapi import APIRouter, Body, Depends, Path
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.api.dependencies import AuthenticatedUser, body_attributes, require_permission
from tollgate.db.session import get_db
from tollgate.services import role_service
from tollgate.services.role_service import RolePatch

router = APIRouter(tags=["roles"])


@router.get("/workspaces/{workspace_id}/roles")
async def list_roles(
    workspace_id: str = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.view")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    roles = await role_service.list_roles(db, workspace_id)
    data = [
        role_service.role_json(r, await role_service.count_role_assignments(db, r.id))
        for r in roles
    ]
    return JSONResponse(content={"data": data})


@router.post("/workspaces/{workspace_id}/roles", status_code=201)
async def create_role(
    workspace_id: str = Path(...),
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.roles.manage")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Create a custom role."""
    attrs = body_attributes(body)
    role = await role_service.create_role(
        db,
        user.user_id,
        workspace_id,
        attrs.get("name", ""),
        attrs.get("permissions", []),
        color=attrs.get("color"),
        description=attrs.get("description"),
    )
    return JSONResponse(content={"data": role_service.role_json(role, 0)}, status_code=201)


@router.get("/workspaces/{workspace_id}/roles/{role_id}")
async def show_role(
    workspace_id: str = Path(...),
    role_id: uuid.UUID = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.view")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    role = await role_service.get_role(db, workspace_id, role_id)
    count = await role_service.count_role_assignments(db, role.id)
    return JSONResponse(content={"data": role_service.role_json(role, count)})


@router.patch("/workspaces/{workspace_id}/roles/{role_id}")
async def update_role(
    workspace_id: str = Path(...),
    role_id: uuid.UUID = Path(...),
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.roles.manage")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Update a custom role. Omitted attributes are left unchanged."""
    attrs = body_attributes(body)
    patch = RolePatch(
        name=attrs.get("name"),
        color=attrs.get("color"),
        description=attrs.get("description"),
        permission_codes=attrs.get("permissions"),
    )
    role = await role_service.update_role(db, user.user_id, workspace_id, role_id, patch)
    return JSONResponse(content={"data": role_service.role_json(role)})


@router.delete("/workspaces/{workspace_id}/roles/{role_id}", status_code=204)
async def delete_role(
    workspace_id: str = Path(...),
    role_id: uuid.UUID = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.roles.manage")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    """Delete a custom role and every assignment of it."""
    await role_service.delete_role(db, user.user_id, workspace_id, role_id)
    return Response(status_code=204)
