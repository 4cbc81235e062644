"""Workspace and membership endpoints.

Endpoints:
    POST   /api/v1/workspaces                                 - create workspace (caller owns it)
    GET    /api/v1/workspaces/{ws}/members                    - list members
    POST   /api/v1/workspaces/{ws}/members                    - add member
    PATCH  /api/v1/workspaces/{ws}/members/{user_id}          - change workspace role
    DELETE /api/v1/workspaces/{ws}/members/{user_id}          - remove member (cascades)
    POST   /api/v1/workspaces/{ws}/ownership-transfer         - hand over ownership
"""

from fastapi import APIRouter, Body, Depends, Path
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.api.dependencies import (
    AuthenticatedUser,
    body_attributes,
    get_current_user,
    require_permission,
)
from tollgate.auth.builtin_roles import WorkspaceRole
from tollgate.db.session import get_db
from tollgate.errors import ValidationError
from tollgate.services import membership_service

router = APIRouter(tags=["members"])


@router.post("/workspaces", status_code=201)
async def create_workspace(
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Register a workspace with the caller as its owner."""
    data = body.get("data") or {}
    workspace_id = data.get("id") if isinstance(data, dict) else None
    if not workspace_id:
        raise ValidationError("Workspace id is required")
    owner = await membership_service.create_workspace(db, user.user_id, workspace_id, user.user_id)
    return JSONResponse(content={"data": membership_service.member_json(owner)}, status_code=201)


@router.get("/workspaces/{workspace_id}/members")
async def list_members(
    workspace_id: str = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.view")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    members = await membership_service.list_members(db, workspace_id)
    return JSONResponse(content={"data": [membership_service.member_json(m) for m in members]})


@router.post("/workspaces/{workspace_id}/members", status_code=201)
async def add_member(
    workspace_id: str = Path(...),
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.members.manage")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    attrs = body_attributes(body)
    member = await membership_service.add_member(
        db,
        user.user_id,
        workspace_id,
        attrs.get("user-id", ""),
        attrs.get("role", WorkspaceRole.MEMBER.value),
    )
    return JSONResponse(content={"data": membership_service.member_json(member)}, status_code=201)


@router.patch("/workspaces/{workspace_id}/members/{user_id}")
async def change_member_role(
    workspace_id: str = Path(...),
    user_id: str = Path(...),
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.members.manage")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    attrs = body_attributes(body)
    if "role" not in attrs:
        raise ValidationError("'role' is required")
    member = await membership_service.change_member_role(
        db, user.user_id, workspace_id, user_id, attrs["role"]
    )
    return JSONResponse(content={"data": membership_service.member_json(member)})


@router.delete("/workspaces/{workspace_id}/members/{user_id}")
async def remove_member(
    workspace_id: str = Path(...),
    user_id: str = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.members.manage")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Remove a member; their assignments, group memberships, and overrides go too."""
    counts = await membership_service.remove_member(db, user.user_id, workspace_id, user_id)
    return JSONResponse(content={"meta": {k.replace("_", "-"): v for k, v in counts.items()}})


@router.post("/workspaces/{workspace_id}/ownership-transfer")
async def transfer_ownership(
    workspace_id: str = Path(...),
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.ownership.transfer")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    attrs = body_attributes(body)
    new_owner = await membership_service.transfer_ownership(
        db,
        user.user_id,
        workspace_id,
        attrs.get("new-owner-id", ""),
        attrs.get("previous-owner-role", WorkspaceRole.ADMIN.value),
    )
    return JSONResponse(content={"data": membership_service.member_json(new_owner)})
