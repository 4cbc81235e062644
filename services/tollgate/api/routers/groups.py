"""Group CRUD and membership endpoints.

Endpoints:
    GET    /api/v1/workspaces/{ws}/groups                              - list groups
    POST   /api/v1/workspaces/{ws}/groups                              - create group
    GET    /api/v1/workspaces/{ws}/groups/{group_id}                   - show group
    PATCH  /api/v1/workspaces/{ws}/groups/{group_id}                   - update group
    DELETE /api/v1/workspaces/{ws}/groups/{group_id}                   - delete group
    PUT    /api/v1/workspaces/{ws}/groups/{group_id}/members/{user_id} - add member
    DELETE /api/v1/workspaces/{ws}/groups/{group_id}/members/{user_id} - remove member
"""

import uuid

from fastapi import APIRouter, Body, Depends, Path
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.api.dependencies import AuthenticatedUser, body_attributes, require_permission
from tollgate.db.session import get_db
from tollgate.services import group_service
from tollgate.services.group_service import GroupPatch

router = APIRouter(tags=["groups"])


@router.get("/workspaces/{workspace_id}/groups")
async def list_groups(
    workspace_id: str = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.view")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    groups = await group_service.list_groups(db, workspace_id)
    data = [
        group_service.group_json(g, await group_service.group_member_ids(db, g.id))
        for g in groups
    ]
    return JSONResponse(content={"data": data})


@router.post("/workspaces/{workspace_id}/groups", status_code=201)
async def create_group(
    workspace_id: str = Path(...),
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.groups.manage")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    attrs = body_attributes(body)
    members = attrs.get("member-ids", [])
    group = await group_service.create_group(
        db,
        user.user_id,
        workspace_id,
        attrs.get("name", ""),
        color=attrs.get("color"),
        description=attrs.get("description"),
        member_user_ids=members,
    )
    member_ids = await group_service.group_member_ids(db, group.id)
    return JSONResponse(
        content={"data": group_service.group_json(group, member_ids)}, status_code=201
    )


@router.get("/workspaces/{workspace_id}/groups/{group_id}")
async def show_group(
    workspace_id: str = Path(...),
    group_id: uuid.UUID = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.view")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    group = await group_service.get_group(db, workspace_id, group_id)
    member_ids = await group_service.group_member_ids(db, group.id)
    return JSONResponse(content={"data": group_service.group_json(group, member_ids)})


@router.patch("/workspaces/{workspace_id}/groups/{group_id}")
async def update_group(
    workspace_id: str = Path(...),
    group_id: uuid.UUID = Path(...),
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.groups.manage")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Update a group. ``member-ids``, when present, replaces the member set."""
    attrs = body_attributes(body)
    patch = GroupPatch(
        name=attrs.get("name"),
        color=attrs.get("color"),
        description=attrs.get("description"),
        member_user_ids=attrs.get("member-ids"),
    )
    group = await group_service.update_group(db, user.user_id, workspace_id, group_id, patch)
    member_ids = await group_service.group_member_ids(db, group.id)
    return JSONResponse(content={"data": group_service.group_json(group, member_ids)})


@router.delete("/workspaces/{workspace_id}/groups/{group_id}", status_code=204)
async def delete_group(
    workspace_id: str = Path(...),
    group_id: uuid.UUID = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.groups.manage")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await group_service.delete_group(db, user.user_id, workspace_id, group_id)
    return Response(status_code=204)


@router.put("/workspaces/{workspace_id}/groups/{group_id}/members/{user_id}")
async def add_group_member(
    workspace_id: str = Path(...),
    group_id: uuid.UUID = Path(...),
    user_id: str = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.groups.manage")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Add a user to a group. Safe to repeat."""
    added = await group_service.add_member(db, user.user_id, workspace_id, group_id, user_id)
    group = await group_service.get_group(db, workspace_id, group_id)
    member_ids = await group_service.group_member_ids(db, group.id)
    return JSONResponse(
        content={"data": group_service.group_json(group, member_ids)},
        status_code=201 if added else 200,
    )


@router.delete("/workspaces/{workspace_id}/groups/{group_id}/members/{user_id}", status_code=204)
async def remove_group_member(
    workspace_id: str = Path(...),
    group_id: uuid.UUID = Path(...),
    user_id: str = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.groups.manage")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await group_service.remove_member(db, user.user_id, workspace_id, group_id, user_id)
    return Response(status_code=204)
