"""Role assignment endpoints.

Endpoints:
    GET    /api/v1/workspaces/{ws}/users/{user_id}/roles                - effective roles
    POST   /api/v1/workspaces/{ws}/users/{user_id}/roles                - assign role directly
    DELETE /api/v1/workspaces/{ws}/users/{user_id}/roles/{role_id}      - revoke direct grant
    GET    /api/v1/workspaces/{ws}/groups/{group_id}/roles              - roles of a group
    POST   /api/v1/workspaces/{ws}/groups/{group_id}/roles              - assign role to group
    DELETE /api/v1/workspaces/{ws}/groups/{group_id}/roles/{role_id}    - revoke from group
"""

import uuid

from fastapi import APIRouter, Body, Depends, Path
from fastapi.responses import JSONResponse, Response
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.api.dependencies import (
    AuthenticatedUser,
    body_attributes,
    parse_uuid,
    require_permission,
)
from tollgate.db.models import RoleAssignment
from tollgate.db.session import get_db
from tollgate.services import assignment_service
from tollgate.services.role_service import role_json

router = APIRouter(tags=["role-assignments"])


def _assignment_json(assignment: RoleAssignment) -> dict:
    return {
        "id": str(assignment.id),
        "type": "role-assignments",
        "attributes": {
            "role-id": str(assignment.role_id),
            "user-id": assignment.user_id,
            "group-id": str(assignment.group_id) if assignment.group_id else None,
        },
    }


@router.get("/workspaces/{workspace_id}/users/{user_id}/roles")
async def list_user_roles(
    workspace_id: str = Path(...),
    user_id: str = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.view")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Effective custom roles of a user, with direct/group provenance."""
    sources = await assignment_service.effective_role_sources(db, workspace_id, user_id)
    return JSONResponse(
        content={"data": [assignment_service.effective_role_json(s) for s in sources]}
    )


@router.post("/workspaces/{workspace_id}/users/{user_id}/roles", status_code=201)
async def assign_user_role(
    workspace_id: str = Path(...),
    user_id: str = Path(...),
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.roles.manage")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    role_id = parse_uuid(body_attributes(body).get("role-id"), "role-id")
    assignment = await assignment_service.assign_role_to_user(
        db, user.user_id, workspace_id, user_id, role_id
    )
    return JSONResponse(content={"data": _assignment_json(assignment)}, status_code=201)


@router.delete("/workspaces/{workspace_id}/users/{user_id}/roles/{role_id}", status_code=204)
async def revoke_user_role(
    workspace_id: str = Path(...),
    user_id: str = Path(...),
    role_id: uuid.UUID = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.roles.manage")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await assignment_service.revoke_from_user(db, user.user_id, workspace_id, user_id, role_id)
    return Response(status_code=204)


@router.get("/workspaces/{workspace_id}/groups/{group_id}/roles")
async def list_group_roles(
    workspace_id: str = Path(...),
    group_id: uuid.UUID = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.view")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    roles = await assignment_service.list_group_roles(db, workspace_id, group_id)
    return JSONResponse(content={"data": [role_json(r) for r in roles]})


@router.post("/workspaces/{workspace_id}/groups/{group_id}/roles", status_code=201)
async def assign_group_role(
    workspace_id: str = Path(...),
    group_id: uuid.UUID = Path(...),
    body: dict = Body(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.roles.manage")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    role_id = parse_uuid(body_attributes(body).get("role-id"), "role-id")
    assignment = await assignment_service.assign_role_to_group(
        db, user.user_id, workspace_id, group_id, role_id
    )
    return JSONResponse(content={"data": _assignment_json(assignment)}, status_code=201)


@router.delete("/workspaces/{workspace_id}/groups/{group_id}/roles/{role_id}", status_code=204)
async def revoke_group_role(
    workspace_id: str = Path(...),
    group_id: uuid.UUID = Path(...),
    role_id: uuid.UUID = Path(...),
    user: AuthenticatedUser = Depends(require_permission("workspace.roles.manage")),
    db: AsyncSession = Depends(get_db),
) -> Response:
    await assignment_service.revoke_from_group(db, user.user_id, workspace_id, group_id, role_id)
    return Response(status_code=204)
