"""Permission catalog and resolution endpoints.

Endpoints:
    GET /api/v1/permissions                                       - catalog by category
    GET /api/v1/workspaces/{ws}/permissions/me                    - resolve the caller
    GET /api/v1/workspaces/{ws}/permissions/users/{user_id}       - resolve another member
"""

from fastapi import APIRouter, Depends, Path, Query
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.api.dependencies import AuthenticatedUser, get_current_user, require_permission
from tollgate.auth.builtin_roles import BUILTIN_ROLES
from tollgate.auth.permissions import permissions_by_category
from tollgate.db.session import get_db
from tollgate.services.resolution_service import permission_set_json, resolve

router = APIRouter(tags=["permissions"])


@router.get("/permissions")
async def list_permissions(
    user: AuthenticatedUser = Depends(get_current_user),
) -> JSONResponse:
    """The static permission catalog plus the built-in workspace role baselines."""
    categories = [
        {
            "id": category,
            "type": "permission-categories",
            "attributes": {
                "permissions": [{"code": p.code, "name": p.name} for p in definitions],
            },
        }
        for category, definitions in permissions_by_category().items()
    ]
    builtin = [
        {
            "id": role.value,
            "type": "workspace-roles",
            "attributes": {
                "description": info["description"],
                "permissions": sorted(info["permissions"]),
            },
        }
        for role, info in BUILTIN_ROLES.items()
    ]
    return JSONResponse(content={"data": categories, "included": builtin})


@router.get("/workspaces/{workspace_id}/permissions/me")
async def my_permissions(
    workspace_id: str = Path(...),
    resource_type: str | None = Query(None, alias="resource-type"),
    resource_id: str | None = Query(None, alias="resource-id"),
    user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Resolve the caller. A non-member gets an empty set, not an error."""
    permissions = await resolve(db, user.user_id, workspace_id, resource_type, resource_id)
    return JSONResponse(
        content={
            "data": permission_set_json(
                user.user_id, workspace_id, permissions, resource_type, resource_id
            )
        }
    )


@router.get("/workspaces/{workspace_id}/permissions/users/{user_id}")
async def user_permissions(
    workspace_id: str = Path(...),
    user_id: str = Path(...),
    resource_type: str | None = Query(None, alias="resource-type"),
    resource_id: str | None = Query(None, alias="resource-id"),
    user: AuthenticatedUser = Depends(require_permission("workspace.members.manage")),
    db: AsyncSession = Depends(get_db),
) -> JSONResponse:
    """Resolve another user (admin view)."""
    permissions = await resolve(db, user_id, workspace_id, resource_type, resource_id)
    return JSONResponse(
        content={
            "data": permission_set_json(
                user_id, workspace_id, permissions, resource_type, resource_id
            )
        }
    )
