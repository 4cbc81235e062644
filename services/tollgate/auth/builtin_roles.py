"""Built-in workspace roles that exist as code, not database rows.

Every workspace member holds exactly one workspace role. Each role implies
a fixed baseline of permission codes, checked by the resolution engine
before custom roles and overrides are applied. The custom_roles table only
contains roles created by workspace admins.
"""

from enum import StrEnum

from tollgate.auth.permissions import ALL_PERMISSION_CODES, OWNER_ONLY_PERMISSIONS


class WorkspaceRole(StrEnum):
    OWNER = "owner"
    ADMIN = "admin"
    MEMBER = "member"
    VIEWER = "viewer"


# Roles that can be handed out directly; owner only moves via ownership transfer.
ASSIGNABLE_WORKSPACE_ROLES: frozenset[WorkspaceRole] = frozenset(
    {WorkspaceRole.ADMIN, WorkspaceRole.MEMBER, WorkspaceRole.VIEWER}
)

VIEWER_BASELINE: frozenset[str] = frozenset(
    {
        "workspace.view",
        "board.view",
        "item.view",
        "project.view",
        "automation.view",
    }
)

MEMBER_BASELINE: frozenset[str] = VIEWER_BASELINE | frozenset(
    {
        "board.create",
        "board.edit",
        "item.create",
        "item.edit",
        "item.delete",
        "item.comment",
        "column.manage",
        "project.edit",
        "file.upload",
    }
)

ADMIN_BASELINE: frozenset[str] = ALL_PERMISSION_CODES - OWNER_ONLY_PERMISSIONS

BUILTIN_ROLES: dict[WorkspaceRole, dict] = {
    WorkspaceRole.OWNER: {
        "description": "Absolute control of the workspace; cannot be restricted by overrides",
        "permissions": ALL_PERMISSION_CODES,
    },
    WorkspaceRole.ADMIN: {
        "description": "Broad management rights, excluding ownership transfer",
        "permissions": ADMIN_BASELINE,
    },
    WorkspaceRole.MEMBER: {
        "description": "Create and edit content",
        "permissions": MEMBER_BASELINE,
    },
    WorkspaceRole.VIEWER: {
        "description": "Read-only access",
        "permissions": VIEWER_BASELINE,
    },
}


# Resource-level permission levels (view < edit < admin), applied as grant
# overrides on a single board or project.
PERMISSION_LEVELS: dict[str, dict[str, frozenset[str]]] = {
    "board": {
        "view": frozenset({"board.view", "item.view"}),
        "edit": frozenset(
            {
                "board.view",
                "board.edit",
                "item.view",
                "item.create",
                "item.edit",
                "item.comment",
                "column.manage",
            }
        ),
        "admin": frozenset(
            {
                "board.view",
                "board.edit",
                "board.delete",
                "board.share",
                "item.view",
                "item.create",
                "item.edit",
                "item.delete",
                "item.comment",
                "column.manage",
            }
        ),
    },
    "project": {
        "view": frozenset({"project.view", "project.budget.view"}),
        "edit": frozenset({"project.view", "project.edit", "project.budget.view"}),
        "admin": frozenset(
            {
                "project.view",
                "project.edit",
                "project.delete",
                "project.share",
                "project.budget.view",
                "project.budget.edit",
            }
        ),
    },
}


def baseline_permissions(role: WorkspaceRole) -> frozenset[str]:
    """Permission codes implied by a workspace role."""
    return BUILTIN_ROLES[role]["permissions"]


def is_assignable_workspace_role(role: str) -> bool:
    """Check if a role may be set directly (everything except owner)."""
    return role in ASSIGNABLE_WORKSPACE_ROLES
