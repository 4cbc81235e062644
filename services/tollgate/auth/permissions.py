"""Static permission catalog.

Permission codes are configuration, not user data. Custom roles and
resource overrides may only reference codes listed here.
"""

from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class PermissionDefinition:
    """One grantable capability."""

    code: str
    name: str
    category: str


PERMISSION_CATALOG: tuple[PermissionDefinition, ...] = (
    # Workspace administration
    PermissionDefinition("workspace.view", "View workspace", "workspace"),
    PermissionDefinition("workspace.settings.edit", "Edit workspace settings", "workspace"),
    PermissionDefinition("workspace.members.manage", "Manage members", "workspace"),
    PermissionDefinition("workspace.roles.manage", "Manage custom roles", "workspace"),
    PermissionDefinition("workspace.groups.manage", "Manage groups", "workspace"),
    PermissionDefinition("workspace.audit.view", "View permission audit log", "workspace"),
    PermissionDefinition("workspace.ownership.transfer", "Transfer ownership", "workspace"),
    # Boards
    PermissionDefinition("board.view", "View boards", "board"),
    PermissionDefinition("board.create", "Create boards", "board"),
    PermissionDefinition("board.edit", "Edit boards", "board"),
    PermissionDefinition("board.delete", "Delete boards", "board"),
    PermissionDefinition("board.share", "Manage board access", "board"),
    # Items and columns
    PermissionDefinition("item.view", "View items", "item"),
    PermissionDefinition("item.create", "Create items", "item"),
    PermissionDefinition("item.edit", "Edit items", "item"),
    PermissionDefinition("item.delete", "Delete items", "item"),
    PermissionDefinition("item.comment", "Comment on items", "item"),
    PermissionDefinition("column.manage", "Manage columns", "item"),
    # Projects
    PermissionDefinition("project.view", "View projects", "project"),
    PermissionDefinition("project.create", "Create projects", "project"),
    PermissionDefinition("project.edit", "Edit projects", "project"),
    PermissionDefinition("project.delete", "Delete projects", "project"),
    PermissionDefinition("project.share", "Manage project access", "project"),
    # Budgets
    PermissionDefinition("project.budget.view", "View budgets", "budget"),
    PermissionDefinition("project.budget.edit", "Edit budgets", "budget"),
    # Reports
    PermissionDefinition("reports.view", "View reports", "reports"),
    PermissionDefinition("reports.export", "Export reports", "reports"),
    # Automations
    PermissionDefinition("automation.view", "View automations", "automation"),
    PermissionDefinition("automation.manage", "Manage automations", "automation"),
    # Files
    PermissionDefinition("file.upload", "Upload files", "files"),
    PermissionDefinition("file.delete", "Delete files", "files"),
)

PERMISSIONS_BY_CODE: dict[str, PermissionDefinition] = {p.code: p for p in PERMISSION_CATALOG}

ALL_PERMISSION_CODES: frozenset[str] = frozenset(PERMISSIONS_BY_CODE)

# Held only through the owner role; never grantable by custom roles or overrides
OWNER_ONLY_PERMISSIONS: frozenset[str] = frozenset({"workspace.ownership.transfer"})


def is_known_permission(code: str) -> bool:
    """Check if a code is part of the static catalog."""
    return code in PERMISSIONS_BY_CODE


def unknown_permissions(codes: Iterable[str]) -> list[str]:
    """Return the codes not present in the catalog, sorted."""
    return sorted({c for c in codes if c not in PERMISSIONS_BY_CODE})


def owner_only_permissions(codes: Iterable[str]) -> list[str]:
    """Return the codes that only the workspace owner may hold, sorted."""
    return sorted({c for c in codes if c in OWNER_ONLY_PERMISSIONS})


def permissions_by_category() -> dict[str, list[PermissionDefinition]]:
    """Group the catalog by category, preserving catalog order."""
    grouped: dict[str, list[PermissionDefinition]] = {}
    for perm in PERMISSION_CATALOG:
        grouped.setdefault(perm.category, []).append(perm)
    return grouped
