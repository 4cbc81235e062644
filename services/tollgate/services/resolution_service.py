"""Permission resolution.

Computes which permission codes a user holds in a workspace, optionally
narrowed to one board or project, and records which rule decided each one.

Resolution order (highest wins):
1. Workspace owner -> every code, provenance ``owner``; overrides ignored
2. Workspace role baseline + effective custom roles -> provenance ``role``
3. Resource overrides for (resource, user) -> ``override:grant`` / ``override:deny``

A user who is not a member of the workspace resolves to an empty set. That
is a normal "no access" answer, not an error. Resolution takes no locks and
writes nothing.
"""

from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass, field
from enum import StrEnum

from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.auth.builtin_roles import WorkspaceRole, baseline_permissions
from tollgate.auth.permissions import ALL_PERMISSION_CODES, is_known_permission
from tollgate.errors import ValidationError
from tollgate.logging_config import get_logger
from tollgate.services.assignment_service import effective_roles_for_user
from tollgate.services.membership_service import (
    MembershipLookup,
    get_workspace_role,
    workspace_exists,
)
from tollgate.services.override_service import OverrideEffect, overrides_for, parse_resource_type

logger = get_logger(__name__)

WorkspaceLookup = Callable[[AsyncSession, str], Awaitable[bool]]


class Provenance(StrEnum):
    OWNER = "owner"
    ROLE = "role"
    OVERRIDE_GRANT = "override:grant"
    OVERRIDE_DENY = "override:deny"


@dataclass(frozen=True)
class PermissionDecision:
    """Outcome for one code. ``provenance`` is None when nothing granted it."""

    code: str
    allowed: bool
    provenance: Provenance | None


@dataclass
class PermissionSet(Mapping[str, bool]):
    """Permission code -> allowed, with the rule that decided each code.

    Codes that no rule mentions are absent; looking one up yields False.
    """

    decisions: dict[str, tuple[bool, Provenance]] = field(default_factory=dict)

    def __getitem__(self, code: str) -> bool:
        decision = self.decisions.get(code)
        return decision[0] if decision is not None else False

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self.decisions))

    def __len__(self) -> int:
        return len(self.decisions)

    def __contains__(self, code: object) -> bool:
        return code in self.decisions

    def provenance(self, code: str) -> Provenance | None:
        decision = self.decisions.get(code)
        return decision[1] if decision is not None else None

    def decision(self, code: str) -> PermissionDecision:
        return PermissionDecision(code=code, allowed=self[code], provenance=self.provenance(code))

    def granted(self) -> frozenset[str]:
        return frozenset(code for code, (allowed, _) in self.decisions.items() if allowed)

    @property
    def is_empty(self) -> bool:
        return not self.decisions

    def to_dict(self) -> dict[str, dict]:
        return {
            code: {"allowed": allowed, "provenance": str(source)}
            for code, (allowed, source) in sorted(self.decisions.items())
        }


def _validate_query(
    user_id: str, workspace_id: str, resource_type: str | None, resource_id: str | None
) -> None:
    if not user_id:
        raise ValidationError("user_id is required")
    if not workspace_id:
        raise ValidationError("workspace_id is required")
    if (resource_type is None) != (resource_id is None):
        raise ValidationError("resource_type and resource_id must be given together")
    if resource_type is not None:
        parse_resource_type(resource_type)
        if not resource_id:
            raise ValidationError("resource_id must be non-empty")


async def resolve(
    db: AsyncSession,
    user_id: str,
    workspace_id: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    membership_lookup: MembershipLookup = get_workspace_role,
    workspace_lookup: WorkspaceLookup = workspace_exists,
) -> PermissionSet:
    """Resolve a user's permissions in a workspace, or on one resource in it.

    Args:
        db: Database session
        user_id: The verified caller
        workspace_id: Workspace to resolve in; must exist
        resource_type: ``board`` or ``project``, together with resource_id
        resource_id: Opaque id of the board or project
        membership_lookup: Source of the user's workspace role
        workspace_lookup: Existence check for the workspace

    Returns:
        The PermissionSet; empty when the user is not a member.
    """
    _validate_query(user_id, workspace_id, resource_type, resource_id)
    if not await workspace_lookup(db, workspace_id):
        raise ValidationError(f"Unknown workspace: {workspace_id}")

    workspace_role = await membership_lookup(db, workspace_id, user_id)
    if workspace_role is None:
        logger.debug("No access: not a workspace member", user=user_id, workspace=workspace_id)
        return PermissionSet()

    if workspace_role == WorkspaceRole.OWNER:
        logger.debug("All permissions: workspace owner", user=user_id, workspace=workspace_id)
        return PermissionSet({code: (True, Provenance.OWNER) for code in ALL_PERMISSION_CODES})

    # Role-derived set: static baseline plus every effective custom role
    codes = set(baseline_permissions(workspace_role))
    roles = await effective_roles_for_user(db, workspace_id, user_id)
    for role in roles:
        codes.update(role.permission_codes)
    decisions: dict[str, tuple[bool, Provenance]] = {
        code: (True, Provenance.ROLE) for code in codes if is_known_permission(code)
    }

    if resource_type is not None:
        # overrides_for is scoped to this workspace, so foreign rows never apply
        overrides = await overrides_for(db, workspace_id, resource_type, resource_id, user_id)
        for override in overrides:
            if not is_known_permission(override.permission_code):
                continue
            if override.effect == OverrideEffect.DENY.value:
                decisions[override.permission_code] = (False, Provenance.OVERRIDE_DENY)
            else:
                decisions[override.permission_code] = (True, Provenance.OVERRIDE_GRANT)
        logger.debug(
            "Resolved with resource overrides",
            user=user_id,
            workspace=workspace_id,
            resource_type=resource_type,
            resource_id=resource_id,
            overrides=len(overrides),
        )

    logger.debug(
        "Resolved permissions",
        user=user_id,
        workspace=workspace_id,
        workspace_role=workspace_role.value,
        custom_roles=len(roles),
        granted=sum(1 for allowed, _ in decisions.values() if allowed),
    )
    return PermissionSet(decisions)


async def check_permission(
    db: AsyncSession,
    user_id: str,
    workspace_id: str,
    code: str,
    resource_type: str | None = None,
    resource_id: str | None = None,
    membership_lookup: MembershipLookup = get_workspace_role,
) -> PermissionDecision:
    """Resolve a single code. Unknown codes are a ValidationError."""
    if not is_known_permission(code):
        raise ValidationError(f"Unknown permission code: {code}")
    permissions = await resolve(
        db,
        user_id,
        workspace_id,
        resource_type,
        resource_id,
        membership_lookup=membership_lookup,
    )
    return permissions.decision(code)


def permission_set_json(
    user_id: str,
    workspace_id: str,
    permissions: PermissionSet,
    resource_type: str | None = None,
    resource_id: str | None = None,
) -> dict:
    return {
        "id": f"{workspace_id}:{user_id}",
        "type": "permission-sets",
        "attributes": {
            "user-id": user_id,
            "workspace-id": workspace_id,
            "resource-type": resource_type,
            "resource-id": resource_id,
            "granted": sorted(permissions.granted()),
            "decisions": permissions.to_dict(),
        },
    }
