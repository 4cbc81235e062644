"""Workspace membership and workspace roles.

Table-backed default for the identity & membership store. The resolution
engine only reads it through ``get_workspace_role`` (a MembershipLookup),
so an external identity system can stand in for it.

Invariant: a workspace always has exactly one owner. The owner role only
moves through ``transfer_ownership``; it cannot be assigned, changed, or
removed directly.
"""

from collections.abc import Awaitable, Callable

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.auth.builtin_roles import WorkspaceRole, is_assignable_workspace_role
from tollgate.db.models import GroupMember, ResourceOverride, RoleAssignment, WorkspaceMember
from tollgate.errors import ConflictError, NotFoundError, ValidationError
from tollgate.logging_config import get_logger
from tollgate.services.audit_service import AuditAction, AuditTarget, audited_mutation

logger = get_logger(__name__)

# (db, workspace_id, user_id) -> role, or None when the user is not a member
MembershipLookup = Callable[[AsyncSession, str, str], Awaitable[WorkspaceRole | None]]


def _parse_role(role: str) -> WorkspaceRole:
    try:
        return WorkspaceRole(role)
    except ValueError as e:
        raise ValidationError(f"Invalid workspace role: {role}") from e


def _require_id(value: str | None, label: str) -> str:
    if not value or not value.strip():
        raise ValidationError(f"{label} is required")
    return value


def member_snapshot(member: WorkspaceMember) -> dict:
    return {"user_id": member.user_id, "role": member.role}


async def get_workspace_role(
    db: AsyncSession, workspace_id: str, user_id: str
) -> WorkspaceRole | None:
    result = await db.execute(
        select(WorkspaceMember.role).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )
    role = result.scalar_one_or_none()
    return WorkspaceRole(role) if role is not None else None


async def workspace_exists(db: AsyncSession, workspace_id: str) -> bool:
    result = await db.execute(
        select(WorkspaceMember.user_id).where(WorkspaceMember.workspace_id == workspace_id).limit(1)
    )
    return result.first() is not None


async def get_member(db: AsyncSession, workspace_id: str, user_id: str) -> WorkspaceMember:
    result = await db.execute(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id == user_id,
        )
    )
    member = result.scalar_one_or_none()
    if member is None:
        raise NotFoundError("Member", user_id, workspace_id)
    return member


async def get_owner(db: AsyncSession, workspace_id: str) -> WorkspaceMember:
    result = await db.execute(
        select(WorkspaceMember).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.role == WorkspaceRole.OWNER.value,
        )
    )
    owner = result.scalar_one_or_none()
    if owner is None:
        raise NotFoundError("Workspace", workspace_id)
    return owner


async def list_members(db: AsyncSession, workspace_id: str) -> list[WorkspaceMember]:
    result = await db.execute(
        select(WorkspaceMember)
        .where(WorkspaceMember.workspace_id == workspace_id)
        .order_by(WorkspaceMember.user_id)
    )
    return list(result.scalars().all())


async def ensure_members(db: AsyncSession, workspace_id: str, user_ids: set[str]) -> None:
    """Raise NotFoundError unless every user belongs to the workspace."""
    if not user_ids:
        return
    result = await db.execute(
        select(WorkspaceMember.user_id).where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.user_id.in_(user_ids),
        )
    )
    missing = sorted(user_ids - set(result.scalars().all()))
    if missing:
        raise NotFoundError("Member", ", ".join(missing), workspace_id)


async def create_workspace(
    db: AsyncSession, actor_id: str, workspace_id: str, owner_id: str
) -> WorkspaceMember:
    """Register a workspace with its single owner."""
    _require_id(workspace_id, "workspace_id")
    _require_id(owner_id, "owner_id")

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        if await workspace_exists(db, workspace_id):
            raise ValidationError(f"Workspace {workspace_id} already exists")
        owner = WorkspaceMember(
            workspace_id=workspace_id,
            user_id=owner_id,
            role=WorkspaceRole.OWNER.value,
        )
        db.add(owner)
        await db.flush()
        await scope.record(
            AuditAction.WORKSPACE_CREATED,
            AuditTarget.WORKSPACE,
            workspace_id,
            after={"owner_id": owner_id},
        )

    logger.info("Workspace created", workspace_id=workspace_id, owner_id=owner_id)
    return owner


async def add_member(
    db: AsyncSession, actor_id: str, workspace_id: str, user_id: str, role: str
) -> WorkspaceMember:
    _require_id(user_id, "user_id")
    parsed = _parse_role(role)
    if parsed == WorkspaceRole.OWNER:
        raise ConflictError("A workspace has exactly one owner; use ownership transfer")

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        if not await workspace_exists(db, workspace_id):
            raise NotFoundError("Workspace", workspace_id)
        if await get_workspace_role(db, workspace_id, user_id) is not None:
            raise ValidationError(f"User {user_id} is already a member of this workspace")
        member = WorkspaceMember(workspace_id=workspace_id, user_id=user_id, role=parsed.value)
        db.add(member)
        await db.flush()
        await scope.record(
            AuditAction.MEMBER_ADDED, AuditTarget.MEMBER, user_id, after=member_snapshot(member)
        )

    logger.info("Member added", workspace_id=workspace_id, user_id=user_id, role=parsed.value)
    return member


async def change_member_role(
    db: AsyncSession, actor_id: str, workspace_id: str, user_id: str, role: str
) -> WorkspaceMember:
    parsed = _parse_role(role)
    if not is_assignable_workspace_role(parsed):
        raise ConflictError("The owner role can only be granted through ownership transfer")

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        member = await get_member(db, workspace_id, user_id)
        if member.role == WorkspaceRole.OWNER.value:
            raise ConflictError(
                "The workspace owner's role cannot be changed; transfer ownership first"
            )
        if member.role == parsed.value:
            return member

        before = member_snapshot(member)
        member.role = parsed.value
        await db.flush()
        await scope.record(
            AuditAction.MEMBER_ROLE_CHANGED,
            AuditTarget.MEMBER,
            user_id,
            before=before,
            after=member_snapshot(member),
        )

    logger.info(
        "Member role changed", workspace_id=workspace_id, user_id=user_id, role=parsed.value
    )
    return member


async def remove_member(db: AsyncSession, actor_id: str, workspace_id: str, user_id: str) -> dict:
    """Remove a member and everything that references them in the workspace.

    Direct role assignments, group memberships, and resource overrides go
    in the same unit of work. Returns the per-table removal counts.
    """
    async with audited_mutation(db, workspace_id, actor_id) as scope:
        member = await get_member(db, workspace_id, user_id)
        if member.role == WorkspaceRole.OWNER.value:
            raise ConflictError("The workspace owner cannot be removed; transfer ownership first")
        before = member_snapshot(member)

        assignments = await db.execute(
            delete(RoleAssignment).where(
                RoleAssignment.workspace_id == workspace_id,
                RoleAssignment.user_id == user_id,
            )
        )
        memberships = await db.execute(
            delete(GroupMember).where(
                GroupMember.workspace_id == workspace_id,
                GroupMember.user_id == user_id,
            )
        )
        overrides = await db.execute(
            delete(ResourceOverride).where(
                ResourceOverride.workspace_id == workspace_id,
                ResourceOverride.user_id == user_id,
            )
        )
        counts = {
            "removed_assignments": assignments.rowcount or 0,
            "removed_group_memberships": memberships.rowcount or 0,
            "removed_overrides": overrides.rowcount or 0,
        }

        await db.delete(member)
        await db.flush()
        await scope.record(
            AuditAction.MEMBER_REMOVED, AuditTarget.MEMBER, user_id, before=before, detail=counts
        )

    logger.info("Member removed", workspace_id=workspace_id, user_id=user_id, **counts)
    return counts


async def transfer_ownership(
    db: AsyncSession,
    actor_id: str,
    workspace_id: str,
    new_owner_id: str,
    previous_owner_role: str = WorkspaceRole.ADMIN.value,
) -> WorkspaceMember:
    """Atomically hand the owner role to another member.

    Only the current owner may do this, whatever codes the actor resolves to.
    """
    demoted_role = _parse_role(previous_owner_role)
    if not is_assignable_workspace_role(demoted_role):
        raise ValidationError("The previous owner must be demoted to admin, member, or viewer")

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        owner = await get_owner(db, workspace_id)
        if actor_id != owner.user_id:
            raise ConflictError("Only the current owner can transfer ownership")
        if owner.user_id == new_owner_id:
            raise ValidationError(f"User {new_owner_id} already owns this workspace")
        new_owner = await get_member(db, workspace_id, new_owner_id)
        before = {"owner_id": owner.user_id, "new_owner_previous_role": new_owner.role}

        # Demote first so the single-owner index never sees two owners
        owner.role = demoted_role.value
        await db.flush()
        new_owner.role = WorkspaceRole.OWNER.value
        await db.flush()

        await scope.record(
            AuditAction.OWNERSHIP_TRANSFERRED,
            AuditTarget.WORKSPACE,
            workspace_id,
            before=before,
            after={"owner_id": new_owner_id, "previous_owner_role": demoted_role.value},
        )

    logger.info(
        "Ownership transferred",
        workspace_id=workspace_id,
        previous_owner=before["owner_id"],
        new_owner=new_owner_id,
    )
    return new_owner


def member_json(member: WorkspaceMember) -> dict:
    return {
        "id": member.user_id,
        "type": "workspace-members",
        "attributes": {
            "workspace-id": member.workspace_id,
            "role": member.role,
        },
    }
