"""Role assignments: which users and groups hold which custom roles.

A user's effective custom roles are the roles assigned to them directly
plus the roles assigned to any group they belong to. Direct and
group-derived grants are separate rows and are revoked independently.
"""

import uuid
from dataclasses import dataclass, field

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.db.models import CustomRole, GroupMember, RoleAssignment
from tollgate.errors import NotFoundError, ValidationError
from tollgate.logging_config import get_logger
from tollgate.services.audit_service import AuditAction, AuditTarget, audited_mutation
from tollgate.services.group_service import get_group
from tollgate.services.membership_service import ensure_members
from tollgate.services.role_service import get_role

logger = get_logger(__name__)


@dataclass
class EffectiveRole:
    """A custom role a user holds, with where it comes from."""

    role: CustomRole
    direct: bool = False
    via_group_ids: set[uuid.UUID] = field(default_factory=set)


def assignment_snapshot(assignment: RoleAssignment, role: CustomRole) -> dict:
    return {
        "id": str(assignment.id),
        "role_id": str(role.id),
        "role_name": role.name,
        "user_id": assignment.user_id,
        "group_id": str(assignment.group_id) if assignment.group_id else None,
    }


async def _find_assignment(
    db: AsyncSession,
    role_id: uuid.UUID,
    user_id: str | None = None,
    group_id: uuid.UUID | None = None,
) -> RoleAssignment | None:
    stmt = select(RoleAssignment).where(RoleAssignment.role_id == role_id)
    if user_id is not None:
        stmt = stmt.where(RoleAssignment.user_id == user_id)
    else:
        stmt = stmt.where(RoleAssignment.group_id == group_id)
    result = await db.execute(stmt)
    return result.scalar_one_or_none()


def _user_groups_subquery(workspace_id: str, user_id: str):
    return select(GroupMember.group_id).where(
        GroupMember.workspace_id == workspace_id,
        GroupMember.user_id == user_id,
    )


async def assign_role_to_user(
    db: AsyncSession, actor_id: str, workspace_id: str, user_id: str, role_id: uuid.UUID
) -> RoleAssignment:
    """Grant a role directly to a user.

    Idempotent for an existing direct grant. A role the user only holds
    through a group still gets its own direct record.
    """
    if not user_id:
        raise ValidationError("user_id is required")

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        role = await get_role(db, workspace_id, role_id)
        await ensure_members(db, workspace_id, {user_id})

        existing = await _find_assignment(db, role.id, user_id=user_id)
        if existing is not None:
            return existing

        assignment = RoleAssignment(workspace_id=workspace_id, role_id=role.id, user_id=user_id)
        db.add(assignment)
        await db.flush()
        await scope.record(
            AuditAction.ROLE_ASSIGNED,
            AuditTarget.ASSIGNMENT,
            assignment.id,
            after=assignment_snapshot(assignment, role),
        )

    logger.info(
        "Role assigned to user", workspace_id=workspace_id, role_id=str(role_id), user_id=user_id
    )
    return assignment


async def assign_role_to_group(
    db: AsyncSession,
    actor_id: str,
    workspace_id: str,
    group_id: uuid.UUID,
    role_id: uuid.UUID,
) -> RoleAssignment:
    """Grant a role to every current and future member of a group. Idempotent."""
    async with audited_mutation(db, workspace_id, actor_id) as scope:
        role = await get_role(db, workspace_id, role_id)
        group = await get_group(db, workspace_id, group_id)

        existing = await _find_assignment(db, role.id, group_id=group.id)
        if existing is not None:
            return existing

        assignment = RoleAssignment(workspace_id=workspace_id, role_id=role.id, group_id=group.id)
        db.add(assignment)
        await db.flush()
        await scope.record(
            AuditAction.ROLE_ASSIGNED,
            AuditTarget.ASSIGNMENT,
            assignment.id,
            after=assignment_snapshot(assignment, role),
        )

    logger.info(
        "Role assigned to group",
        workspace_id=workspace_id,
        role_id=str(role_id),
        group_id=str(group_id),
    )
    return assignment


async def revoke_from_user(
    db: AsyncSession, actor_id: str, workspace_id: str, user_id: str, role_id: uuid.UUID
) -> None:
    """Remove a direct grant. Group-derived grants of the same role are untouched."""
    async with audited_mutation(db, workspace_id, actor_id) as scope:
        role = await get_role(db, workspace_id, role_id)
        assignment = await _find_assignment(db, role.id, user_id=user_id)
        if assignment is None:
            raise NotFoundError("Role assignment", f"{role_id} -> user {user_id}", workspace_id)

        before = assignment_snapshot(assignment, role)
        await db.delete(assignment)
        await db.flush()
        await scope.record(
            AuditAction.ROLE_REMOVED, AuditTarget.ASSIGNMENT, before["id"], before=before
        )

    logger.info(
        "Role revoked from user", workspace_id=workspace_id, role_id=str(role_id), user_id=user_id
    )


async def revoke_from_group(
    db: AsyncSession,
    actor_id: str,
    workspace_id: str,
    group_id: uuid.UUID,
    role_id: uuid.UUID,
) -> None:
    async with audited_mutation(db, workspace_id, actor_id) as scope:
        role = await get_role(db, workspace_id, role_id)
        group = await get_group(db, workspace_id, group_id)
        assignment = await _find_assignment(db, role.id, group_id=group.id)
        if assignment is None:
            raise NotFoundError("Role assignment", f"{role_id} -> group {group_id}", workspace_id)

        before = assignment_snapshot(assignment, role)
        await db.delete(assignment)
        await db.flush()
        await scope.record(
            AuditAction.ROLE_REMOVED, AuditTarget.ASSIGNMENT, before["id"], before=before
        )

    logger.info(
        "Role revoked from group",
        workspace_id=workspace_id,
        role_id=str(role_id),
        group_id=str(group_id),
    )


async def effective_roles_for_user(
    db: AsyncSession, workspace_id: str, user_id: str
) -> set[CustomRole]:
    """Direct roles ∪ roles of every group containing the user. Pure read."""
    result = await db.execute(
        select(CustomRole)
        .join(RoleAssignment, RoleAssignment.role_id == CustomRole.id)
        .where(
            CustomRole.workspace_id == workspace_id,
            RoleAssignment.workspace_id == workspace_id,
            or_(
                RoleAssignment.user_id == user_id,
                RoleAssignment.group_id.in_(_user_groups_subquery(workspace_id, user_id)),
            ),
        )
    )
    return set(result.scalars().all())


async def effective_role_sources(
    db: AsyncSession, workspace_id: str, user_id: str
) -> list[EffectiveRole]:
    """Effective roles with provenance (direct and/or via which groups), by name."""
    result = await db.execute(
        select(RoleAssignment, CustomRole)
        .join(CustomRole, RoleAssignment.role_id == CustomRole.id)
        .where(
            CustomRole.workspace_id == workspace_id,
            RoleAssignment.workspace_id == workspace_id,
            or_(
                RoleAssignment.user_id == user_id,
                RoleAssignment.group_id.in_(_user_groups_subquery(workspace_id, user_id)),
            ),
        )
    )
    by_role: dict[uuid.UUID, EffectiveRole] = {}
    for assignment, role in result.all():
        entry = by_role.setdefault(role.id, EffectiveRole(role=role))
        if assignment.user_id is not None:
            entry.direct = True
        else:
            entry.via_group_ids.add(assignment.group_id)
    return sorted(by_role.values(), key=lambda e: e.role.name_key)


async def list_assignments(db: AsyncSession, workspace_id: str) -> list[RoleAssignment]:
    result = await db.execute(
        select(RoleAssignment)
        .where(RoleAssignment.workspace_id == workspace_id)
        .order_by(RoleAssignment.created_at, RoleAssignment.id)
    )
    return list(result.scalars().all())


async def list_group_roles(
    db: AsyncSession, workspace_id: str, group_id: uuid.UUID
) -> list[CustomRole]:
    group = await get_group(db, workspace_id, group_id)
    result = await db.execute(
        select(CustomRole)
        .join(RoleAssignment, RoleAssignment.role_id == CustomRole.id)
        .where(RoleAssignment.group_id == group.id)
        .order_by(CustomRole.name_key)
    )
    return list(result.scalars().all())


def effective_role_json(entry: EffectiveRole) -> dict:
    return {
        "id": str(entry.role.id),
        "type": "effective-roles",
        "attributes": {
            "name": entry.role.name,
            "color": entry.role.color,
            "permissions": list(entry.role.permission_codes),
            "direct": entry.direct,
            "via-group-ids": sorted(str(g) for g in entry.via_group_ids),
        },
    }
