"""Group catalog: named sets of workspace users.

Groups exist to bulk-assign custom roles. Membership is a plain set
relation; removing a user from a group only removes the roles that reached
them through that group.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.db.models import Group, GroupMember, RoleAssignment
from tollgate.errors import NotFoundError, ValidationError
from tollgate.logging_config import get_logger
from tollgate.services.audit_service import AuditAction, AuditTarget, audited_mutation
from tollgate.services.membership_service import ensure_members, workspace_exists
from tollgate.services.role_service import normalize_color, normalize_name

logger = get_logger(__name__)


@dataclass(frozen=True)
class GroupPatch:
    """Partial update for a group. ``member_user_ids`` replaces the whole member set."""

    name: str | None = None
    color: str | None = None
    description: str | None = None
    member_user_ids: Iterable[str] | None = None


def _user_id_set(user_ids: Iterable[str]) -> set[str]:
    if isinstance(user_ids, str):
        raise ValidationError("member_user_ids must be a collection of user ids")
    ids = set(user_ids)
    if any(not u for u in ids):
        raise ValidationError("User ids must be non-empty")
    return ids


def group_snapshot(group: Group, member_ids: Iterable[str]) -> dict:
    return {
        "id": str(group.id),
        "name": group.name,
        "color": group.color,
        "description": group.description,
        "member_user_ids": sorted(member_ids),
    }


async def _ensure_name_available(
    db: AsyncSession, workspace_id: str, name: str, exclude_id: uuid.UUID | None = None
) -> None:
    stmt = select(Group.id).where(
        Group.workspace_id == workspace_id,
        Group.name_key == name.lower(),
    )
    if exclude_id is not None:
        stmt = stmt.where(Group.id != exclude_id)
    result = await db.execute(stmt)
    if result.first() is not None:
        raise ValidationError(f"Group '{name}' already exists in this workspace")


async def get_group(db: AsyncSession, workspace_id: str, group_id: uuid.UUID) -> Group:
    result = await db.execute(
        select(Group).where(Group.id == group_id, Group.workspace_id == workspace_id)
    )
    group = result.scalar_one_or_none()
    if group is None:
        raise NotFoundError("Group", group_id, workspace_id)
    return group


async def list_groups(db: AsyncSession, workspace_id: str) -> list[Group]:
    result = await db.execute(
        select(Group).where(Group.workspace_id == workspace_id).order_by(Group.name_key)
    )
    return list(result.scalars().all())


async def group_member_ids(db: AsyncSession, group_id: uuid.UUID) -> set[str]:
    result = await db.execute(select(GroupMember.user_id).where(GroupMember.group_id == group_id))
    return set(result.scalars().all())


async def group_ids_for_user(db: AsyncSession, workspace_id: str, user_id: str) -> set[uuid.UUID]:
    result = await db.execute(
        select(GroupMember.group_id).where(
            GroupMember.workspace_id == workspace_id,
            GroupMember.user_id == user_id,
        )
    )
    return set(result.scalars().all())


async def create_group(
    db: AsyncSession,
    actor_id: str,
    workspace_id: str,
    name: str,
    color: str | None = None,
    description: str | None = None,
    member_user_ids: Iterable[str] = (),
) -> Group:
    name = normalize_name(name)
    color = normalize_color(color)
    members = _user_id_set(member_user_ids)

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        if not await workspace_exists(db, workspace_id):
            raise NotFoundError("Workspace", workspace_id)
        await _ensure_name_available(db, workspace_id, name)
        await ensure_members(db, workspace_id, members)

        group = Group(
            workspace_id=workspace_id,
            name=name,
            name_key=name.lower(),
            color=color,
            description=description,
        )
        db.add(group)
        await db.flush()
        for user_id in sorted(members):
            db.add(GroupMember(group_id=group.id, user_id=user_id, workspace_id=workspace_id))
        await db.flush()
        await scope.record(
            AuditAction.GROUP_CREATED,
            AuditTarget.GROUP,
            group.id,
            after=group_snapshot(group, members),
        )

    await db.refresh(group)
    logger.info("Group created", workspace_id=workspace_id, group_id=str(group.id), group=name)
    return group


async def update_group(
    db: AsyncSession,
    actor_id: str,
    workspace_id: str,
    group_id: uuid.UUID,
    patch: GroupPatch,
) -> Group:
    """Apply a partial update, including wholesale member replacement."""
    new_name = normalize_name(patch.name) if patch.name is not None else None
    new_color = normalize_color(patch.color) if patch.color is not None else None
    new_members = _user_id_set(patch.member_user_ids) if patch.member_user_ids is not None else None

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        group = await get_group(db, workspace_id, group_id)
        current_members = await group_member_ids(db, group.id)
        before = group_snapshot(group, current_members)

        if new_name is not None and new_name != group.name:
            await _ensure_name_available(db, workspace_id, new_name, exclude_id=group.id)
            group.name = new_name
            group.name_key = new_name.lower()
        if new_color is not None and new_color != group.color:
            group.color = new_color
        if patch.description is not None and patch.description != group.description:
            group.description = patch.description

        members = current_members
        if new_members is not None and new_members != current_members:
            await ensure_members(db, workspace_id, new_members - current_members)
            removed = current_members - new_members
            if removed:
                await db.execute(
                    delete(GroupMember).where(
                        GroupMember.group_id == group.id,
                        GroupMember.user_id.in_(removed),
                    )
                )
            for user_id in sorted(new_members - current_members):
                db.add(GroupMember(group_id=group.id, user_id=user_id, workspace_id=workspace_id))
            members = new_members

        after = group_snapshot(group, members)
        if after == before:
            return group

        await db.flush()
        await scope.record(
            AuditAction.GROUP_UPDATED, AuditTarget.GROUP, group.id, before=before, after=after
        )

    await db.refresh(group)
    logger.info("Group updated", workspace_id=workspace_id, group_id=str(group_id))
    return group


async def delete_group(
    db: AsyncSession, actor_id: str, workspace_id: str, group_id: uuid.UUID
) -> int:
    """Delete a group with its memberships and role assignments.

    Returns the number of role assignments removed.
    """
    async with audited_mutation(db, workspace_id, actor_id) as scope:
        group = await get_group(db, workspace_id, group_id)
        before = group_snapshot(group, await group_member_ids(db, group.id))

        assignments = await db.execute(
            delete(RoleAssignment).where(RoleAssignment.group_id == group.id)
        )
        await db.execute(delete(GroupMember).where(GroupMember.group_id == group.id))
        removed = assignments.rowcount or 0

        await db.delete(group)
        await db.flush()
        await scope.record(
            AuditAction.GROUP_DELETED,
            AuditTarget.GROUP,
            group_id,
            before=before,
            detail={"removed_assignments": removed},
        )

    logger.info(
        "Group deleted",
        workspace_id=workspace_id,
        group_id=str(group_id),
        removed_assignments=removed,
    )
    return removed


async def add_member(
    db: AsyncSession, actor_id: str, workspace_id: str, group_id: uuid.UUID, user_id: str
) -> bool:
    """Add a user to a group. Idempotent: returns False when already a member."""
    if not user_id:
        raise ValidationError("user_id is required")

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        group = await get_group(db, workspace_id, group_id)
        await ensure_members(db, workspace_id, {user_id})
        if user_id in await group_member_ids(db, group.id):
            return False

        db.add(GroupMember(group_id=group.id, user_id=user_id, workspace_id=workspace_id))
        await db.flush()
        await scope.record(
            AuditAction.GROUP_MEMBER_ADDED,
            AuditTarget.GROUP,
            group.id,
            after={"user_id": user_id},
        )

    logger.info(
        "Group member added", workspace_id=workspace_id, group_id=str(group_id), user_id=user_id
    )
    return True


async def remove_member(
    db: AsyncSession, actor_id: str, workspace_id: str, group_id: uuid.UUID, user_id: str
) -> None:
    async with audited_mutation(db, workspace_id, actor_id) as scope:
        group = await get_group(db, workspace_id, group_id)
        result = await db.execute(
            delete(GroupMember).where(
                GroupMember.group_id == group.id,
                GroupMember.user_id == user_id,
            )
        )
        if not result.rowcount:
            raise NotFoundError("Group member", user_id, workspace_id)
        await scope.record(
            AuditAction.GROUP_MEMBER_REMOVED,
            AuditTarget.GROUP,
            group.id,
            before={"user_id": user_id},
        )

    logger.info(
        "Group member removed", workspace_id=workspace_id, group_id=str(group_id), user_id=user_id
    )


def group_json(group: Group, member_ids: Iterable[str]) -> dict:
    return {
        "id": str(group.id),
        "type": "groups",
        "attributes": {
            "name": group.name,
            "color": group.color,
            "description": group.description or "",
            "member-ids": sorted(member_ids),
        },
    }
