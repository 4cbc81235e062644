"""Custom role catalog.

Roles are workspace-scoped bundles of permission codes from the static
catalog. Deleting a role removes every assignment that references it in
the same unit of work, recorded as a single audit entry.
"""

import re
import uuid
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.auth.permissions import owner_only_permissions, unknown_permissions
from tollgate.db.models import DEFAULT_COLOR, CustomRole, RoleAssignment
from tollgate.errors import NotFoundError, ValidationError
from tollgate.logging_config import get_logger
from tollgate.services.audit_service import AuditAction, AuditTarget, audited_mutation
from tollgate.services.membership_service import workspace_exists

logger = get_logger(__name__)

MAX_NAME_LENGTH = 63
_COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")


@dataclass(frozen=True)
class RolePatch:
    """Partial update for a custom role. ``None`` leaves a field unchanged."""

    name: str | None = None
    color: str | None = None
    description: str | None = None
    permission_codes: Iterable[str] | None = None


def normalize_name(name: str | None) -> str:
    """Trim and validate a role or group name."""
    cleaned = (name or "").strip()
    if not cleaned:
        raise ValidationError("Name is required")
    if len(cleaned) > MAX_NAME_LENGTH:
        raise ValidationError(f"Name must be at most {MAX_NAME_LENGTH} characters")
    return cleaned


def normalize_color(color: str | None) -> str:
    if color is None:
        return DEFAULT_COLOR
    if not _COLOR_RE.match(color):
        raise ValidationError(f"Invalid color '{color}', expected #rrggbb")
    return color.lower()


def normalize_permission_codes(codes: Iterable[str]) -> list[str]:
    if isinstance(codes, str):
        raise ValidationError("permission_codes must be a collection of codes")
    code_set = set(codes)
    unknown = unknown_permissions(code_set)
    if unknown:
        raise ValidationError(f"Unknown permission code(s): {', '.join(unknown)}")
    reserved = owner_only_permissions(code_set)
    if reserved:
        raise ValidationError(
            f"Owner-only permission code(s) cannot be granted: {', '.join(reserved)}"
        )
    return sorted(code_set)


def role_snapshot(role: CustomRole) -> dict:
    return {
        "id": str(role.id),
        "name": role.name,
        "color": role.color,
        "description": role.description,
        "permission_codes": list(role.permission_codes),
    }


async def _ensure_name_available(
    db: AsyncSession, workspace_id: str, name: str, exclude_id: uuid.UUID | None = None
) -> None:
    stmt = select(CustomRole.id).where(
        CustomRole.workspace_id == workspace_id,
        CustomRole.name_key == name.lower(),
    )
    if exclude_id is not None:
        stmt = stmt.where(CustomRole.id != exclude_id)
    result = await db.execute(stmt)
    if result.first() is not None:
        raise ValidationError(f"Role '{name}' already exists in this workspace")


async def get_role(db: AsyncSession, workspace_id: str, role_id: uuid.UUID) -> CustomRole:
    """Load a role, raising NotFoundError if missing or in another workspace."""
    result = await db.execute(
        select(CustomRole).where(
            CustomRole.id == role_id,
            CustomRole.workspace_id == workspace_id,
        )
    )
    role = result.scalar_one_or_none()
    if role is None:
        raise NotFoundError("Role", role_id, workspace_id)
    return role


async def list_roles(db: AsyncSession, workspace_id: str) -> list[CustomRole]:
    result = await db.execute(
        select(CustomRole)
        .where(CustomRole.workspace_id == workspace_id)
        .order_by(CustomRole.name_key)
    )
    return list(result.scalars().all())


async def count_role_assignments(db: AsyncSession, role_id: uuid.UUID) -> int:
    result = await db.execute(
        select(func.count()).select_from(RoleAssignment).where(RoleAssignment.role_id == role_id)
    )
    return result.scalar_one()


async def create_role(
    db: AsyncSession,
    actor_id: str,
    workspace_id: str,
    name: str,
    permission_codes: Iterable[str],
    color: str | None = None,
    description: str | None = None,
) -> CustomRole:
    """Create a custom role."""
    name = normalize_name(name)
    color = normalize_color(color)
    codes = normalize_permission_codes(permission_codes)

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        if not await workspace_exists(db, workspace_id):
            raise NotFoundError("Workspace", workspace_id)
        await _ensure_name_available(db, workspace_id, name)
        role = CustomRole(
            workspace_id=workspace_id,
            name=name,
            name_key=name.lower(),
            color=color,
            description=description,
            permission_codes=codes,
        )
        db.add(role)
        await db.flush()
        await scope.record(
            AuditAction.ROLE_CREATED, AuditTarget.ROLE, role.id, after=role_snapshot(role)
        )

    await db.refresh(role)
    logger.info("Role created", workspace_id=workspace_id, role_id=str(role.id), role=name)
    return role


async def update_role(
    db: AsyncSession,
    actor_id: str,
    workspace_id: str,
    role_id: uuid.UUID,
    patch: RolePatch,
) -> CustomRole:
    """Apply a partial update. An update that changes nothing is not audited."""
    new_name = normalize_name(patch.name) if patch.name is not None else None
    new_color = normalize_color(patch.color) if patch.color is not None else None
    new_codes = (
        normalize_permission_codes(patch.permission_codes)
        if patch.permission_codes is not None
        else None
    )

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        role = await get_role(db, workspace_id, role_id)
        before = role_snapshot(role)

        if new_name is not None and new_name != role.name:
            await _ensure_name_available(db, workspace_id, new_name, exclude_id=role.id)
            role.name = new_name
            role.name_key = new_name.lower()
        if new_color is not None and new_color != role.color:
            role.color = new_color
        if patch.description is not None and patch.description != role.description:
            role.description = patch.description
        if new_codes is not None and new_codes != list(role.permission_codes):
            role.permission_codes = new_codes

        after = role_snapshot(role)
        if after == before:
            return role

        await db.flush()
        await scope.record(
            AuditAction.ROLE_UPDATED, AuditTarget.ROLE, role.id, before=before, after=after
        )

    await db.refresh(role)
    logger.info("Role updated", workspace_id=workspace_id, role_id=str(role_id))
    return role


async def delete_role(
    db: AsyncSession,
    actor_id: str,
    workspace_id: str,
    role_id: uuid.UUID,
) -> int:
    """Delete a role and every assignment referencing it.

    Returns the number of assignments removed. The cascade is recorded as
    one ``role_deleted`` entry carrying that count.
    """
    async with audited_mutation(db, workspace_id, actor_id) as scope:
        role = await get_role(db, workspace_id, role_id)
        before = role_snapshot(role)

        result = await db.execute(
            delete(RoleAssignment).where(RoleAssignment.role_id == role.id)
        )
        removed = result.rowcount or 0

        await db.delete(role)
        await db.flush()
        await scope.record(
            AuditAction.ROLE_DELETED,
            AuditTarget.ROLE,
            role_id,
            before=before,
            detail={"removed_assignments": removed},
        )

    logger.info(
        "Role deleted",
        workspace_id=workspace_id,
        role_id=str(role_id),
        removed_assignments=removed,
    )
    return removed


def role_json(role: CustomRole, assignment_count: int | None = None) -> dict:
    attributes = {
        "name": role.name,
        "color": role.color,
        "description": role.description or "",
        "permissions": list(role.permission_codes),
    }
    if assignment_count is not None:
        attributes["assignment-count"] = assignment_count
    return {
        "id": str(role.id),
        "type": "roles",
        "attributes": attributes,
    }
