"""Per-resource permission overrides.

An override grants or denies one permission code to one user on one board
or project, taking precedence over role-derived permissions there. At most
one override exists per (workspace, resource, user, code); setting another
replaces it.

Board and project overrides are independent scopes: an override on a
project does not flow into the boards that belong to it.
"""

from enum import StrEnum

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.auth.builtin_roles import PERMISSION_LEVELS
from tollgate.auth.permissions import OWNER_ONLY_PERMISSIONS, is_known_permission
from tollgate.db.models import ResourceOverride
from tollgate.errors import NotFoundError, ValidationError
from tollgate.logging_config import get_logger
from tollgate.services.audit_service import AuditAction, AuditTarget, audited_mutation
from tollgate.services.membership_service import ensure_members

logger = get_logger(__name__)


class ResourceType(StrEnum):
    BOARD = "board"
    PROJECT = "project"


class OverrideEffect(StrEnum):
    GRANT = "grant"
    DENY = "deny"


def parse_resource_type(value: str) -> ResourceType:
    try:
        return ResourceType(value)
    except ValueError as e:
        raise ValidationError(f"Invalid resource type: {value}") from e


def parse_effect(value: str) -> OverrideEffect:
    try:
        return OverrideEffect(value)
    except ValueError as e:
        raise ValidationError(f"Invalid override effect: {value}") from e


def _validate_target(resource_type: str, resource_id: str, user_id: str) -> ResourceType:
    parsed = parse_resource_type(resource_type)
    if not resource_id:
        raise ValidationError("resource_id is required")
    if not user_id:
        raise ValidationError("user_id is required")
    return parsed


def _validate_code(code: str) -> None:
    if not is_known_permission(code):
        raise ValidationError(f"Unknown permission code: {code}")


def override_target_id(resource_type: str, resource_id: str, user_id: str) -> str:
    return f"{resource_type}:{resource_id}:{user_id}"


def override_snapshot(override: ResourceOverride) -> dict:
    return {
        "resource_type": override.resource_type,
        "resource_id": override.resource_id,
        "user_id": override.user_id,
        "permission_code": override.permission_code,
        "effect": override.effect,
    }


async def _find_override(
    db: AsyncSession,
    workspace_id: str,
    resource_type: ResourceType,
    resource_id: str,
    user_id: str,
    code: str,
) -> ResourceOverride | None:
    result = await db.execute(
        select(ResourceOverride).where(
            ResourceOverride.workspace_id == workspace_id,
            ResourceOverride.resource_type == resource_type.value,
            ResourceOverride.resource_id == resource_id,
            ResourceOverride.user_id == user_id,
            ResourceOverride.permission_code == code,
        )
    )
    return result.scalar_one_or_none()


async def overrides_for(
    db: AsyncSession,
    workspace_id: str,
    resource_type: str,
    resource_id: str,
    user_id: str,
) -> list[ResourceOverride]:
    """All overrides one user has on one resource within one workspace."""
    parsed = _validate_target(resource_type, resource_id, user_id)
    result = await db.execute(
        select(ResourceOverride)
        .where(
            ResourceOverride.workspace_id == workspace_id,
            ResourceOverride.resource_type == parsed.value,
            ResourceOverride.resource_id == resource_id,
            ResourceOverride.user_id == user_id,
        )
        .order_by(ResourceOverride.permission_code)
    )
    return list(result.scalars().all())


async def list_resource_overrides(
    db: AsyncSession, workspace_id: str, resource_type: str, resource_id: str
) -> list[ResourceOverride]:
    """Every user's overrides on one resource."""
    parsed = parse_resource_type(resource_type)
    result = await db.execute(
        select(ResourceOverride)
        .where(
            ResourceOverride.workspace_id == workspace_id,
            ResourceOverride.resource_type == parsed.value,
            ResourceOverride.resource_id == resource_id,
        )
        .order_by(ResourceOverride.user_id, ResourceOverride.permission_code)
    )
    return list(result.scalars().all())


async def set_override(
    db: AsyncSession,
    actor_id: str,
    workspace_id: str,
    resource_type: str,
    resource_id: str,
    user_id: str,
    permission_code: str,
    effect: str,
) -> ResourceOverride:
    """Create or replace (last write wins) an override. Always one audit entry."""
    parsed_type = _validate_target(resource_type, resource_id, user_id)
    parsed_effect = parse_effect(effect)
    _validate_code(permission_code)
    if parsed_effect == OverrideEffect.GRANT and permission_code in OWNER_ONLY_PERMISSIONS:
        raise ValidationError(f"Owner-only permission code cannot be granted: {permission_code}")

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        await ensure_members(db, workspace_id, {user_id})
        override = await _find_override(
            db, workspace_id, parsed_type, resource_id, user_id, permission_code
        )
        before = override_snapshot(override) if override is not None else None
        if override is None:
            override = ResourceOverride(
                workspace_id=workspace_id,
                resource_type=parsed_type.value,
                resource_id=resource_id,
                user_id=user_id,
                permission_code=permission_code,
                effect=parsed_effect.value,
            )
            db.add(override)
        else:
            override.effect = parsed_effect.value
        await db.flush()
        await scope.record(
            AuditAction.OVERRIDE_SET,
            AuditTarget.OVERRIDE,
            override_target_id(parsed_type.value, resource_id, user_id),
            before=before,
            after=override_snapshot(override),
        )

    await db.refresh(override)
    logger.info(
        "Override set",
        workspace_id=workspace_id,
        resource_type=parsed_type.value,
        resource_id=resource_id,
        user_id=user_id,
        permission=permission_code,
        effect=parsed_effect.value,
    )
    return override


async def clear_override(
    db: AsyncSession,
    actor_id: str,
    workspace_id: str,
    resource_type: str,
    resource_id: str,
    user_id: str,
    permission_code: str,
) -> None:
    parsed_type = _validate_target(resource_type, resource_id, user_id)
    _validate_code(permission_code)

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        override = await _find_override(
            db, workspace_id, parsed_type, resource_id, user_id, permission_code
        )
        if override is None:
            raise NotFoundError(
                "Override",
                f"{override_target_id(parsed_type.value, resource_id, user_id)}:{permission_code}",
                workspace_id,
            )
        before = override_snapshot(override)
        await db.delete(override)
        await db.flush()
        await scope.record(
            AuditAction.OVERRIDE_CLEARED,
            AuditTarget.OVERRIDE,
            override_target_id(parsed_type.value, resource_id, user_id),
            before=before,
        )

    logger.info(
        "Override cleared",
        workspace_id=workspace_id,
        resource_type=parsed_type.value,
        resource_id=resource_id,
        user_id=user_id,
        permission=permission_code,
    )


async def clear_user_overrides(
    db: AsyncSession,
    actor_id: str,
    workspace_id: str,
    resource_type: str,
    resource_id: str,
    user_id: str,
) -> int:
    """Drop every override a user has on one resource as a single audited change."""
    parsed_type = _validate_target(resource_type, resource_id, user_id)

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        existing = await overrides_for(db, workspace_id, parsed_type.value, resource_id, user_id)
        if not existing:
            raise NotFoundError(
                "Override",
                override_target_id(parsed_type.value, resource_id, user_id),
                workspace_id,
            )
        before = {"overrides": [override_snapshot(o) for o in existing]}
        for override in existing:
            await db.delete(override)
        await db.flush()
        await scope.record(
            AuditAction.OVERRIDE_CLEARED,
            AuditTarget.OVERRIDE,
            override_target_id(parsed_type.value, resource_id, user_id),
            before=before,
            detail={"removed_overrides": len(existing)},
        )

    logger.info(
        "User overrides cleared",
        workspace_id=workspace_id,
        resource_type=parsed_type.value,
        resource_id=resource_id,
        user_id=user_id,
        removed=len(existing),
    )
    return len(existing)


async def apply_permission_level(
    db: AsyncSession,
    actor_id: str,
    workspace_id: str,
    resource_type: str,
    resource_id: str,
    user_id: str,
    level: str,
) -> list[ResourceOverride]:
    """Replace a user's overrides on a resource with grants for a level (view/edit/admin)."""
    parsed_type = _validate_target(resource_type, resource_id, user_id)
    codes = PERMISSION_LEVELS[parsed_type.value].get(level)
    if codes is None:
        raise ValidationError(f"Invalid permission level: {level}")

    async with audited_mutation(db, workspace_id, actor_id) as scope:
        await ensure_members(db, workspace_id, {user_id})
        existing = await overrides_for(db, workspace_id, parsed_type.value, resource_id, user_id)
        before = {"overrides": [override_snapshot(o) for o in existing]}

        await db.execute(
            delete(ResourceOverride).where(
                ResourceOverride.workspace_id == workspace_id,
                ResourceOverride.resource_type == parsed_type.value,
                ResourceOverride.resource_id == resource_id,
                ResourceOverride.user_id == user_id,
            )
        )
        created = [
            ResourceOverride(
                workspace_id=workspace_id,
                resource_type=parsed_type.value,
                resource_id=resource_id,
                user_id=user_id,
                permission_code=code,
                effect=OverrideEffect.GRANT.value,
            )
            for code in sorted(codes)
        ]
        db.add_all(created)
        await db.flush()
        await scope.record(
            AuditAction.OVERRIDE_SET,
            AuditTarget.OVERRIDE,
            override_target_id(parsed_type.value, resource_id, user_id),
            before=before,
            after={"overrides": [override_snapshot(o) for o in created]},
            detail={"level": level},
        )

    logger.info(
        "Permission level applied",
        workspace_id=workspace_id,
        resource_type=parsed_type.value,
        resource_id=resource_id,
        user_id=user_id,
        level=level,
    )
    return created


def override_json(override: ResourceOverride) -> dict:
    return {
        "id": str(override.id),
        "type": "resource-overrides",
        "attributes": {
            "resource-type": override.resource_type,
            "resource-id": override.resource_id,
            "user-id": override.user_id,
            "permission": override.permission_code,
            "effect": override.effect,
        },
    }
