"""
SQLAlchemy database models for Tollgate.

All models use:
- UUIDv7 primary keys (time-sortable) for engine-owned records; users,
  workspaces, and resources are opaque strings owned by other systems
- snake_case column names
- Plural table names
- A workspace_id column on every table (partition key, no cross-workspace rows)
- TIMESTAMPTZ with UTC for all timestamps
- Hard deletes (no soft delete columns); audit_entries is append-only
"""

import uuid
from datetime import UTC, datetime
from typing import Any

import sqlalchemy as sa
from sqlalchemy import (
    BigInteger,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

# JSONB on PostgreSQL, plain JSON elsewhere (SQLite in tests)
JSONType = sa.JSON().with_variant(JSONB(), "postgresql")

DEFAULT_COLOR = "#6366f1"


def generate_uuid7() -> uuid.UUID:
    """Generate a UUIDv7 (time-sortable UUID)."""
    import time

    timestamp_ms = int(time.time() * 1000)
    rand_bytes = uuid.uuid4().bytes[6:]

    uuid_bytes = (
        timestamp_ms.to_bytes(6, "big")
        + bytes([0x70 | (rand_bytes[0] & 0x0F)])  # Version 7
        + bytes([0x80 | (rand_bytes[1] & 0x3F)])  # Variant
        + rand_bytes[2:]
    )
    return uuid.UUID(bytes=uuid_bytes)


def utc_now() -> datetime:
    """Get current UTC datetime."""
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Base class for all models."""

    type_annotation_map = {
        dict[str, Any]: JSONType,
        list[str]: JSONType,
    }


class WorkspaceMember(Base):
    """Workspace role per (workspace, user).

    Default backing store for identity and membership. Exactly one row per
    workspace holds the owner role; the partial unique index enforces it.
    """

    __tablename__ = "workspace_members"

    workspace_id: Mapped[str] = mapped_column(String(63), primary_key=True)
    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False)  # owner, admin, member, viewer

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        Index(
            "uq_workspace_members_owner",
            "workspace_id",
            unique=True,
            postgresql_where=sa.text("role = 'owner'"),
            sqlite_where=sa.text("role = 'owner'"),
        ),
        Index("ix_workspace_members_user_id", "user_id"),
    )


class CustomRole(Base):
    """Workspace-scoped bundle of permission codes.

    Built-in workspace roles (owner, admin, member, viewer) are defined in
    tollgate.auth.builtin_roles, not in this table.
    """

    __tablename__ = "custom_roles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=generate_uuid7)
    workspace_id: Mapped[str] = mapped_column(String(63), nullable=False)
    name: Mapped[str] = mapped_column(String(63), nullable=False)
    # Lower-cased name; uniqueness is case-insensitive within a workspace
    name_key: Mapped[str] = mapped_column(String(63), nullable=False)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default=DEFAULT_COLOR)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    permission_codes: Mapped[list[str]] = mapped_column(JSONType, default=list, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("workspace_id", "name_key", name="uq_custom_roles_workspace_name"),
    )


class Group(Base):
    """Named set of workspace users, used to bulk-assign custom roles."""

    __tablename__ = "groups"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=generate_uuid7)
    workspace_id: Mapped[str] = mapped_column(String(63), nullable=False)
    name: Mapped[str] = mapped_column(String(63), nullable=False)
    name_key: Mapped[str] = mapped_column(String(63), nullable=False)
    color: Mapped[str] = mapped_column(String(7), nullable=False, default=DEFAULT_COLOR)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint("workspace_id", "name_key", name="uq_groups_workspace_name"),
    )


class GroupMember(Base):
    """Set relation between groups and users. Not ownership."""

    __tablename__ = "group_members"

    group_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("groups.id", ondelete="CASCADE"), primary_key=True
    )
    user_id: Mapped[str] = mapped_column(String(255), primary_key=True)
    workspace_id: Mapped[str] = mapped_column(String(63), nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (Index("ix_group_members_workspace_user", "workspace_id", "user_id"),)


class RoleAssignment(Base):
    """Grants a custom role to exactly one subject: a user or a group.

    Direct and group-derived grants are separate rows, so removing a user
    from a group never revokes a role that was also granted directly.
    """

    __tablename__ = "role_assignments"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=generate_uuid7)
    workspace_id: Mapped[str] = mapped_column(String(63), nullable=False)
    role_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("custom_roles.id", ondelete="CASCADE"), nullable=False
    )
    user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    group_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid, ForeignKey("groups.id", ondelete="CASCADE"), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )

    __table_args__ = (
        CheckConstraint(
            "(user_id IS NULL) <> (group_id IS NULL)",
            name="ck_role_assignments_one_subject",
        ),
        UniqueConstraint("role_id", "user_id", name="uq_role_assignments_role_user"),
        UniqueConstraint("role_id", "group_id", name="uq_role_assignments_role_group"),
        Index("ix_role_assignments_workspace_user", "workspace_id", "user_id"),
    )


class ResourceOverride(Base):
    """Explicit grant or deny of one permission code on one board or project for one user."""

    __tablename__ = "resource_overrides"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=generate_uuid7)
    workspace_id: Mapped[str] = mapped_column(String(63), nullable=False)
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False)  # board, project
    resource_id: Mapped[str] = mapped_column(String(255), nullable=False)
    user_id: Mapped[str] = mapped_column(String(255), nullable=False)
    permission_code: Mapped[str] = mapped_column(String(63), nullable=False)
    effect: Mapped[str] = mapped_column(String(10), nullable=False)  # grant, deny

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now, nullable=False
    )

    __table_args__ = (
        UniqueConstraint(
            "workspace_id",
            "resource_type",
            "resource_id",
            "user_id",
            "permission_code",
            name="uq_resource_overrides_target",
        ),
        Index(
            "ix_resource_overrides_lookup",
            "resource_type",
            "resource_id",
            "user_id",
        ),
    )


class AuditEntry(Base):
    """Append-only record of one authorization-affecting mutation.

    Ordered by (timestamp, seq). Timestamps are clamped to be non-decreasing
    per workspace at write time, so seq order and timestamp order agree.
    """

    __tablename__ = "audit_entries"

    seq: Mapped[int] = mapped_column(
        BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True
    )
    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, unique=True, nullable=False, default=generate_uuid7
    )
    workspace_id: Mapped[str] = mapped_column(String(63), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    performed_by: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(40), nullable=False)
    target_type: Mapped[str] = mapped_column(String(20), nullable=False)
    target_id: Mapped[str] = mapped_column(String(255), nullable=False)
    before_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    after_snapshot: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    detail: Mapped[dict[str, Any]] = mapped_column(JSONType, default=dict, nullable=False)

    __table_args__ = (
        Index("ix_audit_entries_workspace_order", "workspace_id", "timestamp", "seq"),
    )
