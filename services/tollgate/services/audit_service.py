"""Audit log: transactional recording and cursor-paged queries.

Every mutating engine operation runs inside ``audited_mutation``, which
holds the workspace write lock, collects exactly one audit entry, and
commits the change and its entry together. If anything fails (including
the audit write itself) the whole unit is rolled back, so the log never
misses a committed change and never records a failed one.
"""

import base64
import binascii
import uuid
from collections.abc import AsyncGenerator, AsyncIterator, Iterable
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tollgate.config import settings
from tollgate.db.models import AuditEntry, utc_now
from tollgate.errors import PersistenceError, ValidationError
from tollgate.logging_config import get_logger, mutation_context
from tollgate.services.workspace_lock import workspace_write_lock

logger = get_logger(__name__)


class AuditAction(StrEnum):
    WORKSPACE_CREATED = "workspace_created"
    MEMBER_ADDED = "member_added"
    MEMBER_ROLE_CHANGED = "member_role_changed"
    MEMBER_REMOVED = "member_removed"
    OWNERSHIP_TRANSFERRED = "ownership_transferred"
    ROLE_CREATED = "role_created"
    ROLE_UPDATED = "role_updated"
    ROLE_DELETED = "role_deleted"
    ROLE_ASSIGNED = "role_assigned"
    ROLE_REMOVED = "role_removed"
    GROUP_CREATED = "group_created"
    GROUP_UPDATED = "group_updated"
    GROUP_DELETED = "group_deleted"
    GROUP_MEMBER_ADDED = "group_member_added"
    GROUP_MEMBER_REMOVED = "group_member_removed"
    OVERRIDE_SET = "override_set"
    OVERRIDE_CLEARED = "override_cleared"


class AuditTarget(StrEnum):
    WORKSPACE = "workspace"
    MEMBER = "member"
    ROLE = "role"
    GROUP = "group"
    ASSIGNMENT = "assignment"
    OVERRIDE = "override"


def _as_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive datetimes; everything stored is UTC
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


async def _next_timestamp(db: AsyncSession, workspace_id: str) -> datetime:
    """Current time, clamped so entries never go backwards within a workspace."""
    now = utc_now()
    result = await db.execute(
        select(func.max(AuditEntry.timestamp)).where(AuditEntry.workspace_id == workspace_id)
    )
    last = result.scalar_one_or_none()
    if last is not None:
        last = _as_utc(last)
        if last > now:
            return last
    return now


async def record_audit(
    db: AsyncSession,
    workspace_id: str,
    performed_by: str,
    action: AuditAction,
    target_type: AuditTarget,
    target_id: str | uuid.UUID,
    before: dict[str, Any] | None = None,
    after: dict[str, Any] | None = None,
    detail: dict[str, Any] | None = None,
) -> AuditEntry:
    """Append one audit entry inside the caller's transaction.

    Internal: only mutating engine operations call this, through
    ``MutationScope.record``. The entry is flushed immediately so a
    failing audit write aborts the surrounding mutation.
    """
    entry = AuditEntry(
        workspace_id=workspace_id,
        timestamp=await _next_timestamp(db, workspace_id),
        performed_by=performed_by,
        action=str(action),
        target_type=str(target_type),
        target_id=str(target_id),
        before_snapshot=before,
        after_snapshot=after,
        detail=detail or {},
    )
    db.add(entry)
    await db.flush()
    return entry


@dataclass
class MutationScope:
    """Handle passed to a mutation body; collects its single audit entry."""

    db: AsyncSession
    workspace_id: str
    performed_by: str
    entries: list[AuditEntry] = field(default_factory=list)
    action: AuditAction | None = None

    async def record(
        self,
        action: AuditAction,
        target_type: AuditTarget,
        target_id: str | uuid.UUID,
        before: dict[str, Any] | None = None,
        after: dict[str, Any] | None = None,
        detail: dict[str, Any] | None = None,
    ) -> AuditEntry:
        if self.entries:
            raise RuntimeError("A mutation records exactly one audit entry")
        entry = await record_audit(
            self.db,
            self.workspace_id,
            self.performed_by,
            action,
            target_type,
            target_id,
            before=before,
            after=after,
            detail=detail,
        )
        self.entries.append(entry)
        self.action = action
        return entry


def _has_pending_changes(db: AsyncSession) -> bool:
    return bool(db.new or db.dirty or db.deleted)


@asynccontextmanager
async def audited_mutation(
    db: AsyncSession, workspace_id: str, performed_by: str
) -> AsyncGenerator[MutationScope]:
    """Run a mutation as one atomic, audited unit of work.

    A body that records nothing is a no-op: it must not leave changes
    behind. Storage errors roll everything back and surface as
    PersistenceError; engine errors roll back and propagate unchanged.
    """
    if not workspace_id:
        raise ValidationError("workspace_id is required")
    if not performed_by:
        raise ValidationError("performed_by is required")

    with mutation_context(workspace_id, performed_by):
        async with workspace_write_lock(workspace_id):
            scope = MutationScope(db=db, workspace_id=workspace_id, performed_by=performed_by)
            try:
                yield scope
                if not scope.entries and _has_pending_changes(db):
                    raise RuntimeError("Mutation changed state without recording an audit entry")
                await db.commit()
            except SQLAlchemyError as e:
                await db.rollback()
                logger.error(
                    "Mutation rolled back: storage failure",
                    audit_action=scope.action,
                    error=str(e),
                )
                raise PersistenceError("Storage failure; no changes were committed") from e
            except BaseException:
                await db.rollback()
                raise


# --- Queries ---


@dataclass(frozen=True)
class AuditFilters:
    """Optional filters for audit queries. Unset fields match everything."""

    actions: frozenset[str] | None = None
    target_type: str | None = None
    target_id: str | None = None
    performed_by: str | None = None
    since: datetime | None = None
    until: datetime | None = None

    @classmethod
    def build(
        cls,
        actions: Iterable[str] | None = None,
        target_type: str | None = None,
        target_id: str | None = None,
        performed_by: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> "AuditFilters":
        """Validate and normalize filter values."""
        action_set = frozenset(actions) if actions else None
        if action_set:
            valid = {a.value for a in AuditAction}
            unknown = sorted(action_set - valid)
            if unknown:
                raise ValidationError(f"Unknown audit action(s): {', '.join(unknown)}")
        if target_type is not None and target_type not in {t.value for t in AuditTarget}:
            raise ValidationError(f"Unknown audit target type: {target_type}")
        since, until = _as_utc(since), _as_utc(until)
        if since is not None and until is not None and since > until:
            raise ValidationError("'since' must not be after 'until'")
        return cls(
            actions=action_set,
            target_type=target_type,
            target_id=target_id,
            performed_by=performed_by,
            since=since,
            until=until,
        )


@dataclass
class AuditPage:
    entries: list[AuditEntry]
    next_cursor: str | None


def encode_cursor(seq: int) -> str:
    return base64.urlsafe_b64encode(f"seq:{seq}".encode()).decode().rstrip("=")


def decode_cursor(cursor: str) -> int:
    """Decode a continuation cursor, raising ValidationError when malformed."""
    padded = cursor + "=" * (-len(cursor) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode()).decode()
        prefix, _, value = raw.partition(":")
        seq = int(value)
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ValidationError("Malformed audit cursor") from e
    if prefix != "seq" or seq < 1:
        raise ValidationError("Malformed audit cursor")
    return seq


def _page_size(limit: int | None) -> int:
    cfg = settings.audit
    if limit is None:
        return cfg.default_page_size
    if limit < 1:
        raise ValidationError("limit must be at least 1")
    return min(limit, cfg.max_page_size)


async def query_audit(
    db: AsyncSession,
    workspace_id: str,
    filters: AuditFilters | None = None,
    cursor: str | None = None,
    limit: int | None = None,
) -> AuditPage:
    """One page of audit entries, newest first.

    Pass the returned ``next_cursor`` back in to continue; ``None`` means
    the sequence is exhausted. A cursor stays valid indefinitely since
    entries are never updated or deleted.
    """
    if not workspace_id:
        raise ValidationError("workspace_id is required")
    filters = filters or AuditFilters()
    size = _page_size(limit)

    stmt = select(AuditEntry).where(AuditEntry.workspace_id == workspace_id)
    if filters.actions:
        stmt = stmt.where(AuditEntry.action.in_(filters.actions))
    if filters.target_type is not None:
        stmt = stmt.where(AuditEntry.target_type == filters.target_type)
    if filters.target_id is not None:
        stmt = stmt.where(AuditEntry.target_id == filters.target_id)
    if filters.performed_by is not None:
        stmt = stmt.where(AuditEntry.performed_by == filters.performed_by)
    if filters.since is not None:
        stmt = stmt.where(AuditEntry.timestamp >= filters.since)
    if filters.until is not None:
        stmt = stmt.where(AuditEntry.timestamp <= filters.until)
    if cursor is not None:
        # Within a workspace seq order matches timestamp order
        stmt = stmt.where(AuditEntry.seq < decode_cursor(cursor))

    stmt = stmt.order_by(AuditEntry.timestamp.desc(), AuditEntry.seq.desc()).limit(size + 1)
    result = await db.execute(stmt)
    rows = list(result.scalars().all())

    has_more = len(rows) > size
    entries = rows[:size]
    next_cursor = encode_cursor(entries[-1].seq) if has_more and entries else None
    return AuditPage(entries=entries, next_cursor=next_cursor)


async def stream_audit(
    db: AsyncSession,
    workspace_id: str,
    filters: AuditFilters | None = None,
    cursor: str | None = None,
    page_size: int | None = None,
) -> AsyncIterator[AuditEntry]:
    """Lazily iterate all matching entries newest first, one page at a time."""
    while True:
        page = await query_audit(db, workspace_id, filters, cursor=cursor, limit=page_size)
        for entry in page.entries:
            yield entry
        if page.next_cursor is None:
            return
        cursor = page.next_cursor


def audit_entry_json(entry: AuditEntry) -> dict:
    return {
        "id": str(entry.id),
        "type": "audit-entries",
        "attributes": {
            "workspace-id": entry.workspace_id,
            "timestamp": _as_utc(entry.timestamp).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "performed-by": entry.performed_by,
            "action": entry.action,
            "target-type": entry.target_type,
            "target-id": entry.target_id,
            "before": entry.before_snapshot,
            "after": entry.after_snapshot,
            "detail": entry.detail,
        },
    }
