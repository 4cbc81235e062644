"""Tests for the audit log: atomic recording, ordering, and cursor paging."""

from datetime import UTC, datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from tollgate.config import settings
from tollgate.db.models import Group
from tollgate.errors import PersistenceError, ValidationError
from tollgate.services import role_service
from tollgate.services.audit_service import (
    AuditAction,
    AuditFilters,
    AuditTarget,
    _as_utc,
    _page_size,
    audit_entry_json,
    audited_mutation,
    decode_cursor,
    encode_cursor,
    query_audit,
    stream_audit,
)
from tollgate.services.group_service import list_groups
from tollgate.services.membership_service import create_workspace

ROLE_CREATED = AuditFilters.build(actions=["role_created"])


async def _create_roles(db, ws, names):
    for name in names:
        await role_service.create_role(db, ws.admin, ws.id, name, [])


class TestAtomicity:
    async def test_failed_audit_write_rolls_back_mutation(self, db, ws, audit_count):
        before = await audit_count(ws.id)
        failure = OperationalError("INSERT INTO audit_entries", {}, Exception("disk full"))

        with patch(
            "tollgate.services.audit_service.record_audit",
            new=AsyncMock(side_effect=failure),
        ):
            with pytest.raises(PersistenceError):
                await role_service.create_role(db, ws.admin, ws.id, "Auditor", ["reports.view"])

        assert await role_service.list_roles(db, ws.id) == []
        assert await audit_count(ws.id) == before

    async def test_engine_error_rolls_back_and_propagates(self, db, ws, audit_count):
        before = await audit_count(ws.id)

        with pytest.raises(ValidationError):
            async with audited_mutation(db, ws.id, ws.admin):
                db.add(Group(workspace_id=ws.id, name="Temp", name_key="temp"))
                await db.flush()
                raise ValidationError("boom")

        assert await audit_count(ws.id) == before

    async def test_unaudited_change_is_rejected(self, db, ws):
        with pytest.raises(RuntimeError):
            async with audited_mutation(db, ws.id, ws.admin):
                db.add(Group(workspace_id=ws.id, name="Temp", name_key="temp"))

        assert await list_groups(db, ws.id) == []

    async def test_one_entry_per_mutation(self, db, ws):
        with pytest.raises(RuntimeError):
            async with audited_mutation(db, ws.id, ws.admin) as scope:
                await scope.record(AuditAction.GROUP_CREATED, AuditTarget.GROUP, "g-1")
                await scope.record(AuditAction.GROUP_UPDATED, AuditTarget.GROUP, "g-1")

    async def test_empty_body_commits_nothing(self, db, ws, audit_count):
        before = await audit_count(ws.id)
        async with audited_mutation(db, ws.id, ws.admin):
            pass
        assert await audit_count(ws.id) == before

    async def test_actor_required(self, db, ws):
        with pytest.raises(ValidationError):
            async with audited_mutation(db, ws.id, ""):
                pass


class TestOrdering:
    async def test_newest_first(self, db, ws):
        await _create_roles(db, ws, ["first", "second", "third"])

        page = await query_audit(db, ws.id, ROLE_CREATED)

        assert [e.after_snapshot["name"] for e in page.entries] == ["third", "second", "first"]
        timestamps = [_as_utc(e.timestamp) for e in page.entries]
        assert timestamps == sorted(timestamps, reverse=True)
        assert page.next_cursor is None

    async def test_timestamps_never_go_backwards(self, db, ws):
        await _create_roles(db, ws, ["first"])
        past = datetime.now(UTC) - timedelta(days=1)

        with patch("tollgate.services.audit_service.utc_now", return_value=past):
            await _create_roles(db, ws, ["second"])

        newest, older = (await query_audit(db, ws.id, ROLE_CREATED)).entries
        assert newest.after_snapshot["name"] == "second"
        assert _as_utc(newest.timestamp) >= _as_utc(older.timestamp)

    async def test_workspaces_are_isolated(self, db, ws):
        await create_workspace(db, "o2", "ws-2", "o2")
        page = await query_audit(db, "ws-2")
        assert [e.action for e in page.entries] == ["workspace_created"]


class TestPaging:
    async def test_cursor_walks_every_entry_once(self, db, ws):
        names = [f"role-{i}" for i in range(5)]
        await _create_roles(db, ws, names)

        seen = []
        cursor = None
        pages = 0
        while True:
            page = await query_audit(db, ws.id, ROLE_CREATED, cursor=cursor, limit=2)
            seen.extend(e.after_snapshot["name"] for e in page.entries)
            pages += 1
            if page.next_cursor is None:
                break
            cursor = page.next_cursor

        assert pages == 3
        assert seen == list(reversed(names))

    async def test_cursor_is_restartable(self, db, ws):
        await _create_roles(db, ws, ["a", "b", "c"])
        first = await query_audit(db, ws.id, ROLE_CREATED, limit=1)

        again = await query_audit(db, ws.id, ROLE_CREATED, cursor=first.next_cursor, limit=1)
        once_more = await query_audit(db, ws.id, ROLE_CREATED, cursor=first.next_cursor, limit=1)

        assert again.entries[0].id == once_more.entries[0].id

    async def test_new_entries_do_not_shift_a_cursor(self, db, ws):
        await _create_roles(db, ws, ["a", "b", "c"])
        first = await query_audit(db, ws.id, ROLE_CREATED, limit=1)

        await _create_roles(db, ws, ["d"])
        rest = await query_audit(db, ws.id, ROLE_CREATED, cursor=first.next_cursor)

        assert [e.after_snapshot["name"] for e in rest.entries] == ["b", "a"]

    async def test_stream(self, db, ws):
        names = [f"role-{i}" for i in range(5)]
        await _create_roles(db, ws, names)

        streamed = [
            e.after_snapshot["name"]
            async for e in stream_audit(db, ws.id, ROLE_CREATED, page_size=2)
        ]

        assert streamed == list(reversed(names))

    async def test_filters(self, db, ws):
        role = await role_service.create_role(db, ws.admin, ws.id, "Auditor", [])
        role_id = role.id
        await role_service.delete_role(db, ws.owner, ws.id, role_id)

        by_target = await query_audit(db, ws.id, AuditFilters.build(target_id=str(role_id)))
        assert [e.action for e in by_target.entries] == ["role_deleted", "role_created"]

        by_actor = await query_audit(
            db, ws.id, AuditFilters.build(target_type="role", performed_by=ws.owner)
        )
        assert [e.action for e in by_actor.entries] == ["role_deleted"]

        future = datetime.now(UTC) + timedelta(days=1)
        assert (await query_audit(db, ws.id, AuditFilters.build(since=future))).entries == []

    async def test_time_range_with_offsets(self, db, ws):
        await role_service.create_role(db, ws.admin, ws.id, "Auditor", [])
        now = datetime.now(UTC)
        # Wall-clock readings that sit on the wrong side of now unless converted
        since = (now - timedelta(hours=1)).astimezone(timezone(timedelta(hours=5)))
        until = (now + timedelta(hours=1)).astimezone(timezone(timedelta(hours=-5)))

        page = await query_audit(db, ws.id, AuditFilters.build(since=since, until=until))
        assert "role_created" in [e.action for e in page.entries]

        later = (now + timedelta(hours=1)).astimezone(timezone(timedelta(hours=-5)))
        assert (await query_audit(db, ws.id, AuditFilters.build(since=later))).entries == []


class TestValidation:
    def test_cursor_round_trip(self):
        assert decode_cursor(encode_cursor(42)) == 42

    @pytest.mark.parametrize("cursor", ["not-a-cursor!!", "", encode_cursor(0)])
    def test_malformed_cursor(self, cursor):
        with pytest.raises(ValidationError):
            decode_cursor(cursor)

    async def test_malformed_cursor_in_query(self, db, ws):
        with pytest.raises(ValidationError):
            await query_audit(db, ws.id, cursor="%%%")

    def test_page_size(self):
        assert _page_size(None) == settings.audit.default_page_size
        assert _page_size(10_000) == settings.audit.max_page_size
        with pytest.raises(ValidationError):
            _page_size(0)

    def test_unknown_action_filter(self):
        with pytest.raises(ValidationError):
            AuditFilters.build(actions=["role_exploded"])

    def test_unknown_target_type_filter(self):
        with pytest.raises(ValidationError):
            AuditFilters.build(target_type="planet")

    def test_inverted_time_range(self):
        now = datetime.now(UTC)
        with pytest.raises(ValidationError):
            AuditFilters.build(since=now, until=now - timedelta(seconds=1))

    def test_bounds_normalized_to_utc(self):
        instant = datetime(2026, 3, 1, 17, 0, tzinfo=timezone(timedelta(hours=5)))
        filters = AuditFilters.build(since=instant, until=datetime(2026, 3, 1, 13, 0))
        assert filters.since == datetime(2026, 3, 1, 12, 0, tzinfo=UTC)
        assert filters.since.utcoffset() == timedelta(0)
        assert filters.until == datetime(2026, 3, 1, 13, 0, tzinfo=UTC)

    def test_offset_bounds_compared_as_instants(self):
        # 12:30 at UTC-5 is after 14:00 at UTC+0
        with pytest.raises(ValidationError):
            AuditFilters.build(
                since=datetime(2026, 3, 1, 12, 30, tzinfo=timezone(timedelta(hours=-5))),
                until=datetime(2026, 3, 1, 14, 0, tzinfo=UTC),
            )


class TestSerialization:
    async def test_entry_json(self, db, ws):
        await _create_roles(db, ws, ["Auditor"])
        entry = (await query_audit(db, ws.id, ROLE_CREATED)).entries[0]

        data = audit_entry_json(entry)

        assert data["type"] == "audit-entries"
        assert data["attributes"]["action"] == "role_created"
        assert data["attributes"]["performed-by"] == ws.admin
        assert data["attributes"]["timestamp"].endswith("Z")
