"""Tests for workspace membership and the single-owner invariant."""

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError

from tollgate.auth.builtin_roles import WorkspaceRole
from tollgate.db.models import WorkspaceMember
from tollgate.errors import ConflictError, NotFoundError, ValidationError
from tollgate.services import (
    assignment_service,
    group_service,
    membership_service,
    override_service,
    role_service,
)


async def _owner_count(db, workspace_id: str) -> int:
    result = await db.execute(
        select(func.count())
        .select_from(WorkspaceMember)
        .where(
            WorkspaceMember.workspace_id == workspace_id,
            WorkspaceMember.role == WorkspaceRole.OWNER.value,
        )
    )
    return result.scalar_one()


class TestCreateWorkspace:
    async def test_creates_single_owner(self, db, audit_count):
        owner = await membership_service.create_workspace(db, "u1", "ws-new", "u1")

        assert owner.role == "owner"
        assert await membership_service.workspace_exists(db, "ws-new")
        assert await _owner_count(db, "ws-new") == 1
        assert await audit_count("ws-new") == 1

    async def test_existing_workspace_rejected(self, db, ws, audit_count):
        before = await audit_count(ws.id)
        with pytest.raises(ValidationError):
            await membership_service.create_workspace(db, "someone", ws.id, "someone")
        assert await audit_count(ws.id) == before

    async def test_empty_ids_rejected(self, db):
        with pytest.raises(ValidationError):
            await membership_service.create_workspace(db, "u1", "", "u1")
        with pytest.raises(ValidationError):
            await membership_service.create_workspace(db, "u1", "ws-x", "  ")


class TestMembers:
    async def test_workspace_roles(self, db, ws):
        assert await membership_service.get_workspace_role(db, ws.id, ws.owner) == "owner"
        assert await membership_service.get_workspace_role(db, ws.id, ws.viewer) == "viewer"
        assert await membership_service.get_workspace_role(db, ws.id, "stranger") is None

    async def test_list_members_sorted(self, db, ws):
        members = await membership_service.list_members(db, ws.id)
        assert [m.user_id for m in members] == sorted(
            [ws.owner, ws.admin, ws.member, ws.viewer]
        )

    async def test_add_owner_is_conflict(self, db, ws):
        with pytest.raises(ConflictError):
            await membership_service.add_member(db, ws.owner, ws.id, "u2", "owner")

    async def test_add_existing_member_rejected(self, db, ws, audit_count):
        before = await audit_count(ws.id)
        with pytest.raises(ValidationError):
            await membership_service.add_member(db, ws.owner, ws.id, ws.member, "viewer")
        assert await audit_count(ws.id) == before

    async def test_add_to_unknown_workspace(self, db):
        with pytest.raises(NotFoundError):
            await membership_service.add_member(db, "u1", "ws-missing", "u2", "member")

    async def test_invalid_role(self, db, ws):
        with pytest.raises(ValidationError):
            await membership_service.add_member(db, ws.owner, ws.id, "u2", "superuser")

    async def test_change_role(self, db, ws, audit_count):
        before = await audit_count(ws.id)
        member = await membership_service.change_member_role(
            db, ws.owner, ws.id, ws.viewer, "member"
        )
        assert member.role == "member"
        assert await audit_count(ws.id) == before + 1

    async def test_change_role_unchanged_is_not_audited(self, db, ws, audit_count):
        before = await audit_count(ws.id)
        await membership_service.change_member_role(db, ws.owner, ws.id, ws.viewer, "viewer")
        assert await audit_count(ws.id) == before

    async def test_owner_role_cannot_change(self, db, ws):
        with pytest.raises(ConflictError):
            await membership_service.change_member_role(db, ws.admin, ws.id, ws.owner, "admin")

    async def test_cannot_promote_to_owner_directly(self, db, ws):
        with pytest.raises(ConflictError):
            await membership_service.change_member_role(db, ws.owner, ws.id, ws.admin, "owner")

    async def test_owner_cannot_be_removed(self, db, ws):
        with pytest.raises(ConflictError):
            await membership_service.remove_member(db, ws.admin, ws.id, ws.owner)
        assert await _owner_count(db, ws.id) == 1

    async def test_remove_unknown_member(self, db, ws):
        with pytest.raises(NotFoundError):
            await membership_service.remove_member(db, ws.owner, ws.id, "stranger")

    async def test_remove_member_cascades(self, db, ws, audit_count):
        role = await role_service.create_role(db, ws.admin, ws.id, "Auditor", ["reports.view"])
        await assignment_service.assign_role_to_user(db, ws.admin, ws.id, ws.member, role.id)
        await group_service.create_group(db, ws.admin, ws.id, "Team", member_user_ids=[ws.member])
        await override_service.set_override(
            db, ws.admin, ws.id, "board", "b-1", ws.member, "board.delete", "grant"
        )
        before = await audit_count(ws.id)

        counts = await membership_service.remove_member(db, ws.admin, ws.id, ws.member)

        assert counts == {
            "removed_assignments": 1,
            "removed_group_memberships": 1,
            "removed_overrides": 1,
        }
        assert await audit_count(ws.id) == before + 1
        assert await assignment_service.effective_roles_for_user(db, ws.id, ws.member) == set()
        assert await group_service.group_ids_for_user(db, ws.id, ws.member) == set()
        assert await override_service.overrides_for(db, ws.id, "board", "b-1", ws.member) == []


class TestOwnershipTransfer:
    async def test_transfer(self, db, ws, audit_count):
        before = await audit_count(ws.id)

        new_owner = await membership_service.transfer_ownership(db, ws.owner, ws.id, ws.member)

        assert new_owner.user_id == ws.member
        assert await membership_service.get_workspace_role(db, ws.id, ws.member) == "owner"
        assert await membership_service.get_workspace_role(db, ws.id, ws.owner) == "admin"
        assert await _owner_count(db, ws.id) == 1
        assert await audit_count(ws.id) == before + 1

    async def test_transfer_with_custom_demotion(self, db, ws):
        await membership_service.transfer_ownership(
            db, ws.owner, ws.id, ws.admin, previous_owner_role="viewer"
        )
        assert await membership_service.get_workspace_role(db, ws.id, ws.owner) == "viewer"

    async def test_transfer_to_non_member(self, db, ws):
        with pytest.raises(NotFoundError):
            await membership_service.transfer_ownership(db, ws.owner, ws.id, "stranger")
        assert await membership_service.get_workspace_role(db, ws.id, ws.owner) == "owner"

    async def test_only_owner_can_transfer(self, db, ws, audit_count):
        before = await audit_count(ws.id)

        with pytest.raises(ConflictError):
            await membership_service.transfer_ownership(
                db, ws.admin, ws.id, ws.admin, previous_owner_role="viewer"
            )

        assert await membership_service.get_workspace_role(db, ws.id, ws.owner) == "owner"
        assert await membership_service.get_workspace_role(db, ws.id, ws.admin) == "admin"
        assert await audit_count(ws.id) == before

    async def test_transfer_to_current_owner(self, db, ws):
        with pytest.raises(ValidationError):
            await membership_service.transfer_ownership(db, ws.owner, ws.id, ws.owner)

    async def test_demotion_to_owner_rejected(self, db, ws):
        with pytest.raises(ValidationError):
            await membership_service.transfer_ownership(
                db, ws.owner, ws.id, ws.admin, previous_owner_role="owner"
            )

    async def test_database_rejects_second_owner(self, db, ws):
        db.add(WorkspaceMember(workspace_id=ws.id, user_id="intruder", role="owner"))
        with pytest.raises(IntegrityError):
            await db.flush()
        await db.rollback()
        assert await _owner_count(db, ws.id) == 1
