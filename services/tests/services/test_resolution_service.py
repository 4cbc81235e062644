"""Tests for permission resolution."""

from unittest.mock import AsyncMock

import pytest

from tollgate.auth.builtin_roles import VIEWER_BASELINE, WorkspaceRole
from tollgate.auth.permissions import ALL_PERMISSION_CODES
from tollgate.db.models import ResourceOverride
from tollgate.errors import ValidationError
from tollgate.services import (
    assignment_service,
    group_service,
    membership_service,
    override_service,
    role_service,
)
from tollgate.services.resolution_service import (
    PermissionSet,
    Provenance,
    check_permission,
    resolve,
)


class TestPermissionSet:
    def test_absent_code_is_false(self):
        permissions = PermissionSet({"item.view": (True, Provenance.ROLE)})
        assert permissions["item.view"] is True
        assert permissions["item.edit"] is False
        assert permissions.provenance("item.edit") is None

    def test_granted_excludes_denied(self):
        permissions = PermissionSet(
            {
                "item.view": (True, Provenance.ROLE),
                "item.edit": (False, Provenance.OVERRIDE_DENY),
            }
        )
        assert permissions.granted() == {"item.view"}
        assert list(permissions) == ["item.edit", "item.view"]
        assert permissions.to_dict()["item.edit"] == {
            "allowed": False,
            "provenance": "override:deny",
        }

    def test_empty(self):
        assert PermissionSet().is_empty
        assert len(PermissionSet()) == 0


class TestResolveOwner:
    async def test_owner_has_everything(self, db, ws):
        permissions = await resolve(db, ws.owner, ws.id)
        assert permissions.granted() == ALL_PERMISSION_CODES
        assert {permissions.provenance(c) for c in permissions} == {Provenance.OWNER}

    async def test_owner_ignores_deny_overrides(self, db, ws):
        await override_service.set_override(
            db, ws.admin, ws.id, "board", "b-1", ws.owner, "board.view", "deny"
        )
        permissions = await resolve(db, ws.owner, ws.id, "board", "b-1")
        assert permissions["board.view"] is True
        assert permissions.provenance("board.view") == Provenance.OWNER
        assert permissions.granted() == ALL_PERMISSION_CODES


class TestResolveRoles:
    async def test_viewer_baseline(self, db, ws):
        permissions = await resolve(db, ws.viewer, ws.id)
        assert permissions.granted() == VIEWER_BASELINE
        assert permissions["item.edit"] is False

    async def test_admin_cannot_transfer_ownership(self, db, ws):
        permissions = await resolve(db, ws.admin, ws.id)
        assert permissions["workspace.roles.manage"] is True
        assert permissions["workspace.ownership.transfer"] is False

    async def test_custom_role_adds_codes(self, db, ws):
        role = await role_service.create_role(db, ws.admin, ws.id, "Auditor", ["reports.view"])
        await assignment_service.assign_role_to_user(db, ws.admin, ws.id, ws.member, role.id)

        permissions = await resolve(db, ws.member, ws.id)

        assert permissions["reports.view"] is True
        assert permissions.provenance("reports.view") == Provenance.ROLE

    async def test_group_role_applies_until_removed(self, db, ws):
        role = await role_service.create_role(db, ws.admin, ws.id, "Editor", ["item.edit"])
        group = await group_service.create_group(
            db, ws.admin, ws.id, "G", member_user_ids=[ws.viewer]
        )
        await assignment_service.assign_role_to_group(db, ws.admin, ws.id, group.id, role.id)

        assert (await resolve(db, ws.viewer, ws.id))["item.edit"] is True

        await group_service.remove_member(db, ws.admin, ws.id, group.id, ws.viewer)

        assert (await resolve(db, ws.viewer, ws.id))["item.edit"] is False

    async def test_deleted_role_no_longer_grants(self, db, ws):
        role = await role_service.create_role(db, ws.admin, ws.id, "Auditor", ["reports.view"])
        await assignment_service.assign_role_to_user(db, ws.admin, ws.id, ws.member, role.id)
        await role_service.delete_role(db, ws.admin, ws.id, role.id)

        assert (await resolve(db, ws.member, ws.id))["reports.view"] is False

    async def test_other_workspace_roles_do_not_leak(self, db, ws):
        await membership_service.create_workspace(db, "o2", "ws-2", "o2")
        await membership_service.add_member(db, "o2", "ws-2", ws.viewer, "viewer")
        role = await role_service.create_role(db, "o2", "ws-2", "Editor", ["item.edit"])
        await assignment_service.assign_role_to_user(db, "o2", "ws-2", ws.viewer, role.id)

        assert (await resolve(db, ws.viewer, "ws-2"))["item.edit"] is True
        assert (await resolve(db, ws.viewer, ws.id))["item.edit"] is False


class TestResolveOverrides:
    async def test_auditor_scenario(self, db, ws):
        """Role grant, board deny, and workspace-level view stay consistent."""
        role = await role_service.create_role(db, ws.admin, ws.id, "Auditor", ["reports.view"])
        await assignment_service.assign_role_to_user(db, ws.admin, ws.id, ws.member, role.id)

        workspace_level = await resolve(db, ws.member, ws.id)
        assert workspace_level["reports.view"] is True
        assert workspace_level.provenance("reports.view") == Provenance.ROLE

        await override_service.set_override(
            db, ws.admin, ws.id, "board", "B", ws.member, "reports.view", "deny"
        )

        on_board = await resolve(db, ws.member, ws.id, "board", "B")
        assert on_board["reports.view"] is False
        assert on_board.provenance("reports.view") == Provenance.OVERRIDE_DENY

        assert (await resolve(db, ws.member, ws.id))["reports.view"] is True

    async def test_grant_override(self, db, ws):
        await override_service.set_override(
            db, ws.admin, ws.id, "board", "b-1", ws.member, "board.delete", "grant"
        )

        on_board = await resolve(db, ws.member, ws.id, "board", "b-1")
        assert on_board["board.delete"] is True
        assert on_board.provenance("board.delete") == Provenance.OVERRIDE_GRANT
        assert (await resolve(db, ws.member, ws.id, "board", "b-2"))["board.delete"] is False

    async def test_board_and_project_scopes_are_independent(self, db, ws):
        await override_service.set_override(
            db, ws.admin, ws.id, "project", "P", ws.member, "item.view", "deny"
        )
        assert (await resolve(db, ws.member, ws.id, "project", "P"))["item.view"] is False
        assert (await resolve(db, ws.member, ws.id, "board", "P"))["item.view"] is True

    async def test_codes_without_override_keep_role_value(self, db, ws):
        await override_service.set_override(
            db, ws.admin, ws.id, "board", "b-1", ws.member, "item.edit", "deny"
        )
        on_board = await resolve(db, ws.member, ws.id, "board", "b-1")
        assert on_board["item.view"] is True
        assert on_board.provenance("item.view") == Provenance.ROLE

    async def test_foreign_workspace_override_ignored(self, db, ws):
        db.add(
            ResourceOverride(
                workspace_id="ws-other",
                resource_type="board",
                resource_id="b-1",
                user_id=ws.member,
                permission_code="board.delete",
                effect="grant",
            )
        )
        await db.commit()

        on_board = await resolve(db, ws.member, ws.id, "board", "b-1")
        assert on_board["board.delete"] is False


class TestResolveEdgeCases:
    async def test_non_member_gets_empty_set(self, db, ws):
        permissions = await resolve(db, "stranger", ws.id)
        assert permissions.is_empty
        assert permissions["workspace.view"] is False

    async def test_unknown_workspace(self, db, ws):
        with pytest.raises(ValidationError):
            await resolve(db, ws.member, "ws-missing")

    @pytest.mark.parametrize(
        "user_id, workspace_id, resource_type, resource_id",
        [
            ("", "ws-1", None, None),
            ("member-1", "", None, None),
            ("member-1", "ws-1", "board", None),
            ("member-1", "ws-1", None, "b-1"),
            ("member-1", "ws-1", "folder", "b-1"),
            ("member-1", "ws-1", "board", ""),
        ],
    )
    async def test_malformed_queries(
        self, db, ws, user_id, workspace_id, resource_type, resource_id
    ):
        with pytest.raises(ValidationError):
            await resolve(db, user_id, workspace_id, resource_type, resource_id)

    async def test_custom_membership_lookup(self, db, ws):
        lookup = AsyncMock(return_value=WorkspaceRole.VIEWER)

        permissions = await resolve(db, "external-user", ws.id, membership_lookup=lookup)

        assert permissions.granted() == VIEWER_BASELINE
        lookup.assert_awaited_once_with(db, ws.id, "external-user")


class TestCheckPermission:
    async def test_decision(self, db, ws):
        decision = await check_permission(db, ws.member, ws.id, "item.edit")
        assert decision.allowed is True
        assert decision.provenance == Provenance.ROLE

    async def test_denied_decision(self, db, ws):
        decision = await check_permission(db, ws.viewer, ws.id, "item.edit")
        assert decision.allowed is False
        assert decision.provenance is None

    async def test_unknown_code(self, db, ws):
        with pytest.raises(ValidationError):
            await check_permission(db, ws.member, ws.id, "item.teleport")
