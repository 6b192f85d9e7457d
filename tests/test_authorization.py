"""
Tests for role predicates and the membership store's row-level policy.
"""

from __future__ import annotations

import pytest

from orgconsole.core.errors import PermissionDenied, PolicyViolation
from orgconsole.services.authorization import (
    AuthorizationStore,
    Operation,
    can_assign_role,
    can_manage_branch_members,
    can_modify_member,
    is_allowed,
    require,
)

from conftest import add_member, make_branch, make_user


class TestOperationMatrix:
    @pytest.mark.parametrize("role", ["owner", "admin", "manager"])
    @pytest.mark.parametrize("operation", list(Operation))
    def test_managing_roles_allowed(self, role, operation):
        assert is_allowed(role, operation)

    @pytest.mark.parametrize("operation", list(Operation))
    def test_member_denied(self, operation):
        assert not is_allowed("member", operation)

    def test_non_member_denied(self):
        assert not is_allowed(None, Operation.INVITE_MEMBER)

    def test_require_raises_with_message(self):
        with pytest.raises(PermissionDenied, match="do not have permission to invite"):
            require("member", Operation.INVITE_MEMBER, "You do not have permission to invite members")


class TestRoleElevation:
    def test_owner_can_grant_owner(self):
        assert can_assign_role("owner", "owner")

    @pytest.mark.parametrize("actor", ["admin", "manager"])
    def test_only_owner_grants_owner(self, actor):
        assert not can_assign_role(actor, "owner")

    def test_manager_cannot_grant_admin(self):
        assert not can_assign_role("manager", "admin")
        assert can_assign_role("manager", "manager")
        assert can_assign_role("manager", "member")

    def test_admin_grants_up_to_admin(self):
        assert can_assign_role("admin", "admin")
        assert can_assign_role("admin", "member")

    def test_member_assigns_nothing(self):
        assert not can_assign_role("member", "member")

    def test_modify_higher_ranked_denied(self):
        assert not can_modify_member("admin", "owner")
        assert not can_modify_member("manager", "admin")
        assert can_modify_member("owner", "owner")


class TestBranchMemberPredicate:
    def test_org_manager_manages_any_branch(self):
        assert can_manage_branch_members("manager", None)

    def test_branch_role_holder_manages_own_branch(self):
        assert can_manage_branch_members("member", "viewer")

    def test_plain_member_denied(self):
        assert not can_manage_branch_members("member", None)

    def test_branch_role_without_org_membership_denied(self):
        assert not can_manage_branch_members(None, "manager")


class TestStorePolicy:
    async def test_member_cannot_insert_membership(self, session, org):
        member = await make_user(session, "member@acme.com")
        await add_member(session, org, member, "member")
        outsider = await make_user(session, "outsider@acme.com")

        store = AuthorizationStore(session, member.id)
        with pytest.raises(PolicyViolation):
            await store.insert_org_membership(org.id, outsider.id, "member")

    async def test_manager_can_insert_membership(self, session, org, owner):
        newcomer = await make_user(session, "newcomer@acme.com")
        store = AuthorizationStore(session, owner.id)
        membership = await store.insert_org_membership(org.id, newcomer.id, "member")
        assert membership.role == "member"

    async def test_self_join_without_invitation_denied(self, session, org):
        stranger = await make_user(session, "stranger@acme.com")
        store = AuthorizationStore(session, stranger.id)
        with pytest.raises(PolicyViolation):
            await store.insert_org_membership(org.id, stranger.id, "owner")

    async def test_member_without_branch_role_cannot_add_to_branch(self, session, org):
        staff = await make_user(session, "staff@acme.com")
        await add_member(session, org, staff, "member")
        branch = await make_branch(session, org)
        store = AuthorizationStore(session, staff.id)
        with pytest.raises(PolicyViolation):
            await store.insert_branch_membership(branch, staff.id, "viewer")

    async def test_count_owners(self, session, org, owner):
        store = AuthorizationStore(session, owner.id)
        assert await store.count_owners(org.id) == 1
