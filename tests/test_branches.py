"""
Tests for branch CRUD and its permission checks.
"""

from __future__ import annotations

import uuid

import pytest

from orgconsole.core.errors import ConflictError, NotFound, PermissionDenied
from orgconsole.services import branches as branch_service
from orgconsole_shared.schemas.branches import BranchCreateRequest, BranchUpdateRequest

from conftest import add_branch_member, make_branch, make_org, make_user


class TestBranchCrud:
    async def test_create_and_list(self, session, org):
        req = BranchCreateRequest(name="Uptown", code="up1", latitude=40.7, longitude=-73.9)

        branch = await branch_service.create_branch(org, "manager", req, session)

        assert branch.code == "UP1"
        assert branch.is_active
        assert [b.id for b in await branch_service.list_branches(org, session)] == [branch.id]

    async def test_member_cannot_create(self, session, org):
        with pytest.raises(PermissionDenied, match="create branches"):
            await branch_service.create_branch(
                org, "member", BranchCreateRequest(name="Uptown", code="UP1"), session
            )

    async def test_duplicate_code(self, session, org):
        await make_branch(session, org, code="DT01")
        with pytest.raises(ConflictError, match="A branch with this code already exists"):
            await branch_service.create_branch(
                org, "owner", BranchCreateRequest(name="Other", code="dt01"), session
            )

    async def test_same_code_in_another_org(self, session, org):
        await make_branch(session, org, code="DT01")
        other_owner = await make_user(session, "boss@bakery.com")
        bakery = await make_org(session, other_owner, slug="bakery", name="Bakery", type="bakery")

        branch = await branch_service.create_branch(
            bakery, "owner", BranchCreateRequest(name="Downtown", code="DT01"), session
        )
        assert branch.organization_id == bakery.id

    async def test_update(self, session, org):
        branch = await make_branch(session, org)

        updated = await branch_service.update_branch(
            org, "admin", branch.id, BranchUpdateRequest(name="Downtown East", is_active=False), session
        )

        assert updated.name == "Downtown East"
        assert updated.code == "DT01"
        assert not updated.is_active

    async def test_update_to_taken_code(self, session, org):
        await make_branch(session, org, code="DT01")
        other = await make_branch(session, org, name="Uptown", code="UP01")

        with pytest.raises(ConflictError):
            await branch_service.update_branch(org, "owner", other.id, BranchUpdateRequest(code="DT01"), session)

    async def test_delete_removes_branch_members(self, session, org):
        branch = await make_branch(session, org)
        cook = await make_user(session, "cook@acme.com")
        await add_branch_member(session, branch, cook)

        await branch_service.delete_branch(org, "owner", branch.id, session)

        assert await branch_service.list_branches(org, session) == []

    async def test_branch_of_other_org_not_found(self, session, org):
        with pytest.raises(NotFound, match="Branch not found"):
            await branch_service.delete_branch(org, "owner", uuid.uuid4(), session)

    async def test_branch_role_does_not_grant_branch_management(self, session, org):
        branch = await make_branch(session, org)
        with pytest.raises(PermissionDenied, match="delete branches"):
            await branch_service.delete_branch(org, "member", branch.id, session)
