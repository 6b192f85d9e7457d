"""
Tests for organization creation, lookup and listing.

Tests cover:
- Creator becomes the single owner
- Slug conflicts
- Compensation when the owner membership cannot be written
"""

from __future__ import annotations

from unittest.mock import AsyncMock, patch

import pytest
from sqlmodel import select

from orgconsole.core.errors import ConflictError, ConsoleError, NotFound, PolicyViolation
from orgconsole.models.org_membership import OrganizationMembership
from orgconsole.models.organization import Organization
from orgconsole.services import organizations as org_service
from orgconsole_shared.schemas.organizations import OrgCreateRequest

from conftest import account_of, make_user


def cafe_request(slug: str = "corner-cafe") -> OrgCreateRequest:
    return OrgCreateRequest(name="Corner Cafe", slug=slug, type="cafe")


class TestCreateOrganization:
    async def test_creator_is_single_owner(self, session):
        creator = await make_user(session, "founder@cafe.com")

        org = await org_service.create_organization(cafe_request(), account_of(creator), session)

        assert org.plan == "free"
        assert org.is_active
        result = await session.execute(
            select(OrganizationMembership).where(OrganizationMembership.organization_id == org.id)
        )
        rows = result.scalars().all()
        assert [(m.user_id, m.role) for m in rows] == [(creator.id, "owner")]

    async def test_duplicate_slug(self, session):
        creator = await make_user(session, "founder@cafe.com")
        await org_service.create_organization(cafe_request(), account_of(creator), session)

        with pytest.raises(ConflictError, match="already taken"):
            await org_service.create_organization(cafe_request(), account_of(creator), session)

    async def test_membership_failure_removes_organization(self, session):
        creator = await make_user(session, "founder@cafe.com")

        with patch(
            "orgconsole.services.organizations.AuthorizationStore.insert_org_membership",
            AsyncMock(side_effect=PolicyViolation("organization_members", "insert")),
        ):
            with pytest.raises(ConsoleError, match="Failed to create organization membership"):
                await org_service.create_organization(cafe_request(), account_of(creator), session)

        result = await session.execute(select(Organization).where(Organization.slug == "corner-cafe"))
        assert result.scalar_one_or_none() is None

    async def test_slug_free_again_after_compensation(self, session):
        creator = await make_user(session, "founder@cafe.com")
        with patch(
            "orgconsole.services.organizations.AuthorizationStore.insert_org_membership",
            AsyncMock(side_effect=ConsoleError()),
        ):
            with pytest.raises(ConsoleError):
                await org_service.create_organization(cafe_request(), account_of(creator), session)

        org = await org_service.create_organization(cafe_request(), account_of(creator), session)
        assert org.slug == "corner-cafe"


class TestLookup:
    async def test_get_by_slug(self, session, org):
        found = await org_service.get_organization_by_slug("acme", session)
        assert found.id == org.id

    async def test_missing_slug(self, session):
        with pytest.raises(NotFound, match="Organization not found"):
            await org_service.get_organization_by_slug("nope", session)

    async def test_list_user_organizations(self, session, org, owner):
        items = await org_service.list_user_organizations(owner.id, session)
        assert items == [
            {
                "id": org.id,
                "name": "Acme Foods",
                "slug": "acme",
                "type": "restaurant",
                "plan": "free",
                "role": "owner",
            }
        ]

    async def test_list_excludes_other_orgs(self, session, org):
        stranger = await make_user(session, "stranger@x.com")
        assert await org_service.list_user_organizations(stranger.id, session) == []
