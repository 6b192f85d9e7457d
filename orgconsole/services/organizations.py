"""
Organization service: creation with owner bootstrap, lookup and listing.
"""

from __future__ import annotations

import uuid

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgconsole.core.errors import ConflictError, ConsoleError, NotFound, PolicyViolation, store_errors
from orgconsole.models.org_membership import OrganizationMembership
from orgconsole.models.organization import Organization
from orgconsole.services.authorization import AuthorizationStore
from orgconsole.services.directory import Account
from orgconsole_shared.schemas.common import OrgRole
from orgconsole_shared.schemas.organizations import OrgCreateRequest

log = structlog.get_logger()

SLUG_TAKEN = "This organization URL is already taken. Please choose another."
MEMBERSHIP_FAILED = "Failed to create organization membership"


async def list_user_organizations(user_id: uuid.UUID, session: AsyncSession) -> list[dict]:
    """All active organizations the user belongs to, with their role."""
    result = await session.execute(
        select(Organization, OrganizationMembership.role)
        .join(OrganizationMembership, OrganizationMembership.organization_id == Organization.id)
        .where(OrganizationMembership.user_id == user_id)
        .where(Organization.is_active == True)  # noqa: E712
        .order_by(Organization.name)
    )
    return [
        {
            "id": org.id,
            "name": org.name,
            "slug": org.slug,
            "type": org.type,
            "plan": org.plan,
            "role": role,
        }
        for org, role in result.all()
    ]


async def get_organization_by_slug(slug: str, session: AsyncSession) -> Organization:
    result = await session.execute(select(Organization).where(Organization.slug == slug))
    org = result.scalar_one_or_none()
    if not org:
        raise NotFound("Organization not found")
    return org


async def create_organization(
    req: OrgCreateRequest,
    actor: Account,
    session: AsyncSession,
) -> Organization:
    """Create an organization and make the creator its owner.

    If the owner membership cannot be written, the organization row is
    deleted again so no ownerless organization is left behind.
    """
    existing = await session.execute(select(Organization.id).where(Organization.slug == req.slug))
    if existing.first() is not None:
        raise ConflictError(SLUG_TAKEN)

    with store_errors(conflict_message=SLUG_TAKEN):
        org = Organization(name=req.name, slug=req.slug, type=req.type.value)
        session.add(org)
        await session.flush()
    org_id = org.id

    authz = AuthorizationStore(session, actor.id)
    try:
        with store_errors(conflict_message=MEMBERSHIP_FAILED):
            await authz.insert_org_membership(org_id, actor.id, OrgRole.OWNER.value)
    except (ConsoleError, PolicyViolation) as exc:
        log.warning("org.owner_membership_failed", org_id=str(org_id), error=str(exc))
        await _compensate_organization(org_id, session)
        raise ConsoleError(MEMBERSHIP_FAILED) from exc

    log.info("org.created", org_id=str(org_id), slug=req.slug, creator=str(actor.id))
    return org


async def _compensate_organization(org_id: uuid.UUID, session: AsyncSession) -> None:
    try:
        await session.execute(delete(Organization).where(Organization.id == org_id))
        await session.flush()
        log.info("org.compensated", org_id=str(org_id))
    except Exception as e:
        log.error("org.compensation_failed", org_id=str(org_id), error=str(e))
        await session.rollback()
