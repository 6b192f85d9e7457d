"""
Request authentication and organization scoping.

- the caller's session token comes from the ``oc_session`` cookie or an
  ``Authorization: Bearer`` header and is verified by the identity directory
- the authenticated caller is bound to the database session for row-level
  policies
- org-scoped routes resolve ``{orgSlug}`` and the caller's role; callers who
  are not members see the organization as missing
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, Request
from fastapi.security import APIKeyHeader
from sqlalchemy.ext.asyncio import AsyncSession

from orgconsole.core.database import bind_caller, get_session
from orgconsole.core.errors import AuthenticationRequired, NotFound, store_errors
from orgconsole.models.organization import Organization
from orgconsole.services.authorization import fetch_org_role
from orgconsole.services.directory import Account, IdentityDirectory, get_identity_directory
from orgconsole.services.organizations import get_organization_by_slug

SESSION_COOKIE = "oc_session"
CSRF_COOKIE = "oc_csrf"

bearer_header = APIKeyHeader(name="Authorization", auto_error=False)


def session_token(request: Request, authorization: Optional[str]) -> Optional[str]:
    if authorization and authorization.startswith("Bearer "):
        return authorization[7:].strip() or None
    return request.cookies.get(SESSION_COOKIE)


async def get_current_actor(
    request: Request,
    authorization: Optional[str] = Depends(bearer_header),
    session: AsyncSession = Depends(get_session),
    directory: IdentityDirectory = Depends(get_identity_directory),
) -> Account:
    """Main authentication dependency."""
    token = session_token(request, authorization)
    if not token:
        raise AuthenticationRequired()
    actor = await directory.authenticate(token)
    if actor is None:
        raise AuthenticationRequired()
    await bind_caller(session, actor.id)
    request.state.actor = actor
    return actor


@dataclass
class OrgContext:
    """An authenticated caller inside one organization."""
    actor: Account
    org: Organization
    role: str


async def get_org_context(
    orgSlug: str,
    actor: Account = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
) -> OrgContext:
    with store_errors():
        org = await get_organization_by_slug(orgSlug, session)
        role = await fetch_org_role(session, org.id, actor.id)
    if role is None:
        raise NotFound("Organization not found")
    return OrgContext(actor=actor, org=org, role=role)
