"""
Organization API endpoints.

GET    /api/v1/orgs              — List orgs for the authenticated user
POST   /api/v1/orgs              — Create a new org (creator becomes owner)
GET    /api/v1/orgs/{orgSlug}    — Get org details and the caller's role
"""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from orgconsole.core.auth import OrgContext, get_current_actor, get_org_context
from orgconsole.core.database import get_session
from orgconsole.services import organizations as org_service
from orgconsole.services.directory import Account
from orgconsole_shared.schemas.common import OrgRole
from orgconsole_shared.schemas.organizations import (
    OrgCreateRequest,
    OrgListResponse,
    OrgResponse,
)

# ---------------------------------------------------------------------------
# Non-org-scoped routes (no orgSlug in path)
# ---------------------------------------------------------------------------
router_global = APIRouter()


@router_global.get("/orgs", response_model=OrgListResponse, tags=["Organizations"])
async def list_orgs(
    actor: Account = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
):
    """List orgs the authenticated user belongs to."""
    items = await org_service.list_user_organizations(actor.id, session)
    return OrgListResponse(data=items)


@router_global.post("/orgs", status_code=201, tags=["Organizations"])
async def create_org(
    body: OrgCreateRequest,
    actor: Account = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
):
    """Create a new organization. The creator becomes its owner."""
    org = await org_service.create_organization(body, actor, session)
    data = OrgResponse.model_validate(org).model_copy(update={"role": OrgRole.OWNER})
    return {"success": True, "data": data.model_dump(mode="json")}


# ---------------------------------------------------------------------------
# Org-scoped routes (orgSlug in path)
# ---------------------------------------------------------------------------
router_scoped = APIRouter()


@router_scoped.get("", response_model=OrgResponse, tags=["Organizations"])
async def get_org(ctx: OrgContext = Depends(get_org_context)):
    return OrgResponse.model_validate(ctx.org).model_copy(update={"role": OrgRole(ctx.role)})
