"""
Branch and branch-membership endpoints.

GET    /api/v1/orgs/{orgSlug}/branches                   — List branches
POST   /api/v1/orgs/{orgSlug}/branches                   — Create branch
PATCH  /api/v1/orgs/{orgSlug}/branches/{branchId}        — Update branch
DELETE /api/v1/orgs/{orgSlug}/branches/{branchId}        — Delete branch
GET    /api/v1/orgs/{orgSlug}/branch-members             — Memberships across all branches
POST   /api/v1/orgs/{orgSlug}/branch-members             — Add an existing account to a branch
DELETE /api/v1/orgs/{orgSlug}/branch-members/{memberId}  — Remove from branch
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from orgconsole.api.v1.members import get_reconciler
from orgconsole.core.auth import OrgContext, get_org_context
from orgconsole.core.database import get_session
from orgconsole.services import branches as branch_service
from orgconsole.services.membership import MembershipReconciler
from orgconsole_shared.schemas.branches import (
    BranchCreateRequest,
    BranchListResponse,
    BranchMemberAddRequest,
    BranchMemberListResponse,
    BranchResponse,
    BranchUpdateRequest,
)

router = APIRouter()


@router.get("/branches", response_model=BranchListResponse)
async def list_branches(
    ctx: OrgContext = Depends(get_org_context),
    session: AsyncSession = Depends(get_session),
):
    branches = await branch_service.list_branches(ctx.org, session)
    return BranchListResponse(data=[BranchResponse.model_validate(b) for b in branches])


@router.post("/branches", status_code=201)
async def create_branch(
    body: BranchCreateRequest,
    ctx: OrgContext = Depends(get_org_context),
    session: AsyncSession = Depends(get_session),
):
    branch = await branch_service.create_branch(ctx.org, ctx.role, body, session)
    return {"success": True, "data": BranchResponse.model_validate(branch).model_dump(mode="json")}


@router.patch("/branches/{branchId}")
async def update_branch(
    branchId: uuid.UUID,
    body: BranchUpdateRequest,
    ctx: OrgContext = Depends(get_org_context),
    session: AsyncSession = Depends(get_session),
):
    branch = await branch_service.update_branch(ctx.org, ctx.role, branchId, body, session)
    return {"success": True, "data": BranchResponse.model_validate(branch).model_dump(mode="json")}


@router.delete("/branches/{branchId}")
async def delete_branch(
    branchId: uuid.UUID,
    ctx: OrgContext = Depends(get_org_context),
    session: AsyncSession = Depends(get_session),
):
    await branch_service.delete_branch(ctx.org, ctx.role, branchId, session)
    return {"success": True}


# ---------------------------------------------------------------------------
# Branch membership
# ---------------------------------------------------------------------------

@router.get("/branch-members", response_model=BranchMemberListResponse)
async def list_branch_members(
    ctx: OrgContext = Depends(get_org_context),
    reconciler: MembershipReconciler = Depends(get_reconciler),
):
    return BranchMemberListResponse(data=await reconciler.list_branch_members(ctx.org))


@router.post("/branch-members", status_code=201)
async def add_branch_member(
    body: BranchMemberAddRequest,
    ctx: OrgContext = Depends(get_org_context),
    reconciler: MembershipReconciler = Depends(get_reconciler),
):
    membership = await reconciler.add_branch_member(ctx.org, body.branch_id, body.email, body.role.value)
    return {"success": True, "member_id": str(membership.id)}


@router.delete("/branch-members/{memberId}")
async def remove_branch_member(
    memberId: uuid.UUID,
    ctx: OrgContext = Depends(get_org_context),
    reconciler: MembershipReconciler = Depends(get_reconciler),
):
    await reconciler.remove_branch_member(ctx.org, memberId)
    return {"success": True}
