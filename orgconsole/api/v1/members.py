"""
Organization membership endpoints.

GET    /api/v1/orgs/{orgSlug}/members                 — Members and pending invitations
POST   /api/v1/orgs/{orgSlug}/members                 — Invite by email
PATCH  /api/v1/orgs/{orgSlug}/members/{memberKey}     — Change role (member or invitation)
DELETE /api/v1/orgs/{orgSlug}/members/{memberKey}     — Remove member / cancel invitation
POST   /api/v1/orgs/{orgSlug}/invitations/{id}/resend — Resend a pending invitation
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from orgconsole.core.auth import OrgContext, get_org_context
from orgconsole.core.database import get_session
from orgconsole.services.directory import IdentityDirectory, get_identity_directory
from orgconsole.services.membership import (
    InvitationRef,
    MembershipReconciler,
    parse_member_key,
)
from orgconsole.services.notifications import InvitationMailer, get_mailer
from orgconsole_shared.schemas.members import (
    InviteRequest,
    MemberListResponse,
    RoleChangeRequest,
)

router = APIRouter()


async def get_reconciler(
    ctx: OrgContext = Depends(get_org_context),
    session: AsyncSession = Depends(get_session),
    directory: IdentityDirectory = Depends(get_identity_directory),
    mailer: InvitationMailer = Depends(get_mailer),
) -> MembershipReconciler:
    return MembershipReconciler(session, ctx.actor, directory, mailer)


@router.get("/members", response_model=MemberListResponse)
async def list_members(
    ctx: OrgContext = Depends(get_org_context),
    reconciler: MembershipReconciler = Depends(get_reconciler),
):
    return MemberListResponse(data=await reconciler.list_members(ctx.org))


@router.post("/members", status_code=201)
async def invite_member(
    body: InviteRequest,
    ctx: OrgContext = Depends(get_org_context),
    reconciler: MembershipReconciler = Depends(get_reconciler),
):
    """Invite by email. Existing accounts are added directly."""
    outcome = await reconciler.invite(ctx.org, body.email, body.role.value)
    if outcome.direct_add:
        return {
            "success": True,
            "message": "User added to organization",
            "member_id": str(outcome.membership.id),
        }
    response = {
        "success": True,
        "message": "Invitation sent",
        "invitation_id": str(outcome.invitation.id),
        "key": InvitationRef(outcome.invitation.id).key,
    }
    if outcome.delivery is not None:
        response["email"] = {"ok": outcome.delivery.ok, "mock": outcome.delivery.mock}
    return response


@router.patch("/members/{memberKey}")
async def change_member_role(
    memberKey: str,
    body: RoleChangeRequest,
    ctx: OrgContext = Depends(get_org_context),
    reconciler: MembershipReconciler = Depends(get_reconciler),
):
    ref = parse_member_key(memberKey)
    await reconciler.change_role(ctx.org, ref, body.role.value)
    return {"success": True, "key": ref.key, "role": body.role.value}


@router.delete("/members/{memberKey}")
async def remove_member(
    memberKey: str,
    ctx: OrgContext = Depends(get_org_context),
    reconciler: MembershipReconciler = Depends(get_reconciler),
):
    ref = parse_member_key(memberKey)
    await reconciler.remove(ctx.org, ref)
    return {"success": True}


@router.post("/invitations/{invitationId}/resend")
async def resend_invitation(
    invitationId: uuid.UUID,
    ctx: OrgContext = Depends(get_org_context),
    reconciler: MembershipReconciler = Depends(get_reconciler),
):
    outcome = await reconciler.resend(ctx.org, invitationId)
    response = {
        "success": True,
        "message": "Invitation resent",
        "invitation_id": str(outcome.invitation.id),
    }
    if outcome.delivery is not None:
        response["email"] = {"ok": outcome.delivery.ok, "mock": outcome.delivery.mock}
    return response
