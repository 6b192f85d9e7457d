"""
Invitation ledger: pending, email-scoped intents to join an organization.

Writes are policed per caller like the membership store: organization
owners, admins and managers manage invitations; the invitee may only
resolve invitations addressed to their own email.
"""

from __future__ import annotations

import uuid
from typing import Optional

from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgconsole.core.errors import PolicyViolation
from orgconsole.models.invitation import Invitation
from orgconsole.models.user import User
from orgconsole.services.authorization import MANAGING_ROLES, fetch_org_role
from orgconsole_shared.schemas.common import InvitationStatus


class InvitationLedger:
    def __init__(self, session: AsyncSession, caller_id: uuid.UUID):
        self.session = session
        self.caller_id = caller_id

    # -- reads --------------------------------------------------------------

    async def get(self, invitation_id: uuid.UUID) -> Optional[Invitation]:
        result = await self.session.execute(select(Invitation).where(Invitation.id == invitation_id))
        return result.scalar_one_or_none()

    async def find_pending(self, organization_id: uuid.UUID, email: str) -> Optional[Invitation]:
        result = await self.session.execute(
            select(Invitation).where(
                Invitation.organization_id == organization_id,
                Invitation.email == email,
                Invitation.status == InvitationStatus.PENDING.value,
            )
        )
        return result.scalars().first()

    async def list_pending(self, organization_id: uuid.UUID) -> list[Invitation]:
        result = await self.session.execute(
            select(Invitation)
            .where(
                Invitation.organization_id == organization_id,
                Invitation.status == InvitationStatus.PENDING.value,
            )
            .order_by(Invitation.created_at.asc())
        )
        return list(result.scalars().all())

    async def pending_for_email(self, email: str) -> list[Invitation]:
        result = await self.session.execute(
            select(Invitation)
            .where(
                Invitation.email == email,
                Invitation.status == InvitationStatus.PENDING.value,
            )
            .order_by(Invitation.created_at.asc())
        )
        return list(result.scalars().all())

    # -- row-level policy -----------------------------------------------------

    async def _caller_manages(self, organization_id: uuid.UUID) -> bool:
        role = await fetch_org_role(self.session, organization_id, self.caller_id)
        return role in MANAGING_ROLES

    async def _caller_is_invitee(self, invitation: Invitation) -> bool:
        result = await self.session.execute(select(User.email).where(User.id == self.caller_id))
        return result.scalar_one_or_none() == invitation.email

    # -- writes ---------------------------------------------------------------

    async def insert(
        self,
        organization_id: uuid.UUID,
        email: str,
        role: str,
        invited_by: uuid.UUID,
    ) -> Invitation:
        if not await self._caller_manages(organization_id):
            raise PolicyViolation("invitations", "insert")
        invitation = Invitation(
            organization_id=organization_id,
            email=email,
            role=role,
            status=InvitationStatus.PENDING.value,
            invited_by=invited_by,
        )
        self.session.add(invitation)
        await self.session.flush()
        return invitation

    async def delete(self, organization_id: uuid.UUID, invitation_id: uuid.UUID) -> None:
        """Delete by id. Flushed immediately so a re-insert never overlaps the old pending row.

        Callers delete rows they have just read, so a delete that matches
        nothing was filtered out by the database row policy.
        """
        if not await self._caller_manages(organization_id):
            raise PolicyViolation("invitations", "delete")
        result = await self.session.execute(
            delete(Invitation).where(
                Invitation.id == invitation_id,
                Invitation.organization_id == organization_id,
            )
        )
        if result.rowcount == 0:
            raise PolicyViolation("invitations", "delete")
        await self.session.flush()

    async def update_role(self, invitation: Invitation, role: str) -> Invitation:
        if not await self._caller_manages(invitation.organization_id):
            raise PolicyViolation("invitations", "update")
        invitation.role = role
        self.session.add(invitation)
        await self.session.flush()
        return invitation

    async def resolve(self, invitation: Invitation) -> Invitation:
        if not (
            await self._caller_is_invitee(invitation)
            or await self._caller_manages(invitation.organization_id)
        ):
            raise PolicyViolation("invitations", "update")
        invitation.status = InvitationStatus.RESOLVED.value
        self.session.add(invitation)
        await self.session.flush()
        return invitation
