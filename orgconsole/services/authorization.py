"""
Authorization model: role predicates and the membership store.

Organization roles form a capability hierarchy (owner > admin > manager >
member). Branch roles (manager, staff, viewer) are scoped to one branch and
never stand in for an organization role.

``AuthorizationStore`` is the only writer of organization and branch
memberships. Every write is checked against the caller's row-level policy
and rejected with ``PolicyViolation`` when it fails, mirroring the database
policies installed by the migration. Callers translate that into
``PermissionDenied`` via ``store_errors``.
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import Optional, Sequence

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgconsole.core.errors import PermissionDenied, PolicyViolation
from orgconsole.models.branch import Branch, BranchMembership
from orgconsole.models.invitation import Invitation
from orgconsole.models.org_membership import OrganizationMembership
from orgconsole.models.user import User
from orgconsole_shared.schemas.common import InvitationStatus, OrgRole

ROLE_RANK: dict[str, int] = {
    OrgRole.OWNER.value: 3,
    OrgRole.ADMIN.value: 2,
    OrgRole.MANAGER.value: 1,
    OrgRole.MEMBER.value: 0,
}

MANAGING_ROLES = frozenset(
    {OrgRole.OWNER.value, OrgRole.ADMIN.value, OrgRole.MANAGER.value}
)


class Operation(str, Enum):
    MANAGE_BRANCHES = "manage_branches"
    INVITE_MEMBER = "invite_member"
    CHANGE_MEMBER_ROLE = "change_member_role"
    REMOVE_MEMBER = "remove_member"


PERMISSIONS: dict[Operation, frozenset[str]] = {
    Operation.MANAGE_BRANCHES: MANAGING_ROLES,
    Operation.INVITE_MEMBER: MANAGING_ROLES,
    Operation.CHANGE_MEMBER_ROLE: MANAGING_ROLES,
    Operation.REMOVE_MEMBER: MANAGING_ROLES,
}


# ---------------------------------------------------------------------------
# Role predicates
# ---------------------------------------------------------------------------

def is_allowed(role: Optional[str], operation: Operation) -> bool:
    return role is not None and role in PERMISSIONS[operation]


def can_assign_role(actor_role: Optional[str], role: str) -> bool:
    """Roles can only be handed out at or below the actor's own rank; owner only by owners."""
    if actor_role not in MANAGING_ROLES:
        return False
    if role == OrgRole.OWNER.value:
        return actor_role == OrgRole.OWNER.value
    return ROLE_RANK[role] <= ROLE_RANK[actor_role]


def can_modify_member(actor_role: Optional[str], target_role: str) -> bool:
    """Whether the actor may change or remove someone currently holding ``target_role``."""
    return can_assign_role(actor_role, target_role)


def can_manage_branch_members(org_role: Optional[str], branch_role: Optional[str]) -> bool:
    if org_role is None:
        return False
    return org_role in MANAGING_ROLES or branch_role is not None


def require(role: Optional[str], operation: Operation, message: str) -> str:
    if not is_allowed(role, operation):
        raise PermissionDenied(message)
    return role


# ---------------------------------------------------------------------------
# Lookups shared by the stores
# ---------------------------------------------------------------------------

async def fetch_org_role(
    session: AsyncSession, organization_id: uuid.UUID, user_id: uuid.UUID
) -> Optional[str]:
    result = await session.execute(
        select(OrganizationMembership.role).where(
            OrganizationMembership.organization_id == organization_id,
            OrganizationMembership.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def fetch_branch_role(
    session: AsyncSession, branch_id: uuid.UUID, user_id: uuid.UUID
) -> Optional[str]:
    result = await session.execute(
        select(BranchMembership.role).where(
            BranchMembership.branch_id == branch_id,
            BranchMembership.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------

class AuthorizationStore:
    """Organization and branch memberships, filtered and policed per caller."""

    def __init__(self, session: AsyncSession, caller_id: uuid.UUID):
        self.session = session
        self.caller_id = caller_id

    # -- reads --------------------------------------------------------------

    async def get_org_role(
        self, organization_id: uuid.UUID, user_id: Optional[uuid.UUID] = None
    ) -> Optional[str]:
        return await fetch_org_role(self.session, organization_id, user_id or self.caller_id)

    async def get_branch_role(
        self, branch_id: uuid.UUID, user_id: Optional[uuid.UUID] = None
    ) -> Optional[str]:
        return await fetch_branch_role(self.session, branch_id, user_id or self.caller_id)

    async def get_membership(self, membership_id: uuid.UUID) -> Optional[OrganizationMembership]:
        return await self.session.get(OrganizationMembership, membership_id)

    async def find_membership(
        self, organization_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[OrganizationMembership]:
        result = await self.session.execute(
            select(OrganizationMembership).where(
                OrganizationMembership.organization_id == organization_id,
                OrganizationMembership.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    async def list_org_memberships(self, organization_id: uuid.UUID) -> list[OrganizationMembership]:
        result = await self.session.execute(
            select(OrganizationMembership)
            .where(OrganizationMembership.organization_id == organization_id)
            .order_by(OrganizationMembership.joined_at.asc())
        )
        return list(result.scalars().all())

    async def count_owners(self, organization_id: uuid.UUID) -> int:
        result = await self.session.execute(
            select(func.count()).select_from(OrganizationMembership).where(
                OrganizationMembership.organization_id == organization_id,
                OrganizationMembership.role == OrgRole.OWNER.value,
            )
        )
        return result.scalar_one()

    async def list_branch_memberships(
        self, branch_ids: Sequence[uuid.UUID]
    ) -> list[BranchMembership]:
        if not branch_ids:
            return []
        result = await self.session.execute(
            select(BranchMembership)
            .where(BranchMembership.branch_id.in_(branch_ids))
            .order_by(BranchMembership.joined_at.asc())
        )
        return list(result.scalars().all())

    async def get_branch_membership(self, membership_id: uuid.UUID) -> Optional[BranchMembership]:
        return await self.session.get(BranchMembership, membership_id)

    async def find_branch_membership(
        self, branch_id: uuid.UUID, user_id: uuid.UUID
    ) -> Optional[BranchMembership]:
        result = await self.session.execute(
            select(BranchMembership).where(
                BranchMembership.branch_id == branch_id,
                BranchMembership.user_id == user_id,
            )
        )
        return result.scalar_one_or_none()

    # -- row-level policy -----------------------------------------------------

    async def _caller_manages(self, organization_id: uuid.UUID) -> bool:
        return (await self.get_org_role(organization_id)) in MANAGING_ROLES

    async def _may_insert_org_membership(
        self, organization_id: uuid.UUID, user_id: uuid.UUID, role: str
    ) -> bool:
        if await self._caller_manages(organization_id):
            return True
        if user_id != self.caller_id:
            return False
        # Creator bootstrapping an organization that has no members yet.
        if role == OrgRole.OWNER.value:
            result = await self.session.execute(
                select(func.count()).select_from(OrganizationMembership).where(
                    OrganizationMembership.organization_id == organization_id
                )
            )
            if result.scalar_one() == 0:
                return True
        # Invitee joining through a pending invitation addressed to them.
        result = await self.session.execute(
            select(Invitation.id)
            .join(User, User.email == Invitation.email)
            .where(
                User.id == self.caller_id,
                Invitation.organization_id == organization_id,
                Invitation.status == InvitationStatus.PENDING.value,
            )
        )
        return result.first() is not None

    async def _may_manage_branch(self, branch: Branch) -> bool:
        org_role = await self.get_org_role(branch.organization_id)
        branch_role = await self.get_branch_role(branch.id)
        return can_manage_branch_members(org_role, branch_role)

    # -- writes ---------------------------------------------------------------

    async def insert_org_membership(
        self,
        organization_id: uuid.UUID,
        user_id: uuid.UUID,
        role: str,
        invited_by: Optional[uuid.UUID] = None,
    ) -> OrganizationMembership:
        if not await self._may_insert_org_membership(organization_id, user_id, role):
            raise PolicyViolation("organization_members", "insert")
        membership = OrganizationMembership(
            organization_id=organization_id,
            user_id=user_id,
            role=role,
            invited_by=invited_by,
        )
        self.session.add(membership)
        await self.session.flush()
        return membership

    async def update_org_membership_role(
        self, membership: OrganizationMembership, role: str
    ) -> OrganizationMembership:
        if not await self._caller_manages(membership.organization_id):
            raise PolicyViolation("organization_members", "update")
        membership.role = role
        self.session.add(membership)
        await self.session.flush()
        return membership

    async def delete_org_membership(self, membership: OrganizationMembership) -> None:
        if not await self._caller_manages(membership.organization_id):
            raise PolicyViolation("organization_members", "delete")
        await self.session.delete(membership)
        await self.session.flush()

    async def insert_branch_membership(
        self, branch: Branch, user_id: uuid.UUID, role: str
    ) -> BranchMembership:
        if not await self._may_manage_branch(branch):
            raise PolicyViolation("branch_members", "insert")
        membership = BranchMembership(branch_id=branch.id, user_id=user_id, role=role)
        self.session.add(membership)
        await self.session.flush()
        return membership

    async def delete_branch_membership(self, branch: Branch, membership: BranchMembership) -> None:
        if not await self._may_manage_branch(branch):
            raise PolicyViolation("branch_members", "delete")
        await self.session.delete(membership)
        await self.session.flush()
