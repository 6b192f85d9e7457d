"""
Membership reconciler: invite, resend, accept, role change and removal.

Coordinates the identity directory, the invitation ledger and the
authorization store for one acting account. Operations run their steps
sequentially and stop at the first failure; the only mitigation for
partial failure is the compensating delete documented on ``invite``.

Members are addressed by a ``MemberRef``: ``MembershipRef`` for a real
organization membership, ``InvitationRef`` for a pending invitation. The
wire key (``inv-<id>`` for invitations) is parsed once by
``parse_member_key`` and each variant routes its own mutations.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional, Union

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgconsole.core.config import Settings, get_settings
from orgconsole.core.errors import (
    ConflictError,
    DuplicateInvitation,
    NotFound,
    PermissionDenied,
    ProvisioningFailed,
    ValidationError,
    is_unique_violation,
    store_errors,
)
from orgconsole.models.branch import Branch, BranchMembership
from orgconsole.models.invitation import Invitation
from orgconsole.models.org_membership import OrganizationMembership
from orgconsole.models.organization import Organization
from orgconsole.services.authorization import (
    AuthorizationStore,
    Operation,
    can_assign_role,
    can_manage_branch_members,
    can_modify_member,
    require,
)
from orgconsole.services.directory import (
    Account,
    DirectoryError,
    IdentityDirectory,
    ProvisionedAccount,
)
from orgconsole.services.invitations import InvitationLedger
from orgconsole.services.notifications import DeliveryOutcome, InvitationEmail, InvitationMailer
from orgconsole_shared.schemas.branches import BranchMemberView
from orgconsole_shared.schemas.common import BranchRole, InvitationStatus, OrgRole
from orgconsole_shared.schemas.members import (
    INVITATION_KEY_PREFIX,
    PENDING_MARKER,
    ActiveMemberView,
    PendingMemberView,
    normalize_email,
)

log = structlog.get_logger()

INVITE_DENIED = "You do not have permission to invite members to this organization"
CHANGE_ROLE_DENIED = "You do not have permission to change member roles in this organization"
REMOVE_DENIED = "You do not have permission to remove members from this organization"
BRANCH_MEMBERS_DENIED = "You do not have permission to manage members of this branch"
ROLE_TOO_HIGH = "You cannot assign a role higher than your own"
TARGET_TOO_HIGH = "You cannot modify a member with a higher role than your own"
LAST_OWNER = "An organization must keep at least one owner"
UNKNOWN = "Unknown"
INVALID_ROLE = "Invalid role"


# ---------------------------------------------------------------------------
# Member references
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class MembershipRef:
    """A real organization membership."""
    id: uuid.UUID

    @property
    def key(self) -> str:
        return str(self.id)

    async def change_role(self, reconciler: MembershipReconciler, org: Organization, role: str, actor_role: str):
        return await reconciler._change_membership_role(org, self.id, role, actor_role)

    async def remove(self, reconciler: MembershipReconciler, org: Organization, actor_role: str) -> None:
        await reconciler._remove_membership(org, self.id, actor_role)


@dataclass(frozen=True)
class InvitationRef:
    """A pending invitation shown in the member list."""
    id: uuid.UUID

    @property
    def key(self) -> str:
        return f"{INVITATION_KEY_PREFIX}{self.id}"

    async def change_role(self, reconciler: MembershipReconciler, org: Organization, role: str, actor_role: str):
        return await reconciler._change_invitation_role(org, self.id, role, actor_role)

    async def remove(self, reconciler: MembershipReconciler, org: Organization, actor_role: str) -> None:
        await reconciler._cancel_invitation(org, self.id, actor_role)


MemberRef = Union[MembershipRef, InvitationRef]


def parse_member_key(key: str) -> MemberRef:
    """Turn a member-list key back into a reference."""
    try:
        if key.startswith(INVITATION_KEY_PREFIX):
            return InvitationRef(uuid.UUID(key[len(INVITATION_KEY_PREFIX):]))
        return MembershipRef(uuid.UUID(key))
    except ValueError:
        raise NotFound("Member not found")


def _checked_role(roles, role: str) -> str:
    try:
        return roles(role).value
    except ValueError:
        raise ValidationError(INVALID_ROLE)


@dataclass
class InviteOutcome:
    """Result of an invite: exactly one of ``membership`` / ``invitation`` is set."""
    membership: Optional[OrganizationMembership] = None
    invitation: Optional[Invitation] = None
    delivery: Optional[DeliveryOutcome] = None

    @property
    def direct_add(self) -> bool:
        return self.membership is not None


# ---------------------------------------------------------------------------
# Reconciler
# ---------------------------------------------------------------------------

class MembershipReconciler:
    def __init__(
        self,
        session: AsyncSession,
        actor: Account,
        directory: IdentityDirectory,
        mailer: InvitationMailer,
        settings: Optional[Settings] = None,
    ):
        self.session = session
        self.actor = actor
        self.directory = directory
        self.mailer = mailer
        self.settings = settings or get_settings()
        self.authz = AuthorizationStore(session, actor.id)
        self.ledger = InvitationLedger(session, actor.id)

    @property
    def directory_sends_email(self) -> bool:
        return self.settings.invite_delivery == "directory"

    async def _actor_role(self, org: Organization) -> Optional[str]:
        return await self.authz.get_org_role(org.id)

    async def _require(self, org: Organization, operation: Operation, message: str) -> str:
        return require(await self._actor_role(org), operation, message)

    def _invite_metadata(self, org_id: uuid.UUID, role: str) -> dict:
        return {
            "organization_id": str(org_id),
            "role": role,
            "invited_by": str(self.actor.id),
        }

    async def _find_account(self, email: str) -> Optional[Account]:
        try:
            return await self.directory.find_by_email(email)
        except DirectoryError as exc:
            raise ProvisioningFailed(exc.message) from exc

    # -- unified membership view ------------------------------------------------

    async def list_members(self, org: Organization) -> list[Union[ActiveMemberView, PendingMemberView]]:
        """Real members (by join date) followed by pending invitations (by creation date)."""
        if await self._actor_role(org) is None:
            raise NotFound("Organization not found")

        with store_errors():
            memberships = await self.authz.list_org_memberships(org.id)
            emails = await self.directory.emails_for(m.user_id for m in memberships)
            invitations = await self.ledger.list_pending(org.id)

        rows: list[Union[ActiveMemberView, PendingMemberView]] = []
        for m in memberships:
            email = emails.get(m.user_id)
            if email is None and m.user_id == self.actor.id:
                email = self.actor.email
            rows.append(
                ActiveMemberView(
                    key=MembershipRef(m.id).key,
                    id=m.id,
                    organization_id=m.organization_id,
                    user_id=m.user_id,
                    role=m.role,
                    email=email,
                    joined_at=m.joined_at,
                )
            )
        for inv in invitations:
            rows.append(
                PendingMemberView(
                    key=InvitationRef(inv.id).key,
                    id=inv.id,
                    organization_id=inv.organization_id,
                    role=inv.role,
                    email=f"{inv.email}{PENDING_MARKER}",
                    created_at=inv.created_at,
                )
            )
        return rows

    # -- invite ---------------------------------------------------------------

    async def invite(self, org: Organization, email: str, role: str) -> InviteOutcome:
        """Add an existing account directly, or invite a new one by email.

        New accounts are a two-phase operation. Phase 1 commits the pending
        invitation; phase 2 asks the directory to provision the account. The
        directory's new-account hooks look the invitation up, so phase 1 must
        be durable before phase 2 starts. If phase 2 fails, the invitation is
        deleted again and ``ProvisioningFailed`` is raised.
        """
        try:
            email = normalize_email(email)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        role = _checked_role(OrgRole, role)

        actor_role = await self._require(org, Operation.INVITE_MEMBER, INVITE_DENIED)
        if not can_assign_role(actor_role, role):
            raise PermissionDenied(ROLE_TOO_HIGH)

        if await self.ledger.find_pending(org.id, email):
            raise DuplicateInvitation()

        account = await self._find_account(email)
        if account is not None:
            membership = await self._add_existing_account(org, account, role)
            return InviteOutcome(membership=membership)

        org_id, org_name = org.id, org.name
        invitation = await self._commit_invitation(org_id, email, role)
        provisioned = await self._provision_invitee(org_id, invitation.id, email, role)
        delivery = await self._deliver(org_name, email, role, provisioned)
        log.info(
            "member.invited",
            org_id=str(org_id),
            invitation_id=str(invitation.id),
            role=role,
            invited_by=str(self.actor.id),
        )
        return InviteOutcome(invitation=invitation, delivery=delivery)

    async def _add_existing_account(
        self, org: Organization, account: Account, role: str
    ) -> OrganizationMembership:
        if await self.authz.find_membership(org.id, account.id):
            raise ConflictError("This user is already a member of this organization")
        with store_errors(
            permission_message=INVITE_DENIED,
            conflict_message="This user is already a member of this organization",
        ):
            membership = await self.authz.insert_org_membership(
                org.id, account.id, role, invited_by=self.actor.id
            )
        log.info(
            "member.added",
            org_id=str(org.id),
            user_id=str(account.id),
            role=role,
            invited_by=str(self.actor.id),
        )
        return membership

    async def _commit_invitation(self, org_id: uuid.UUID, email: str, role: str) -> Invitation:
        """Phase 1: persist and commit the pending invitation."""
        with store_errors(permission_message=INVITE_DENIED):
            try:
                invitation = await self.ledger.insert(org_id, email, role, invited_by=self.actor.id)
            except IntegrityError as exc:
                if not is_unique_violation(exc):
                    raise
                # A concurrent invite won the race for the pending slot.
                await self.session.rollback()
                raise DuplicateInvitation() from exc
            await self.session.commit()
        return invitation

    async def _provision_invitee(
        self, org_id: uuid.UUID, invitation_id: uuid.UUID, email: str, role: str
    ) -> ProvisionedAccount:
        """Phase 2: provision the account; compensate phase 1 on failure."""
        try:
            return await self.directory.provision(
                email,
                self._invite_metadata(org_id, role),
                send_invite=self.directory_sends_email,
            )
        except DirectoryError as exc:
            log.warning(
                "invite.provisioning_failed",
                org_id=str(org_id),
                invitation_id=str(invitation_id),
                error=exc.message,
            )
            await self._compensate_invitation(org_id, invitation_id)
            raise ProvisioningFailed(exc.message or "Failed to create user") from exc

    async def _compensate_invitation(self, org_id: uuid.UUID, invitation_id: uuid.UUID) -> None:
        try:
            await self.session.rollback()
            await self.ledger.delete(org_id, invitation_id)
            await self.session.commit()
            log.info("invite.compensated", org_id=str(org_id), invitation_id=str(invitation_id))
        except Exception as e:
            log.error(
                "invite.compensation_failed",
                org_id=str(org_id),
                invitation_id=str(invitation_id),
                error=str(e),
            )

    async def _deliver(
        self, org_name: str, email: str, role: str, provisioned: ProvisionedAccount
    ) -> Optional[DeliveryOutcome]:
        if self.directory_sends_email:
            return None
        outcome = await self.mailer.send_invitation(
            InvitationEmail(
                to=email,
                inviter_name=self.actor.label,
                organization_name=org_name,
                role=role,
                accept_url=provisioned.accept_url or self.directory.setup_url,
            )
        )
        if not outcome.ok and not outcome.mock:
            log.warning("invite.email_not_delivered", email=email, error=outcome.error)
        return outcome

    # -- resend ---------------------------------------------------------------

    async def _pending_invitation(self, org: Organization, invitation_id: uuid.UUID) -> Invitation:
        invitation = await self.ledger.get(invitation_id)
        if (
            invitation is None
            or invitation.organization_id != org.id
            or invitation.status != InvitationStatus.PENDING.value
        ):
            raise NotFound("Invitation not found")
        return invitation

    async def resend(self, org: Organization, invitation_id: uuid.UUID) -> InviteOutcome:
        """Recreate the invitation with a fresh timestamp and dispatch it again.

        The old row is deleted before the new one is inserted, so the
        organization never holds two pending invitations for one email.
        """
        actor_role = await self._require(org, Operation.INVITE_MEMBER, INVITE_DENIED)
        invitation = await self._pending_invitation(org, invitation_id)
        if not can_modify_member(actor_role, invitation.role):
            raise PermissionDenied(TARGET_TOO_HIGH)

        org_id, org_name = org.id, org.name
        email, role = invitation.email, invitation.role
        with store_errors(permission_message=INVITE_DENIED):
            await self.ledger.delete(org_id, invitation.id)
            fresh = await self.ledger.insert(org_id, email, role, invited_by=self.actor.id)
            await self.session.commit()

        metadata = self._invite_metadata(org_id, role)
        account = await self._find_account(email)
        try:
            if account is not None:
                provisioned = await self.directory.reissue_invite(
                    account, metadata, send_invite=self.directory_sends_email
                )
            else:
                provisioned = await self.directory.provision(
                    email, metadata, send_invite=self.directory_sends_email
                )
        except DirectoryError as exc:
            log.warning("invitation.resend_failed", invitation_id=str(fresh.id), error=exc.message)
            raise ProvisioningFailed(exc.message) from exc

        delivery = await self._deliver(org_name, email, role, provisioned)
        log.info(
            "invitation.resent",
            org_id=str(org_id),
            previous_id=str(invitation_id),
            invitation_id=str(fresh.id),
        )
        return InviteOutcome(invitation=fresh, delivery=delivery)

    # -- role change / removal --------------------------------------------------

    async def change_role(self, org: Organization, ref: MemberRef, role: str):
        role = _checked_role(OrgRole, role)
        actor_role = await self._require(org, Operation.CHANGE_MEMBER_ROLE, CHANGE_ROLE_DENIED)
        if not can_assign_role(actor_role, role):
            raise PermissionDenied(ROLE_TOO_HIGH)
        return await ref.change_role(self, org, role, actor_role)

    async def remove(self, org: Organization, ref: MemberRef) -> None:
        actor_role = await self._require(org, Operation.REMOVE_MEMBER, REMOVE_DENIED)
        await ref.remove(self, org, actor_role)

    async def cancel_invitation(self, org: Organization, invitation_id: uuid.UUID) -> None:
        await self.remove(org, InvitationRef(invitation_id))

    async def _membership_in(self, org: Organization, membership_id: uuid.UUID) -> OrganizationMembership:
        membership = await self.authz.get_membership(membership_id)
        if membership is None or membership.organization_id != org.id:
            raise NotFound("Member not found")
        return membership

    async def _guard_last_owner(self, org: Organization, membership: OrganizationMembership) -> None:
        if membership.role == OrgRole.OWNER.value and await self.authz.count_owners(org.id) <= 1:
            raise ConflictError(LAST_OWNER)

    async def _change_membership_role(
        self, org: Organization, membership_id: uuid.UUID, role: str, actor_role: str
    ) -> OrganizationMembership:
        membership = await self._membership_in(org, membership_id)
        if membership.user_id == self.actor.id:
            raise PermissionDenied("You cannot change your own role")
        if not can_modify_member(actor_role, membership.role):
            raise PermissionDenied(TARGET_TOO_HIGH)
        if role != OrgRole.OWNER.value:
            await self._guard_last_owner(org, membership)

        previous = membership.role
        with store_errors(permission_message=CHANGE_ROLE_DENIED):
            await self.authz.update_org_membership_role(membership, role)
        log.info(
            "member.role_changed",
            org_id=str(org.id),
            membership_id=str(membership_id),
            previous=previous,
            role=role,
            changed_by=str(self.actor.id),
        )
        return membership

    async def _change_invitation_role(
        self, org: Organization, invitation_id: uuid.UUID, role: str, actor_role: str
    ) -> Invitation:
        invitation = await self._pending_invitation(org, invitation_id)
        if not can_modify_member(actor_role, invitation.role):
            raise PermissionDenied(TARGET_TOO_HIGH)
        with store_errors(permission_message=CHANGE_ROLE_DENIED):
            await self.ledger.update_role(invitation, role)
        log.info("invitation.role_changed", invitation_id=str(invitation_id), role=role)
        return invitation

    async def _remove_membership(
        self, org: Organization, membership_id: uuid.UUID, actor_role: str
    ) -> None:
        membership = await self._membership_in(org, membership_id)
        if not can_modify_member(actor_role, membership.role):
            raise PermissionDenied(TARGET_TOO_HIGH)
        await self._guard_last_owner(org, membership)
        user_id = membership.user_id
        with store_errors(permission_message=REMOVE_DENIED):
            await self.authz.delete_org_membership(membership)
        log.info(
            "member.removed",
            org_id=str(org.id),
            user_id=str(user_id),
            removed_by=str(self.actor.id),
        )

    async def _cancel_invitation(
        self, org: Organization, invitation_id: uuid.UUID, actor_role: str
    ) -> None:
        invitation = await self._pending_invitation(org, invitation_id)
        if not can_modify_member(actor_role, invitation.role):
            raise PermissionDenied(TARGET_TOO_HIGH)
        with store_errors(permission_message=REMOVE_DENIED):
            await self.ledger.delete(org.id, invitation.id)
        log.info("invitation.cancelled", org_id=str(org.id), invitation_id=str(invitation_id))

    # -- acceptance -------------------------------------------------------------

    async def accept_invitations(self) -> list[OrganizationMembership]:
        """Turn every pending invitation for the actor's email into a membership.

        Idempotent: an organization the actor already belongs to only gets its
        invitation resolved.
        """
        joined: list[OrganizationMembership] = []
        for invitation in await self.ledger.pending_for_email(self.actor.email.lower()):
            existing = await self.authz.find_membership(invitation.organization_id, self.actor.id)
            with store_errors(conflict_message="You are already a member of this organization"):
                if existing is None:
                    membership = await self.authz.insert_org_membership(
                        invitation.organization_id,
                        self.actor.id,
                        invitation.role,
                        invited_by=invitation.invited_by,
                    )
                    joined.append(membership)
                await self.ledger.resolve(invitation)
            log.info(
                "invitation.accepted",
                org_id=str(invitation.organization_id),
                invitation_id=str(invitation.id),
                user_id=str(self.actor.id),
            )
        return joined

    # -- branch membership ------------------------------------------------------

    async def _branch_in(self, org: Organization, branch_id: uuid.UUID) -> Branch:
        branch = await self.session.get(Branch, branch_id)
        if branch is None or branch.organization_id != org.id:
            raise NotFound("Branch not found")
        return branch

    async def _require_branch_access(self, org: Organization, branch: Branch) -> None:
        org_role = await self._actor_role(org)
        branch_role = await self.authz.get_branch_role(branch.id)
        if not can_manage_branch_members(org_role, branch_role):
            raise PermissionDenied(BRANCH_MEMBERS_DENIED)

    async def list_branch_members(self, org: Organization) -> list[BranchMemberView]:
        with store_errors():
            result = await self.session.execute(
                select(Branch.id, Branch.name).where(Branch.organization_id == org.id)
            )
            branch_names = {branch_id: name for branch_id, name in result.all()}
            memberships = await self.authz.list_branch_memberships(list(branch_names))
            emails = await self.directory.emails_for(m.user_id for m in memberships)
        return [
            BranchMemberView(
                id=m.id,
                branch_id=m.branch_id,
                branch_name=branch_names.get(m.branch_id) or UNKNOWN,
                user_id=m.user_id,
                role=m.role,
                email=emails.get(m.user_id) or UNKNOWN,
                joined_at=m.joined_at,
            )
            for m in memberships
        ]

    async def add_branch_member(
        self, org: Organization, branch_id: uuid.UUID, email: str, role: str
    ) -> BranchMembership:
        role = _checked_role(BranchRole, role)
        branch = await self._branch_in(org, branch_id)
        await self._require_branch_access(org, branch)

        try:
            email = normalize_email(email)
        except ValueError as exc:
            raise ValidationError(str(exc)) from exc
        account = await self._find_account(email)
        if account is None:
            raise ValidationError("User must sign up first")
        if await self.authz.find_branch_membership(branch.id, account.id):
            raise ConflictError("This user is already a member of this branch")

        with store_errors(
            permission_message=BRANCH_MEMBERS_DENIED,
            conflict_message="This user is already a member of this branch",
        ):
            membership = await self.authz.insert_branch_membership(branch, account.id, role)
        log.info(
            "branch_member.added",
            branch_id=str(branch.id),
            user_id=str(account.id),
            role=role,
        )
        return membership

    async def remove_branch_member(self, org: Organization, membership_id: uuid.UUID) -> None:
        membership = await self.authz.get_branch_membership(membership_id)
        branch = await self.session.get(Branch, membership.branch_id) if membership else None
        if membership is None or branch is None or branch.organization_id != org.id:
            raise NotFound("Branch member not found")
        await self._require_branch_access(org, branch)
        with store_errors(permission_message=BRANCH_MEMBERS_DENIED):
            await self.authz.delete_branch_membership(branch, membership)
        log.info("branch_member.removed", branch_id=str(branch.id), membership_id=str(membership_id))
