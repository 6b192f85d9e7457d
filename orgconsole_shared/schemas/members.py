"""
Organization membership schemas.

The unified member list mixes real memberships with pending invitations.
Each row is tagged by ``kind`` and carries a ``key`` the client sends back
when changing a role or removing the row.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator
from pydantic.networks import validate_email

from .common import OrgRole

INVITATION_KEY_PREFIX = "inv-"
PENDING_MARKER = " (pending)"


def normalize_email(value: str) -> str:
    """Trim and case-fold an email address; raise ValueError if malformed."""
    value = (value or "").strip().lower()
    if not value:
        raise ValueError("Email is required")
    try:
        validate_email(value)
    except ValueError:
        raise ValueError("Invalid email")
    return value


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class InviteRequest(BaseModel):
    """Invite someone to the organization by email."""
    email: str
    role: OrgRole = OrgRole.MEMBER

    @field_validator("email", mode="before")
    @classmethod
    def normalize(cls, value):
        return normalize_email(value)


class RoleChangeRequest(BaseModel):
    role: OrgRole


# ---------------------------------------------------------------------------
# Unified membership view
# ---------------------------------------------------------------------------

class ActiveMemberView(BaseModel):
    """A real organization membership."""
    kind: Literal["member"] = "member"
    key: str
    id: uuid.UUID
    organization_id: uuid.UUID
    user_id: uuid.UUID
    role: OrgRole
    email: Optional[str] = None
    joined_at: datetime


class PendingMemberView(BaseModel):
    """A pending invitation rendered as a synthetic member."""
    kind: Literal["invitation"] = "invitation"
    key: str
    id: uuid.UUID
    organization_id: uuid.UUID
    user_id: None = None
    role: OrgRole
    email: str  # rendered with the pending marker
    created_at: datetime


MemberView = Annotated[
    Union[ActiveMemberView, PendingMemberView],
    Field(discriminator="kind"),
]


class MemberListResponse(BaseModel):
    data: list[MemberView]
