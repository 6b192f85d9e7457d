"""Organization membership: the authoritative user <-> organization role link."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field

from .base import IdentifiedModel, created_at_field


class OrganizationMembership(IdentifiedModel, table=True):
    __tablename__ = "organization_members"
    __table_args__ = (
        sa.UniqueConstraint("organization_id", "user_id", name="uq_organization_members_org_user"),
    )

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    role: str = Field(nullable=False, default="member")  # owner | admin | manager | member
    invited_by: Optional[uuid.UUID] = Field(default=None, foreign_key="users.id")
    joined_at: datetime = created_at_field()
