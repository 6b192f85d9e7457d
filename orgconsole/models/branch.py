"""Branch (physical location) and branch membership models."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field

from .base import IdentifiedModel, TimestampedModel, created_at_field


class Branch(TimestampedModel, table=True):
    __tablename__ = "branches"
    __table_args__ = (
        sa.UniqueConstraint("organization_id", "code", name="uq_branches_org_code"),
    )

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    name: str = Field(nullable=False)
    code: str = Field(nullable=False)  # uppercase alphanumeric
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geohash: Optional[str] = None
    is_active: bool = Field(default=True, nullable=False)


class BranchMembership(IdentifiedModel, table=True):
    __tablename__ = "branch_members"
    __table_args__ = (
        sa.UniqueConstraint("branch_id", "user_id", name="uq_branch_members_branch_user"),
    )

    branch_id: uuid.UUID = Field(foreign_key="branches.id", nullable=False, index=True)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    role: str = Field(nullable=False, default="staff")  # manager | staff | viewer
    joined_at: datetime = created_at_field()
