"""Invitation: a pending, email-scoped intent to join an organization."""

from datetime import datetime
import uuid

import sqlalchemy as sa
from sqlmodel import Field

from .base import IdentifiedModel, created_at_field


class Invitation(IdentifiedModel, table=True):
    __tablename__ = "invitations"
    __table_args__ = (
        # At most one pending invitation per (organization, email).
        sa.Index(
            "uq_invitations_pending_org_email",
            "organization_id",
            "email",
            unique=True,
            postgresql_where=sa.text("status = 'pending'"),
            sqlite_where=sa.text("status = 'pending'"),
        ),
    )

    organization_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    email: str = Field(nullable=False, index=True)  # case-folded
    role: str = Field(nullable=False, default="member")
    status: str = Field(nullable=False, default="pending")  # pending | resolved | cancelled
    invited_by: uuid.UUID = Field(foreign_key="users.id", nullable=False)
    created_at: datetime = created_at_field()
