"""Account profile model.

One row per directory account. With the local directory this is the account
itself; with a hosted directory it mirrors the hosted account so emails can
be resolved in one batch query.
"""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field

from .base import IdentifiedModel, created_at_field


class User(IdentifiedModel, table=True):
    __tablename__ = "users"

    email: str = Field(unique=True, index=True, nullable=False)  # always lowercase
    display_name: Optional[str] = None
    password_hash: Optional[str] = None  # None until invited account completes setup
    invited_metadata: Optional[dict] = Field(default=None, sa_type=sa.JSON)
    setup_completed_at: Optional[datetime] = Field(
        default=None, sa_type=sa.DateTime(timezone=True)
    )
    created_at: datetime = created_at_field()
