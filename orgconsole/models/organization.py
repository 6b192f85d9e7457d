"""Organization (tenant) model."""

from sqlmodel import Field

from .base import TimestampedModel


class Organization(TimestampedModel, table=True):
    __tablename__ = "organizations"

    name: str = Field(nullable=False)
    slug: str = Field(unique=True, nullable=False, index=True)
    type: str = Field(nullable=False)
    plan: str = Field(default="free", nullable=False)
    is_active: bool = Field(default=True, nullable=False)
