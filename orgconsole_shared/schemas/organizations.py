"""
Organization schemas: creation request, detail and list responses.
"""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from .common import OrganizationType, OrgRole

SLUG_PATTERN = re.compile(r"^[a-z0-9-]+$")


class OrgCreateRequest(BaseModel):
    name: str
    slug: str
    type: Optional[OrganizationType] = Field(default=None, validate_default=True)

    @field_validator("name", mode="before")
    @classmethod
    def check_name(cls, value):
        value = (value or "").strip()
        if len(value) < 2:
            raise ValueError("Organization name must be at least 2 characters")
        return value

    @field_validator("slug", mode="before")
    @classmethod
    def check_slug(cls, value):
        value = (value or "").strip().lower()
        if len(value) < 2:
            raise ValueError("Slug must be at least 2 characters")
        if not SLUG_PATTERN.match(value):
            raise ValueError("Slug can only contain lowercase letters, numbers, and hyphens")
        return value

    @field_validator("type", mode="after")
    @classmethod
    def check_type(cls, value):
        if value is None:
            raise ValueError("Please select an organization type")
        return value


class OrgResponse(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    type: str
    plan: str
    is_active: bool
    created_at: datetime
    role: Optional[OrgRole] = None  # the requesting user's role

    model_config = {"from_attributes": True}


class OrgListItem(BaseModel):
    id: uuid.UUID
    name: str
    slug: str
    type: str
    plan: str
    role: OrgRole

    model_config = {"from_attributes": True}


class OrgListResponse(BaseModel):
    data: list[OrgListItem]
