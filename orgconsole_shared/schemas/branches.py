"""Branch and branch-membership schemas."""

from __future__ import annotations

import re
import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, field_validator

from .common import BranchRole
from .members import normalize_email

BRANCH_CODE_PATTERN = re.compile(r"^[A-Z0-9]+$")


def _clean_name(value):
    value = (value or "").strip()
    if len(value) < 2:
        raise ValueError("Branch name must be at least 2 characters")
    return value


def _clean_code(value):
    value = (value or "").strip().upper()
    if not value:
        raise ValueError("Branch code is required")
    if not BRANCH_CODE_PATTERN.match(value):
        raise ValueError("Branch code can only contain uppercase letters and numbers")
    return value


def _blank_to_none(value):
    if isinstance(value, str):
        value = value.strip()
        return value or None
    return value


class BranchCreateRequest(BaseModel):
    name: str
    code: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geohash: Optional[str] = None

    name_check = field_validator("name", mode="before")(_clean_name)
    code_check = field_validator("code", mode="before")(_clean_code)
    optional_check = field_validator("address", "geohash", mode="before")(_blank_to_none)


class BranchUpdateRequest(BaseModel):
    name: Optional[str] = None
    code: Optional[str] = None
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geohash: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("name", mode="before")
    @classmethod
    def check_name(cls, value):
        return None if value is None else _clean_name(value)

    @field_validator("code", mode="before")
    @classmethod
    def check_code(cls, value):
        return None if value is None else _clean_code(value)

    optional_check = field_validator("address", "geohash", mode="before")(_blank_to_none)


class BranchResponse(BaseModel):
    id: uuid.UUID
    organization_id: uuid.UUID
    name: str
    code: str
    address: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    geohash: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class BranchListResponse(BaseModel):
    data: list[BranchResponse]


class BranchMemberAddRequest(BaseModel):
    branch_id: uuid.UUID
    email: str
    role: BranchRole = BranchRole.STAFF

    @field_validator("email", mode="before")
    @classmethod
    def normalize(cls, value):
        return normalize_email(value)


class BranchMemberView(BaseModel):
    id: uuid.UUID
    branch_id: uuid.UUID
    branch_name: str
    user_id: uuid.UUID
    role: BranchRole
    email: str
    joined_at: datetime


class BranchMemberListResponse(BaseModel):
    data: list[BranchMemberView]
