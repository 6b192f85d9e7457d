"""Session and account-setup schemas."""

from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .members import normalize_email
from .organizations import OrgListItem

MIN_PASSWORD_LENGTH = 6


class LoginRequest(BaseModel):
    email: str
    password: str

    @field_validator("email", mode="before")
    @classmethod
    def normalize(cls, value):
        return normalize_email(value)


class RegisterRequest(LoginRequest):
    display_name: Optional[str] = Field(default=None, max_length=200)

    @field_validator("password")
    @classmethod
    def check_length(cls, value):
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return value


class SetupPasswordRequest(BaseModel):
    """Completes an invited account: the token comes from the accept link."""
    token: str = Field(min_length=1)
    password: str
    confirm_password: str

    @field_validator("password")
    @classmethod
    def check_length(cls, value):
        if len(value) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        return value

    @model_validator(mode="after")
    def check_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class SessionUser(BaseModel):
    id: uuid.UUID
    email: str


class SessionInfo(BaseModel):
    """Dashboard bootstrap: who am I and which organizations can I open."""
    user: SessionUser
    organizations: list[OrgListItem]
