"""
Schema validation tests (no DB needed).
"""

from __future__ import annotations

import uuid
from datetime import datetime

import pytest
from pydantic import TypeAdapter, ValidationError

from orgconsole_shared.schemas.auth import RegisterRequest, SetupPasswordRequest
from orgconsole_shared.schemas.branches import (
    BranchCreateRequest,
    BranchMemberAddRequest,
    BranchUpdateRequest,
)
from orgconsole_shared.schemas.common import BranchRole, OrgRole
from orgconsole_shared.schemas.members import (
    ActiveMemberView,
    InviteRequest,
    MemberView,
    PendingMemberView,
    normalize_email,
)
from orgconsole_shared.schemas.organizations import OrgCreateRequest


class TestEmailNormalization:
    def test_trims_and_lowercases(self):
        assert normalize_email("  New@X.com ") == "new@x.com"

    def test_rejects_blank(self):
        with pytest.raises(ValueError, match="Email is required"):
            normalize_email("   ")

    def test_rejects_malformed(self):
        with pytest.raises(ValueError, match="Invalid email"):
            normalize_email("not-an-email")


class TestInviteRequest:
    def test_defaults_to_member(self):
        req = InviteRequest(email="Someone@Example.com")
        assert req.email == "someone@example.com"
        assert req.role == OrgRole.MEMBER

    def test_rejects_unknown_role(self):
        with pytest.raises(ValidationError):
            InviteRequest(email="a@example.com", role="superuser")


class TestOrgCreateRequest:
    def test_valid(self):
        req = OrgCreateRequest(name="  Corner Cafe ", slug=" Corner-Cafe ", type="cafe")
        assert req.name == "Corner Cafe"
        assert req.slug == "corner-cafe"
        assert req.type.value == "cafe"

    def test_short_name(self):
        with pytest.raises(ValidationError, match="Organization name must be at least 2 characters"):
            OrgCreateRequest(name="A", slug="ab", type="cafe")

    def test_short_slug(self):
        with pytest.raises(ValidationError, match="Slug must be at least 2 characters"):
            OrgCreateRequest(name="Acme", slug="a", type="cafe")

    def test_slug_charset(self):
        with pytest.raises(ValidationError, match="lowercase letters, numbers, and hyphens"):
            OrgCreateRequest(name="Acme", slug="acme_foods", type="cafe")

    def test_type_required(self):
        with pytest.raises(ValidationError, match="Please select an organization type"):
            OrgCreateRequest(name="Acme", slug="acme")

    def test_unknown_type(self):
        with pytest.raises(ValidationError):
            OrgCreateRequest(name="Acme", slug="acme", type="spaceship")


class TestBranchSchemas:
    def test_code_is_uppercased(self):
        req = BranchCreateRequest(name="Downtown", code=" dt01 ", address="  ")
        assert req.code == "DT01"
        assert req.address is None

    def test_code_charset(self):
        with pytest.raises(ValidationError, match="uppercase letters and numbers"):
            BranchCreateRequest(name="Downtown", code="DT-01")

    def test_code_required(self):
        with pytest.raises(ValidationError, match="Branch code is required"):
            BranchCreateRequest(name="Downtown", code="")

    def test_update_is_partial(self):
        req = BranchUpdateRequest(is_active=False)
        assert req.model_dump(exclude_unset=True) == {"is_active": False}

    def test_member_add_defaults_to_staff(self):
        req = BranchMemberAddRequest(branch_id=uuid.uuid4(), email="Staff@Acme.com")
        assert req.email == "staff@acme.com"
        assert req.role == BranchRole.STAFF


class TestAuthSchemas:
    def test_password_length(self):
        with pytest.raises(ValidationError, match="at least 6 characters"):
            RegisterRequest(email="a@example.com", password="123")

    def test_setup_passwords_must_match(self):
        with pytest.raises(ValidationError, match="Passwords do not match"):
            SetupPasswordRequest(token="t", password="secret1", confirm_password="secret2")


class TestMemberView:
    def test_discriminates_on_kind(self):
        adapter = TypeAdapter(MemberView)
        pending = adapter.validate_python(
            {
                "kind": "invitation",
                "key": "inv-1",
                "id": str(uuid.uuid4()),
                "organization_id": str(uuid.uuid4()),
                "role": "member",
                "email": "new@x.com (pending)",
                "created_at": datetime.utcnow().isoformat(),
            }
        )
        assert isinstance(pending, PendingMemberView)
        assert pending.user_id is None

        active = adapter.validate_python(
            {
                "kind": "member",
                "key": "k",
                "id": str(uuid.uuid4()),
                "organization_id": str(uuid.uuid4()),
                "user_id": str(uuid.uuid4()),
                "role": "owner",
                "joined_at": datetime.utcnow().isoformat(),
            }
        )
        assert isinstance(active, ActiveMemberView)
