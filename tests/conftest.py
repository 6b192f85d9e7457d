"""
Shared fixtures: in-memory SQLite, seeded accounts and a recording mailer.
"""

from __future__ import annotations

from typing import Optional
from unittest.mock import AsyncMock, patch

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import orgconsole.models  # noqa: F401  (populate metadata)
from orgconsole.core.config import get_settings
from orgconsole.core.database import get_session
from orgconsole.core.security import create_session_token, hash_password
from orgconsole.main import app
from orgconsole.models.branch import Branch, BranchMembership
from orgconsole.models.org_membership import OrganizationMembership
from orgconsole.models.organization import Organization
from orgconsole.models.user import User
from orgconsole.services.directory import Account, DirectoryError, LocalIdentityDirectory
from orgconsole.services.membership import MembershipReconciler
from orgconsole.services.notifications import DeliveryOutcome, InvitationEmail, InvitationMailer, get_mailer


class RecordingMailer(InvitationMailer):
    """Mailer that keeps every invitation instead of sending it."""

    def __init__(self):
        super().__init__("", "")
        self.sent: list[InvitationEmail] = []

    async def send_invitation(self, email: InvitationEmail) -> DeliveryOutcome:
        self.sent.append(email)
        return DeliveryOutcome(ok=True, message_id=f"test-{len(self.sent)}")


class FailingDirectory(LocalIdentityDirectory):
    """Local directory whose provisioning is down."""

    async def provision(self, email, metadata, *, send_invite):
        raise DirectoryError("Identity provider is unreachable")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------

@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def no_revocation_store():
    """Session revocation lives in Redis; tests never talk to one."""
    with patch("orgconsole.services.directory.is_token_revoked", AsyncMock(return_value=False)):
        yield


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------

async def make_user(
    session: AsyncSession, email: str, *, password: Optional[str] = "secret123", display_name: Optional[str] = None
) -> User:
    user = User(
        email=email,
        display_name=display_name,
        password_hash=hash_password(password) if password else None,
    )
    session.add(user)
    await session.commit()
    return user


async def make_org(
    session: AsyncSession, owner: User, *, slug: str = "acme", name: str = "Acme Foods", type: str = "restaurant"
) -> Organization:
    org = Organization(name=name, slug=slug, type=type)
    session.add(org)
    await session.flush()
    session.add(OrganizationMembership(organization_id=org.id, user_id=owner.id, role="owner"))
    await session.commit()
    return org


async def add_member(session: AsyncSession, org: Organization, user: User, role: str) -> OrganizationMembership:
    membership = OrganizationMembership(organization_id=org.id, user_id=user.id, role=role)
    session.add(membership)
    await session.commit()
    return membership


async def make_branch(session: AsyncSession, org: Organization, *, name: str = "Downtown", code: str = "DT01") -> Branch:
    branch = Branch(organization_id=org.id, name=name, code=code)
    session.add(branch)
    await session.commit()
    return branch


async def add_branch_member(session: AsyncSession, branch: Branch, user: User, role: str = "staff") -> BranchMembership:
    membership = BranchMembership(branch_id=branch.id, user_id=user.id, role=role)
    session.add(membership)
    await session.commit()
    return membership


def account_of(user: User) -> Account:
    return Account(id=user.id, email=user.email, display_name=user.display_name)


def bearer(user: User) -> dict[str, str]:
    token, _jti = create_session_token(user.id, user.email)
    return {"Authorization": f"Bearer {token}"}


# ---------------------------------------------------------------------------
# Collaborators
# ---------------------------------------------------------------------------

@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
def mailer():
    return RecordingMailer()


@pytest.fixture
def directory(session, settings):
    return LocalIdentityDirectory(session, settings)


@pytest.fixture
def reconciler_for(session, directory, mailer, settings):
    """Build a reconciler acting as the given user."""

    def build(user: User, *, directory_override=None) -> MembershipReconciler:
        return MembershipReconciler(
            session, account_of(user), directory_override or directory, mailer, settings
        )

    return build


@pytest.fixture
async def owner(session):
    return await make_user(session, "owner@acme.com", display_name="Olivia Owner")


@pytest.fixture
async def org(session, owner):
    return await make_org(session, owner)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest.fixture
async def client(session_factory, mailer):
    async def override_session():
        async with session_factory() as s:
            try:
                yield s
                await s.commit()
            except Exception:
                await s.rollback()
                raise

    app.dependency_overrides[get_session] = override_session
    app.dependency_overrides[get_mailer] = lambda: mailer
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()
