"""
Tests for the hosted (GoTrue) identity directory, against a mock transport.
"""

from __future__ import annotations

import json
import uuid

import httpx
import pytest
from sqlmodel import select

from orgconsole.models.user import User
from orgconsole.services.directory import (
    Account,
    DirectoryError,
    SupabaseIdentityDirectory,
)


class FakeGoTrue:
    """Minimal stand-in for the GoTrue admin API."""

    def __init__(self):
        self.users: dict[str, dict] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: tuple[int, dict] | None = None

    def add_user(self, email: str) -> dict:
        user = {"id": str(uuid.uuid4()), "email": email, "user_metadata": {}}
        self.users[email] = user
        return user

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            status, body = self.fail_with
            return httpx.Response(status, json=body)

        path = request.url.path.removeprefix("/auth/v1")
        body = json.loads(request.content) if request.content else {}

        if path == "/admin/users" and request.method == "GET":
            return httpx.Response(200, json={"users": list(self.users.values())})
        if path == "/admin/generate_link":
            user = self.users.get(body["email"])
            if body["type"] == "invite":
                if user:
                    return httpx.Response(422, json={"msg": "A user with this email address has already been registered"})
                user = self.add_user(body["email"])
            return httpx.Response(
                200,
                json={**user, "action_link": f"https://auth.example.com/verify?type={body['type']}&token=t"},
            )
        if path == "/invite":
            return httpx.Response(200, json=self.add_user(body["email"]))
        if path == "/user" and request.method == "GET":
            token = request.headers["Authorization"].removeprefix("Bearer ")
            user = next((u for u in self.users.values() if u["id"] == token), None)
            if user is None:
                return httpx.Response(401, json={"msg": "invalid JWT"})
            return httpx.Response(200, json=user)
        return httpx.Response(404, json={"msg": "not found"})


@pytest.fixture
def gotrue():
    return FakeGoTrue()


@pytest.fixture
def hosted(session, settings, gotrue):
    hosted_settings = settings.model_copy(
        update={
            "identity_provider": "supabase",
            "supabase_url": "https://project.supabase.co",
            "supabase_service_role_key": "service-role",
        }
    )
    return SupabaseIdentityDirectory(session, hosted_settings, transport=httpx.MockTransport(gotrue))


class TestSupabaseDirectory:
    def test_requires_configuration(self, session, settings):
        with pytest.raises(DirectoryError, match="not configured"):
            SupabaseIdentityDirectory(session, settings.model_copy(update={"supabase_url": ""}))

    async def test_provision_returns_action_link_and_mirrors_profile(self, session, hosted, gotrue):
        provisioned = await hosted.provision("new@x.com", {"role": "member"}, send_invite=False)

        assert provisioned.accept_url.startswith("https://auth.example.com/verify?type=invite")
        result = await session.execute(select(User).where(User.email == "new@x.com"))
        profile = result.scalar_one()
        assert profile.id == provisioned.id
        assert profile.invited_metadata == {"role": "member"}
        assert gotrue.requests[-1].headers["apikey"] == "service-role"

    async def test_native_invite(self, hosted, gotrue):
        provisioned = await hosted.provision("new@x.com", {}, send_invite=True)
        assert provisioned.accept_url == "http://localhost:3000/setup-password"
        assert gotrue.requests[-1].url.path == "/auth/v1/invite"

    async def test_find_by_email_pages_admin_users(self, hosted, gotrue):
        remote = gotrue.add_user("remote@x.com")
        account = await hosted.find_by_email("remote@x.com")
        assert account == Account(id=uuid.UUID(remote["id"]), email="remote@x.com")

    async def test_found_account_is_served_from_mirror(self, hosted, gotrue):
        gotrue.add_user("remote@x.com")
        first = await hosted.find_by_email("remote@x.com")
        calls = len(gotrue.requests)

        again = await hosted.find_by_email("remote@x.com")

        assert again == first
        assert len(gotrue.requests) == calls

    async def test_find_by_email_unknown(self, hosted):
        assert await hosted.find_by_email("nobody@x.com") is None

    async def test_reissue_falls_back_to_recovery_link(self, hosted, gotrue):
        remote = gotrue.add_user("known@x.com")
        account = Account(id=uuid.UUID(remote["id"]), email="known@x.com")

        provisioned = await hosted.reissue_invite(account, {}, send_invite=False)

        assert "type=recovery" in provisioned.accept_url

    async def test_http_error_becomes_directory_error(self, hosted, gotrue):
        gotrue.fail_with = (500, {"msg": "Database error saving new user"})
        with pytest.raises(DirectoryError, match="Database error saving new user"):
            await hosted.provision("new@x.com", {}, send_invite=False)

    async def test_unreachable(self, session, settings):
        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        directory = SupabaseIdentityDirectory(
            session,
            settings.model_copy(update={"supabase_url": "https://p.supabase.co", "supabase_service_role_key": "k"}),
            transport=httpx.MockTransport(refuse),
        )
        with pytest.raises(DirectoryError, match="unreachable"):
            await directory.provision("new@x.com", {}, send_invite=False)

    async def test_authenticate(self, hosted, gotrue):
        remote = gotrue.add_user("me@x.com")
        account = await hosted.authenticate(remote["id"])
        assert account.email == "me@x.com"
        assert await hosted.authenticate("bogus") is None
