"""
Identity directory: authentication, account lookup and provisioning.

Two backends share one contract:

- ``LocalIdentityDirectory`` keeps accounts in the ``users`` table, hashes
  passwords with bcrypt and signs session / setup tokens itself.
- ``SupabaseIdentityDirectory`` delegates to a hosted GoTrue auth server
  through its admin REST API and mirrors each account into ``users`` so
  emails can still be resolved in one batch query.

Provisioning either sends the directory's own invitation email
(``send_invite=True``) or returns an accept link for our mail transport.
Every failure leaves the directory as ``DirectoryError``.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Iterable, Optional

import httpx
import jwt
import structlog
from fastapi import Depends
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from orgconsole.core.config import Settings, get_settings
from orgconsole.core.database import get_session
from orgconsole.core.errors import ConflictError, ConsoleError
from orgconsole.core.security import (
    SETUP_PURPOSE,
    create_session_token,
    create_setup_token,
    decode_token,
    hash_password,
    is_token_revoked,
    verify_password,
)
from orgconsole.models.user import User

log = structlog.get_logger()

ADMIN_PAGE_SIZE = 1000


@dataclass
class Account:
    id: uuid.UUID
    email: str
    display_name: Optional[str] = None

    @property
    def label(self) -> str:
        return self.display_name or self.email


@dataclass
class ProvisionedAccount(Account):
    accept_url: Optional[str] = None


class DirectoryError(Exception):
    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class IdentityDirectory:
    """Base directory. Account profiles are read from the ``users`` table."""

    def __init__(self, session: AsyncSession, settings: Optional[Settings] = None):
        self.session = session
        self.settings = settings or get_settings()

    @property
    def setup_url(self) -> str:
        return f"{self.settings.app_url.rstrip('/')}/setup-password"

    async def authenticate(self, token: str) -> Optional[Account]:
        raise NotImplementedError

    async def provision(
        self, email: str, metadata: dict, *, send_invite: bool
    ) -> ProvisionedAccount:
        raise NotImplementedError

    async def reissue_invite(
        self, account: Account, metadata: dict, *, send_invite: bool
    ) -> ProvisionedAccount:
        raise NotImplementedError

    async def complete_setup(self, token: str, password: str) -> Account:
        raise NotImplementedError

    async def find_by_email(self, email: str) -> Optional[Account]:
        user = await self._profile_by_email(email)
        return _account(user) if user else None

    async def emails_for(self, user_ids: Iterable[uuid.UUID]) -> dict[uuid.UUID, str]:
        """Resolve emails for many accounts in a single query."""
        ids = list({uid for uid in user_ids if uid is not None})
        if not ids:
            return {}
        result = await self.session.execute(select(User.id, User.email).where(User.id.in_(ids)))
        return {uid: email for uid, email in result.all()}

    async def _profile_by_email(self, email: str) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def _upsert_profile(
        self,
        user_id: uuid.UUID,
        email: str,
        *,
        display_name: Optional[str] = None,
        metadata: Optional[dict] = None,
    ) -> User:
        try:
            user = await self.session.get(User, user_id)
            if user is None:
                user = User(id=user_id, email=email.lower())
            user.email = email.lower()
            if display_name:
                user.display_name = display_name
            if metadata is not None:
                user.invited_metadata = metadata
            self.session.add(user)
            await self.session.flush()
        except SQLAlchemyError as exc:
            raise DirectoryError("Failed to store account profile") from exc
        return user


def _account(user: User, accept_url: Optional[str] = None) -> Account:
    if accept_url is not None:
        return ProvisionedAccount(
            id=user.id, email=user.email, display_name=user.display_name, accept_url=accept_url
        )
    return Account(id=user.id, email=user.email, display_name=user.display_name)


# ---------------------------------------------------------------------------
# Local directory
# ---------------------------------------------------------------------------

class LocalIdentityDirectory(IdentityDirectory):
    """Accounts stored in our own database."""

    async def authenticate(self, token: str) -> Optional[Account]:
        try:
            payload = decode_token(token)
        except jwt.PyJWTError:
            return None
        jti = payload.get("jti")
        if jti and await is_token_revoked(jti):
            return None
        user = await self.session.get(User, uuid.UUID(payload["sub"]))
        return _account(user) if user else None

    async def register(
        self, email: str, password: str, display_name: Optional[str] = None
    ) -> Account:
        if await self._profile_by_email(email):
            raise ConflictError("Email already registered")
        user = User(
            email=email.lower(),
            display_name=display_name,
            password_hash=hash_password(password),
            setup_completed_at=datetime.now(timezone.utc),
        )
        self.session.add(user)
        await self.session.flush()
        log.info("user.registered", user_id=str(user.id), email=user.email)
        return _account(user)

    async def sign_in(self, email: str, password: str) -> Optional[tuple[Account, str]]:
        """Verify credentials. Returns (account, session_token) or None."""
        user = await self._profile_by_email(email)
        if not user or not user.password_hash:
            return None
        if not verify_password(password, user.password_hash):
            log.warning("auth.login_failure", email=email, reason="bad_password")
            return None
        token, _jti = create_session_token(user.id, user.email)
        return _account(user), token

    def _accept_url(self, user: User) -> str:
        return f"{self.setup_url}?token={create_setup_token(user.id, user.email)}"

    async def provision(
        self, email: str, metadata: dict, *, send_invite: bool
    ) -> ProvisionedAccount:
        if await self._profile_by_email(email):
            raise DirectoryError("A user with this email address has already been registered")
        user = await self._upsert_profile(uuid.uuid4(), email, metadata=metadata)
        accept_url = self._accept_url(user)
        if send_invite:
            # No mail server of our own: the link is only written to the log.
            log.info("directory.invite_link", email=user.email, accept_url=accept_url)
        log.info("directory.provisioned", user_id=str(user.id), email=user.email)
        return _account(user, accept_url)

    async def reissue_invite(
        self, account: Account, metadata: dict, *, send_invite: bool
    ) -> ProvisionedAccount:
        user = await self._upsert_profile(account.id, account.email, metadata=metadata)
        accept_url = self._accept_url(user)
        if send_invite:
            log.info("directory.invite_link", email=user.email, accept_url=accept_url)
        return _account(user, accept_url)

    async def complete_setup(self, token: str, password: str) -> Account:
        try:
            payload = decode_token(token, SETUP_PURPOSE)
        except jwt.PyJWTError:
            raise DirectoryError("Invalid or expired invitation link")
        user = await self.session.get(User, uuid.UUID(payload["sub"]))
        if user is None:
            raise DirectoryError("Invalid or expired invitation link")
        if user.setup_completed_at is not None:
            raise DirectoryError("This invitation link has already been used")
        user.password_hash = hash_password(password)
        user.setup_completed_at = datetime.now(timezone.utc)
        self.session.add(user)
        await self.session.flush()
        log.info("directory.setup_completed", user_id=str(user.id))
        return _account(user)


# ---------------------------------------------------------------------------
# Hosted directory (Supabase / GoTrue)
# ---------------------------------------------------------------------------

class SupabaseIdentityDirectory(IdentityDirectory):
    """Accounts held by a hosted GoTrue server, reached with the service-role key."""

    def __init__(
        self,
        session: AsyncSession,
        settings: Optional[Settings] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(session, settings)
        if not self.settings.supabase_url or not self.settings.supabase_service_role_key:
            raise DirectoryError("Identity provider is not configured")
        self._base_url = f"{self.settings.supabase_url.rstrip('/')}/auth/v1"
        self._transport = transport

    def _headers(self, token: Optional[str] = None) -> dict[str, str]:
        key = self.settings.supabase_service_role_key
        return {
            "apikey": key,
            "Authorization": f"Bearer {token or key}",
            "Content-Type": "application/json",
        }

    async def _request(
        self,
        method: str,
        path: str,
        *,
        token: Optional[str] = None,
        json: Optional[dict] = None,
        params: Optional[dict] = None,
    ) -> Any:
        async with httpx.AsyncClient(
            base_url=self._base_url,
            timeout=httpx.Timeout(self.settings.directory_timeout_seconds),
            transport=self._transport,
        ) as client:
            try:
                response = await client.request(
                    method, path, headers=self._headers(token), json=json, params=params
                )
                response.raise_for_status()
            except httpx.HTTPStatusError as exc:
                message = _error_message(exc.response)
                log.warning(
                    "directory.request_failed",
                    path=path,
                    status=exc.response.status_code,
                    error=message,
                )
                raise DirectoryError(message) from exc
            except httpx.HTTPError as exc:
                log.warning("directory.unreachable", path=path, error=str(exc))
                raise DirectoryError("Identity provider is unreachable") from exc
        return response.json() if response.content else {}

    async def _mirror(self, data: dict, metadata: Optional[dict] = None) -> User:
        user = data.get("user") if isinstance(data.get("user"), dict) else data
        if not user.get("id") or not user.get("email"):
            raise DirectoryError("Failed to create user")
        display_name = (user.get("user_metadata") or {}).get("full_name")
        return await self._upsert_profile(
            uuid.UUID(user["id"]), user["email"], display_name=display_name, metadata=metadata
        )

    async def authenticate(self, token: str) -> Optional[Account]:
        try:
            data = await self._request("GET", "/user", token=token)
        except DirectoryError:
            return None
        return _account(await self._mirror(data))

    async def find_by_email(self, email: str) -> Optional[Account]:
        """Look in the mirrored profiles first, then page through the admin user list.

        Not every GoTrue release filters the admin list by email, so a miss
        costs one request per thousand accounts. Every account found is
        mirrored, so later lookups of the same email stay local.
        """
        existing = await super().find_by_email(email)
        if existing:
            return existing
        page = 1
        while True:
            data = await self._request(
                "GET", "/admin/users", params={"page": page, "per_page": ADMIN_PAGE_SIZE}
            )
            users = data.get("users") if isinstance(data, dict) else None
            if not users:
                return None
            for user in users:
                if (user.get("email") or "").strip().lower() == email:
                    return _account(await self._mirror(user))
            if len(users) < ADMIN_PAGE_SIZE:
                return None
            page += 1

    async def _generate_link(self, link_type: str, email: str, metadata: dict) -> dict:
        return await self._request(
            "POST",
            "/admin/generate_link",
            json={
                "type": link_type,
                "email": email,
                "data": metadata,
                "redirect_to": self.setup_url,
            },
        )

    async def provision(
        self, email: str, metadata: dict, *, send_invite: bool
    ) -> ProvisionedAccount:
        if send_invite:
            data = await self._request(
                "POST",
                "/invite",
                json={"email": email, "data": metadata},
                params={"redirect_to": self.setup_url},
            )
            accept_url = self.setup_url
        else:
            data = await self._generate_link("invite", email, metadata)
            accept_url = _action_link(data) or self.setup_url
        user = await self._mirror(data, metadata)
        log.info("directory.provisioned", user_id=str(user.id), native_email=send_invite)
        return _account(user, accept_url)

    async def reissue_invite(
        self, account: Account, metadata: dict, *, send_invite: bool
    ) -> ProvisionedAccount:
        try:
            return await self.provision(account.email, metadata, send_invite=send_invite)
        except DirectoryError as exc:
            # Already registered with the provider: fall back to a recovery link.
            log.info("directory.invite_fallback", email=account.email, error=exc.message)
        if send_invite:
            await self._request("POST", "/recover", json={"email": account.email})
            return ProvisionedAccount(
                id=account.id, email=account.email, display_name=account.display_name,
                accept_url=self.setup_url,
            )
        data = await self._generate_link("recovery", account.email, metadata)
        user = await self._mirror(data, metadata)
        return _account(user, _action_link(data) or self.setup_url)

    async def complete_setup(self, token: str, password: str) -> Account:
        data = await self._request("PUT", "/user", token=token, json={"password": password})
        return _account(await self._mirror(data))


def _action_link(data: dict) -> Optional[str]:
    return data.get("action_link") or (data.get("properties") or {}).get("action_link")


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or "Identity provider error"
    if isinstance(body, dict):
        return body.get("msg") or body.get("error_description") or body.get("message") or "Identity provider error"
    return "Identity provider error"


def get_identity_directory(session: AsyncSession = Depends(get_session)) -> IdentityDirectory:
    """FastAPI dependency selecting the configured directory backend."""
    settings = get_settings()
    if settings.identity_provider == "supabase":
        try:
            return SupabaseIdentityDirectory(session, settings)
        except DirectoryError as exc:
            raise ConsoleError(exc.message, status_code=503) from exc
    return LocalIdentityDirectory(session, settings)
