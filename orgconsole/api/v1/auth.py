"""
Authentication endpoints.

- Email/password registration and login (local directory)
- Account setup for invited users, which also accepts their invitations
- Session logout with JWT revocation
- Current user and organizations for dashboard bootstrap
"""

from __future__ import annotations

import jwt
import structlog
from fastapi import APIRouter, Depends, Request, Response
from sqlalchemy.ext.asyncio import AsyncSession

from orgconsole.core.auth import CSRF_COOKIE, SESSION_COOKIE, get_current_actor
from orgconsole.core.config import get_settings
from orgconsole.core.database import bind_caller, get_session
from orgconsole.core.errors import AuthenticationRequired, ConsoleError, ValidationError
from orgconsole.core.security import (
    create_session_token,
    decode_token,
    generate_csrf_token,
    revoke_token,
)
from orgconsole.services.directory import (
    Account,
    DirectoryError,
    IdentityDirectory,
    LocalIdentityDirectory,
    get_identity_directory,
)
from orgconsole.services.membership import MembershipReconciler
from orgconsole.services.notifications import InvitationMailer, get_mailer
from orgconsole.services.organizations import list_user_organizations
from orgconsole_shared.schemas.auth import (
    LoginRequest,
    RegisterRequest,
    SessionInfo,
    SessionUser,
    SetupPasswordRequest,
)

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()

COOKIE_KWARGS = {
    "secure": not settings.debug,  # allow non-HTTPS in dev
    "samesite": "lax",
    "path": "/",
    "max_age": settings.jwt_expire_minutes * 60,
}


def _set_session_cookies(response: Response, token: str) -> None:
    response.set_cookie(key=SESSION_COOKIE, value=token, httponly=True, **COOKIE_KWARGS)
    # JS must read the CSRF cookie to echo it back in X-CSRF-Token
    response.set_cookie(key=CSRF_COOKIE, value=generate_csrf_token(), httponly=False, **COOKIE_KWARGS)


def _local_directory(directory: IdentityDirectory) -> LocalIdentityDirectory:
    if not isinstance(directory, LocalIdentityDirectory):
        raise ConsoleError("Password sign-in is handled by the identity provider", status_code=400)
    return directory


@router.post("/register", status_code=201)
async def register(
    body: RegisterRequest,
    response: Response,
    directory: IdentityDirectory = Depends(get_identity_directory),
):
    """Create a local account and start a session."""
    account = await _local_directory(directory).register(body.email, body.password, body.display_name)
    token, _jti = create_session_token(account.id, account.email)
    _set_session_cookies(response, token)
    return {"success": True, "user": SessionUser(id=account.id, email=account.email).model_dump(mode="json")}


@router.post("/login")
async def login(
    body: LoginRequest,
    response: Response,
    directory: IdentityDirectory = Depends(get_identity_directory),
):
    result = await _local_directory(directory).sign_in(body.email, body.password)
    if result is None:
        raise AuthenticationRequired("Invalid email or password")
    account, token = result
    _set_session_cookies(response, token)
    log.info("auth.login_success", user_id=str(account.id))
    return {"success": True, "user": SessionUser(id=account.id, email=account.email).model_dump(mode="json")}


@router.post("/setup-password")
async def setup_password(
    body: SetupPasswordRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
    directory: IdentityDirectory = Depends(get_identity_directory),
    mailer: InvitationMailer = Depends(get_mailer),
):
    """Set the invited account's password and join every organization it was invited to."""
    try:
        account = await directory.complete_setup(body.token, body.password)
    except DirectoryError as exc:
        raise ValidationError(exc.message) from exc

    await bind_caller(session, account.id)
    reconciler = MembershipReconciler(session, account, directory, mailer)
    joined = await reconciler.accept_invitations()

    if isinstance(directory, LocalIdentityDirectory):
        token, _jti = create_session_token(account.id, account.email)
    else:
        token = body.token
    _set_session_cookies(response, token)
    return {
        "success": True,
        "user": SessionUser(id=account.id, email=account.email).model_dump(mode="json"),
        "joined": [str(m.organization_id) for m in joined],
    }


@router.post("/logout")
async def logout(request: Request, response: Response):
    """Invalidate the current session."""
    token = request.cookies.get(SESSION_COOKIE)
    if token:
        try:
            payload = decode_token(token)
        except jwt.PyJWTError:
            payload = {}  # already invalid, just clear cookies
        if payload.get("jti"):
            await revoke_token(payload["jti"])

    response.delete_cookie(SESSION_COOKIE, path="/")
    response.delete_cookie(CSRF_COOKIE, path="/")
    return {"success": True, "message": "Logged out"}


@router.get("/me", response_model=SessionInfo)
async def me(
    actor: Account = Depends(get_current_actor),
    session: AsyncSession = Depends(get_session),
):
    organizations = await list_user_organizations(actor.id, session)
    return SessionInfo(user=SessionUser(id=actor.id, email=actor.email), organizations=organizations)
