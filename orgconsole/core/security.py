"""
Credentials and session tokens for the local identity directory.

- bcrypt password hashing
- JWT session tokens with a Redis revocation list
- single-purpose account-setup tokens carried by invitation links
- CSRF token generation
"""

from __future__ import annotations

import secrets
import uuid
from datetime import datetime, timedelta, timezone

import bcrypt
import jwt
import redis.asyncio as redis

from orgconsole.core.config import get_settings

settings = get_settings()

SESSION_PURPOSE = "session"
SETUP_PURPOSE = "account_setup"

_redis_pool: redis.Redis | None = None


# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------

def hash_password(password: str) -> str:
    """Hash a password using bcrypt with cost factor 12."""
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt(rounds=12)).decode()


def verify_password(password: str, hashed: str) -> bool:
    return bcrypt.checkpw(password.encode(), hashed.encode())


# ---------------------------------------------------------------------------
# JWT
# ---------------------------------------------------------------------------

def _encode(user_id: uuid.UUID, purpose: str, expires_delta: timedelta, **claims) -> tuple[str, str]:
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    payload = {
        "sub": str(user_id),
        "purpose": purpose,
        "iat": now,
        "exp": now + expires_delta,
        "jti": jti,
        **claims,
    }
    token = jwt.encode(payload, settings.secret_key, algorithm=settings.jwt_algorithm)
    return token, jti


def create_session_token(
    user_id: uuid.UUID,
    email: str,
    *,
    expires_delta: timedelta | None = None,
) -> tuple[str, str]:
    """Create a signed session JWT. Returns (token, jti)."""
    return _encode(
        user_id,
        SESSION_PURPOSE,
        expires_delta or timedelta(minutes=settings.jwt_expire_minutes),
        email=email,
    )


def create_setup_token(user_id: uuid.UUID, email: str) -> str:
    """Create the token embedded in an invitation accept link."""
    token, _jti = _encode(
        user_id,
        SETUP_PURPOSE,
        timedelta(hours=settings.setup_token_expire_hours),
        email=email,
    )
    return token


def decode_token(token: str, purpose: str = SESSION_PURPOSE) -> dict:
    """Decode and verify a JWT of the given purpose. Raises jwt.PyJWTError on failure."""
    payload = jwt.decode(token, settings.secret_key, algorithms=[settings.jwt_algorithm])
    if payload.get("purpose") != purpose:
        raise jwt.InvalidTokenError(f"expected a {purpose} token")
    return payload


# ---------------------------------------------------------------------------
# Revocation (Redis)
# ---------------------------------------------------------------------------

async def get_redis() -> redis.Redis:
    global _redis_pool
    if _redis_pool is None:
        _redis_pool = redis.from_url(settings.redis_url, decode_responses=True)
    return _redis_pool


async def close_redis() -> None:
    global _redis_pool
    if _redis_pool is not None:
        await _redis_pool.aclose()
        _redis_pool = None


async def revoke_token(jti: str, ttl_seconds: int | None = None) -> None:
    """Add a token ID to the revocation list until it would have expired anyway."""
    client = await get_redis()
    ttl = ttl_seconds or settings.jwt_expire_minutes * 60
    await client.setex(f"oc:revoked:{jti}", ttl, "1")


async def is_token_revoked(jti: str) -> bool:
    client = await get_redis()
    return await client.exists(f"oc:revoked:{jti}") > 0


def generate_csrf_token() -> str:
    return secrets.token_urlsafe(32)
