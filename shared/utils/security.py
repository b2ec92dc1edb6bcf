"""
shared/utils/security.py
JWT creation/verification and admin password hashing.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from passlib.context import CryptContext

from config.settings import settings

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


# ── JWT ───────────────────────────────────────────────────────

def create_access_token(
    account_id: int,
    role: str,
    email: str,
    extra: Optional[dict] = None,
) -> tuple[str, str]:
    """
    Create a signed JWT access token for an account.
    Returns (token, jti); the jti is deny-listed on logout.
    """
    jti = str(uuid.uuid4())
    now = datetime.now(timezone.utc)
    expire = now + timedelta(minutes=settings.JWT_ACCESS_TOKEN_EXPIRE_MINUTES)

    payload = {
        "sub": str(account_id),
        "role": role,
        "email": email,
        "jti": jti,
        "iat": now,
        "exp": expire,
        "type": "access",
        **(extra or {}),
    }

    token = jwt.encode(payload, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)
    return token, jti


def verify_access_token(token: str) -> dict:
    """
    Decode and verify a JWT access token.
    Raises JWTError on invalid/expired token.
    """
    payload = jwt.decode(
        token,
        settings.JWT_SECRET_KEY,
        algorithms=[settings.JWT_ALGORITHM],
    )
    if payload.get("type") != "access":
        raise JWTError("Invalid token type")
    if not str(payload.get("sub", "")).isdigit():
        raise JWTError("Invalid subject")
    return payload


def get_token_remaining_ttl(payload: dict) -> int:
    """Seconds until token expiry. Used as the deny-list TTL."""
    exp = payload.get("exp", 0)
    remaining = exp - datetime.now(timezone.utc).timestamp()
    return max(0, int(remaining))


# ── Passwords (admin console login) ───────────────────────────

def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain_password: str, hashed_password: str) -> bool:
    return pwd_context.verify(plain_password, hashed_password)
