"""JWT token creation and verification.

Learn: Tokens live for session_ttl_hours (8h by default), the same
lifetime as the session row written next to them. Claims:
- sub: user id
- username / email / role: identity handed to downstream handlers
- jti: random id, so two logins in the same second still get
  distinct tokens (the session table has a unique index on token)
"""

import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt

from iotmonitor.config import settings


class TokenError(Exception):
    """Raised when token verification fails."""


@dataclass(frozen=True)
class TokenClaims:
    """Decoded identity carried by a verified token."""

    user_id: Optional[str]
    username: Optional[str]
    email: Optional[str]
    role: Optional[str]
    expires_at: datetime

    @classmethod
    def from_payload(cls, payload: dict) -> "TokenClaims":
        return cls(
            user_id=payload.get("sub"),
            username=payload.get("username"),
            email=payload.get("email"),
            role=payload.get("role"),
            expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
        )


def session_lifetime() -> timedelta:
    return timedelta(hours=settings.session_ttl_hours)


def create_access_token(
    user_id: str,
    username: str,
    email: str,
    role: Optional[str] = None,
    expires_in: Optional[timedelta] = None,
    issued_at: Optional[datetime] = None,
) -> str:
    """Create a signed access token."""
    now = issued_at or datetime.now(timezone.utc)
    payload = {
        "sub": user_id,
        "username": username,
        "email": email,
        "jti": uuid.uuid4().hex,
        "iat": now,
        "exp": now + (expires_in if expires_in is not None else session_lifetime()),
    }
    if role:
        payload["role"] = role
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def verify_token(token: str) -> TokenClaims:
    """Verify signature and expiry, returning the decoded claims.

    Raises TokenError on failure. Purely cryptographic/temporal —
    no database access.
    """
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["exp", "sub"]},
        )
    except jwt.ExpiredSignatureError:
        raise TokenError("Token has expired")
    except jwt.InvalidTokenError as e:
        raise TokenError(f"Invalid token: {e}")
    return TokenClaims.from_payload(payload)
