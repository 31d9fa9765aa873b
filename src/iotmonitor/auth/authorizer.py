"""Request authorizer — token + session row, checked in a fixed order.

Learn: Every protected request runs the same guard clauses, each one
returning early with the reason it failed:

    1. no token                        → MISSING_TOKEN
    2. bad signature / token expired   → INVALID_TOKEN       (no DB access)
    3. no session row for this token   → SESSION_NOT_FOUND
    4. session row logged out          → SESSION_INVALIDATED
    5. session row past expires_at     → SESSION_EXPIRED
    6. otherwise                       → Authenticated(claims, session)

Expiry is enforced twice on purpose: by the token's own `exp` and by
the row's `expires_at`. Both must pass independently.

The result is a tagged value rather than an exception so every
rejection reason can be asserted on directly in tests. The FastAPI
dependency in dependencies.py turns rejections into AuthError.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from iotmonitor.auth.jwt import TokenClaims, TokenError, verify_token
from iotmonitor.db.models import UserSession, as_utc


class RejectReason(str, Enum):
    MISSING_TOKEN = "Token not provided"
    INVALID_TOKEN = "Invalid or expired token"
    SESSION_NOT_FOUND = "Session not found"
    SESSION_INVALIDATED = "Session invalidated"
    SESSION_EXPIRED = "Session expired"


@dataclass(frozen=True)
class Authenticated:
    claims: TokenClaims
    session: UserSession


@dataclass(frozen=True)
class Unauthenticated:
    reason: RejectReason

    @property
    def message(self) -> str:
        return self.reason.value


AuthResult = Union[Authenticated, Unauthenticated]


async def authorize(
    db: AsyncSession,
    token: Optional[str],
    now: Optional[datetime] = None,
) -> AuthResult:
    """Run the guard clauses for one request. One verify + one lookup."""
    if not token:
        return Unauthenticated(RejectReason.MISSING_TOKEN)

    try:
        claims = verify_token(token)
    except TokenError:
        return Unauthenticated(RejectReason.INVALID_TOKEN)

    result = await db.execute(
        select(UserSession).where(UserSession.token == token).limit(1)
    )
    session = result.scalars().first()

    if session is None:
        return Unauthenticated(RejectReason.SESSION_NOT_FOUND)
    if not session.is_active:
        return Unauthenticated(RejectReason.SESSION_INVALIDATED)

    now = now or datetime.now(timezone.utc)
    if as_utc(session.expires_at) <= now:
        return Unauthenticated(RejectReason.SESSION_EXPIRED)

    return Authenticated(claims=claims, session=session)


def extract_token(authorization: Optional[str]) -> Optional[str]:
    """Pull the token out of an Authorization header.

    Accepts "Bearer <token>" and, for older firmware/clients, a bare token.
    """
    if not authorization:
        return None
    parts = authorization.strip().split()
    if len(parts) == 2 and parts[0].lower() == "bearer":
        return parts[1]
    if len(parts) == 1:
        return parts[0]
    return None
