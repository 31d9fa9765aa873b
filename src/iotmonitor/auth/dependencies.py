"""FastAPI auth dependencies.

Learn: These are used as Depends() in route handlers to extract
and validate the current identity from the request. Routers that
need auth for every route attach get_current_identity at the
include_router level (see api/__init__.py).
"""

import hmac
import uuid
from typing import Optional

from fastapi import Depends, Header, Request
from sqlalchemy.ext.asyncio import AsyncSession

from iotmonitor.auth.authorizer import Unauthenticated, authorize, extract_token
from iotmonitor.db.engine import get_db
from iotmonitor.db.models import Role, UserSession
from iotmonitor.errors import AuthError, ForbiddenError


class CurrentIdentity:
    """Represents the authenticated user making the request.

    Learn: Downstream code (devices, readings) only ever reads
    user_id and role from here, never the raw token.
    """

    def __init__(
        self,
        user_id: uuid.UUID,
        username: Optional[str] = None,
        email: Optional[str] = None,
        role: Optional[str] = None,
        session: Optional[UserSession] = None,
    ):
        self.user_id = user_id
        self.username = username
        self.email = email
        self.role = role or Role.USER.value
        self.session = session

    @property
    def token(self) -> Optional[str]:
        return self.session.token if self.session else None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN.value


async def get_current_identity(
    authorization: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_db),
) -> CurrentIdentity:
    """Extract current identity (required — 401 if missing or rejected)."""
    result = await authorize(db, extract_token(authorization))
    if isinstance(result, Unauthenticated):
        raise AuthError(result.message)

    claims = result.claims
    # An identity without a resolvable user id is no identity at all
    try:
        user_id = uuid.UUID(claims.user_id or "")
    except ValueError:
        raise AuthError("User not identified in token")

    return CurrentIdentity(
        user_id=user_id,
        username=claims.username,
        email=claims.email,
        role=claims.role,
        session=result.session,
    )


async def require_admin(
    identity: CurrentIdentity = Depends(get_current_identity),
) -> CurrentIdentity:
    """Like get_current_identity, but only for admins (403 otherwise)."""
    if not identity.is_admin:
        raise ForbiddenError("Admin role required")
    return identity


async def verify_ingest_key(
    request: Request,
    x_api_key: Optional[str] = Header(None),
) -> None:
    """Gate sensor ingestion behind a shared key, when one is configured.

    Learn: Boards can't log in, so ingestion doesn't use sessions. With
    IOTMONITOR_INGEST_API_KEY unset (dev benches) ingestion is open;
    once set, every POST must carry it in X-API-Key.
    """
    expected = request.app.state.settings.ingest_api_key
    if not expected:
        return
    if not x_api_key or not hmac.compare_digest(x_api_key, expected):
        raise AuthError("Invalid API key")
