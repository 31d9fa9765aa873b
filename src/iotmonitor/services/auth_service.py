"""Auth service — registration, login, logout, and user lookup.

Learn: Service layer separates business logic from HTTP routing.
API routes call services, services call the database. The CLI uses
the same service for password resets, so every rule (required
fields, email-vs-username lookup, hashing) lives in exactly one place.

Sessions: every successful register/login mints a token AND writes a
UserSession row in the same commit. If the session row can't be
written, the whole request fails — a token without a session would be
rejected by the authorizer on first use anyway.
"""

from datetime import datetime, timezone
from functools import lru_cache
from typing import Optional

import structlog
from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from iotmonitor.auth.jwt import create_access_token, session_lifetime
from iotmonitor.auth.password import hash_password, verify_password
from iotmonitor.db.models import Role, User, UserSession
from iotmonitor.errors import AuthError, ConflictError, NotFoundError, ValidationError

logger = structlog.get_logger()


@lru_cache(maxsize=1)
def _dummy_hash() -> str:
    # Compared against when the user doesn't exist, so unknown users
    # cost the same bcrypt time as wrong passwords.
    return hash_password("not-a-real-password")


def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


class AuthService:
    """Business logic for credentials and sessions."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Register ───────────────────────────────────────

    async def register(
        self,
        username: Optional[str],
        email: Optional[str],
        password: Optional[str],
        full_name: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> tuple[str, User]:
        """Create a user and open their first session. Returns (token, user)."""
        username = (username or "").strip()
        email = normalize_email(email)
        if not username or not email or not password:
            raise ValidationError("username, email and password are required")

        existing = await self.db.execute(
            select(User.id)
            .where(or_(User.username == username, User.email == email))
            .limit(1)
        )
        if existing.first() is not None:
            raise ConflictError("Username or email already registered")

        user = User(
            username=username,
            email=email,
            password_hash=hash_password(password),
            full_name=full_name or None,
            role=Role.USER.value,
            is_active=True,
        )
        self.db.add(user)
        try:
            # Unique constraints are the source of truth — the check above
            # can lose a race against a concurrent registration.
            await self.db.flush()
        except IntegrityError:
            await self.db.rollback()
            logger.info("auth.register_conflict", username=username)
            raise ConflictError("Username or email already registered")

        token = await self._commit_with_session(user, ip_address, user_agent)

        logger.info("auth.registered", user_id=str(user.id), username=username)
        return token, user

    # ─── Login ──────────────────────────────────────────

    async def login(
        self,
        username: Optional[str],
        email: Optional[str],
        password: Optional[str],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> tuple[str, User]:
        """Verify credentials and open a new session. Returns (token, user).

        Lookup is by email when one is supplied, otherwise by username —
        an explicit branch, not "try one then the other".
        """
        if (not username and not email) or not password:
            raise ValidationError("username/email and password are required")

        lookup = "email" if email else "username"
        user = await self._find_user(username, email)

        if user is None:
            verify_password(password, _dummy_hash())
            logger.warning("auth.login_failed", lookup=lookup, reason="unknown_user")
            raise AuthError("Invalid credentials")
        if not verify_password(password, user.password_hash):
            logger.warning("auth.login_failed", lookup=lookup, user_id=str(user.id))
            raise AuthError("Invalid credentials")
        if not user.is_active:
            logger.warning("auth.login_failed", lookup=lookup, reason="inactive", user_id=str(user.id))
            raise AuthError("Invalid credentials")

        user.last_access_at = datetime.now(timezone.utc)
        token = await self._commit_with_session(user, ip_address, user_agent)

        logger.info("auth.login_succeeded", user_id=str(user.id), lookup=lookup)
        return token, user

    # ─── Logout ─────────────────────────────────────────

    async def logout(self, token: str) -> None:
        """Invalidate the session for this token (404 if none matches)."""
        result = await self.db.execute(
            update(UserSession)
            .where(UserSession.token == token)
            .values(is_active=False)
        )
        if result.rowcount == 0:
            raise NotFoundError("Session not found")
        await self.db.commit()
        logger.info("auth.logged_out")

    # ─── Lookups ────────────────────────────────────────

    async def get_user(self, user_id) -> User:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def get_user_by_email(self, email: str) -> User:
        result = await self.db.execute(
            select(User).where(User.email == normalize_email(email))
        )
        user = result.scalars().first()
        if user is None:
            raise NotFoundError("User not found")
        return user

    async def check_password(
        self,
        username: Optional[str],
        email: Optional[str],
        password: Optional[str],
    ) -> tuple[bool, User]:
        """Debug helper: does this password match the stored hash?"""
        if (not username and not email) or not password:
            raise ValidationError("username/email and password are required")
        user = await self._find_user(username, email)
        if user is None:
            raise NotFoundError("User not found")
        return verify_password(password, user.password_hash), user

    # ─── Administration ─────────────────────────────────

    async def set_password(self, email: str, password: str) -> User:
        """Reset a user's password (operator CLI)."""
        if not password:
            raise ValidationError("password is required")
        user = await self.get_user_by_email(email)
        user.password_hash = hash_password(password)
        await self.db.commit()
        logger.info("auth.password_reset", user_id=str(user.id))
        return user

    async def set_role(self, email: str, role: str) -> User:
        try:
            role = Role(role).value
        except ValueError:
            raise ValidationError(f"Invalid role: {role}")
        user = await self.get_user_by_email(email)
        user.role = role
        await self.db.commit()
        logger.info("auth.role_changed", user_id=str(user.id), role=role)
        return user

    # ─── Internals ──────────────────────────────────────

    async def _find_user(
        self, username: Optional[str], email: Optional[str]
    ) -> Optional[User]:
        if email:
            q = select(User).where(User.email == normalize_email(email))
        else:
            q = select(User).where(User.username == (username or "").strip())
        result = await self.db.execute(q.limit(1))
        return result.scalars().first()

    async def _commit_with_session(
        self,
        user: User,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> str:
        """Write the session row and commit with whatever is pending, or nothing."""
        username = user.username
        try:
            token = await self._open_session(user, ip_address, user_agent)
            await self.db.commit()
        except SQLAlchemyError:
            await self.db.rollback()
            logger.error("auth.session_write_failed", username=username)
            raise
        return token

    async def _open_session(
        self,
        user: User,
        ip_address: Optional[str],
        user_agent: Optional[str],
    ) -> str:
        """Mint a token and stage its session row (caller commits)."""
        issued_at = datetime.now(timezone.utc)
        token = create_access_token(
            user_id=str(user.id),
            username=user.username,
            email=user.email,
            role=user.role,
            issued_at=issued_at,
        )
        self.db.add(
            UserSession(
                user_id=user.id,
                token=token,
                ip_address=ip_address,
                user_agent=user_agent,
                created_at=issued_at,
                expires_at=issued_at + session_lifetime(),
                is_active=True,
            )
        )
        await self.db.flush()
        return token
