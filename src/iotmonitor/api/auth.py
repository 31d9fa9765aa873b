"""Auth API — registration, login, logout, current user.

Learn: Routes for the session lifecycle:
- POST /auth/register → create user + first session → token
- POST /auth/login    → username or email + password → token (new session each time)
- POST /auth/logout   → invalidate the session behind the presented token
- GET  /auth/me       → current user's profile

Routes handle HTTP concerns only (client IP, user agent, status codes);
AuthService owns the rules.
"""

from typing import Optional

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from iotmonitor.auth.dependencies import CurrentIdentity, get_current_identity
from iotmonitor.db.engine import get_db
from iotmonitor.diagnostics import LoginDiagnostics, get_diagnostics
from iotmonitor.schemas.auth import (
    AuthResponse,
    LoginRequest,
    LogoutResponse,
    MeResponse,
    RegisterRequest,
    UserRead,
    UserSummary,
)
from iotmonitor.services.auth_service import AuthService

router = APIRouter(prefix="/auth")


def _svc(db: AsyncSession = Depends(get_db)) -> AuthService:
    return AuthService(db)


def _client_ip(request: Request) -> Optional[str]:
    return request.client.host if request.client else None


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    body: RegisterRequest,
    request: Request,
    svc: AuthService = Depends(_svc),
):
    """Create a new user account and return a session token."""
    token, user = await svc.register(
        username=body.username,
        email=body.email,
        password=body.password,
        full_name=body.full_name,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return AuthResponse(token=token, user=UserSummary.model_validate(user))


@router.post("/login", response_model=AuthResponse)
async def login(
    body: LoginRequest,
    request: Request,
    svc: AuthService = Depends(_svc),
    diagnostics: Optional[LoginDiagnostics] = Depends(get_diagnostics),
):
    """Login with username or email → token backed by a new session."""
    if diagnostics is not None:
        diagnostics.record(
            request,
            username=body.username,
            email=body.email,
            password_present=bool(body.password),
        )

    token, user = await svc.login(
        username=body.username,
        email=body.email,
        password=body.password,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    return AuthResponse(token=token, user=UserSummary.model_validate(user))


@router.post("/logout", response_model=LogoutResponse)
async def logout(
    identity: CurrentIdentity = Depends(get_current_identity),
    svc: AuthService = Depends(_svc),
):
    """Invalidate the current session. The token is dead from here on."""
    await svc.logout(identity.token)
    return LogoutResponse()


@router.get("/me", response_model=MeResponse)
async def get_me(
    identity: CurrentIdentity = Depends(get_current_identity),
    svc: AuthService = Depends(_svc),
):
    """Get the current authenticated user's info."""
    user = await svc.get_user(identity.user_id)
    return MeResponse(user=UserRead.model_validate(user))
