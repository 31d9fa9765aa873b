"""Development-only auth debugging routes.

Only mounted by create_app() when debug endpoints are enabled (and the
environment isn't production). They expose nothing secret: the last
login attempt is sanitized, and check_password answers yes/no.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from iotmonitor.db.engine import get_db
from iotmonitor.diagnostics import LoginDiagnostics, get_diagnostics
from iotmonitor.schemas.auth import CheckPasswordRequest, UserSummary
from iotmonitor.services.auth_service import AuthService

router = APIRouter(prefix="/auth/_debug")


@router.get("/last_login")
async def last_login(
    diagnostics: Optional[LoginDiagnostics] = Depends(get_diagnostics),
):
    attempt = diagnostics.last if diagnostics else None
    return {"last_login_attempt": attempt.to_dict() if attempt else None}


@router.post("/check_password")
async def check_password(
    body: CheckPasswordRequest,
    db: AsyncSession = Depends(get_db),
):
    """Does this password match the stored hash? Same lookup rules as login."""
    match, user = await AuthService(db).check_password(
        username=body.username, email=body.email, password=body.password
    )
    return {"match": match, "user": UserSummary.model_validate(user)}
