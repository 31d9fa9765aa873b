"""Pydantic schemas for registration, login, and the current user.

Learn: Request fields are Optional on purpose — AuthService does the
"required" checks so the API and the CLI report missing fields the
same way (400 ValidationError instead of FastAPI's 422 shape).
"""

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class RegisterRequest(BaseModel):
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None
    full_name: Optional[str] = None


class LoginRequest(BaseModel):
    """Either username or email; email wins when both are present."""
    username: Optional[str] = None
    email: Optional[str] = None
    password: Optional[str] = None


class CheckPasswordRequest(LoginRequest):
    pass


class UserSummary(BaseModel):
    """User as returned to clients — never includes the password hash."""
    id: uuid.UUID
    username: str
    email: str
    full_name: Optional[str] = None
    role: str

    model_config = {"from_attributes": True}


class UserRead(UserSummary):
    is_active: bool
    created_at: datetime
    last_access_at: Optional[datetime] = None


class AuthResponse(BaseModel):
    success: bool = True
    token: str
    token_type: str = "bearer"
    user: UserSummary


class MeResponse(BaseModel):
    user: UserRead


class LogoutResponse(BaseModel):
    success: bool = True
    message: str = "Session closed"
