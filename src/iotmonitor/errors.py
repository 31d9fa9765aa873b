"""Application error taxonomy.

Learn: Services raise these instead of HTTPException so the same
business logic works from the API, the CLI, and tests. main.py
registers one exception handler that renders every AppError as

    {"error": "<human-readable message>", "kind": "<ErrorKind>"}

`kind` is the machine-readable part; clients should branch on it
rather than on the message text.
"""

from enum import Enum
from typing import Optional


class ErrorKind(str, Enum):
    VALIDATION = "validation"
    CONFLICT = "conflict"
    UNAUTHENTICATED = "unauthenticated"
    FORBIDDEN = "forbidden"
    NOT_FOUND = "not_found"
    RATE_LIMITED = "rate_limited"
    STORE = "store"


class AppError(Exception):
    """Base for errors that map to an HTTP response."""

    kind: ErrorKind = ErrorKind.STORE
    status_code: int = 500
    default_message: str = "Internal server error"

    def __init__(self, message: Optional[str] = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def headers(self) -> Optional[dict[str, str]]:
        return None


class ValidationError(AppError):
    """Missing or malformed input."""

    kind = ErrorKind.VALIDATION
    status_code = 400
    default_message = "Invalid request"


class ConflictError(AppError):
    """Unique value already taken (username, email, device identifier)."""

    kind = ErrorKind.CONFLICT
    status_code = 409
    default_message = "Resource already exists"


class AuthError(AppError):
    """Bad credentials or an invalid/expired/invalidated session.

    Credential failures always use the same message so a caller
    can't tell a wrong password from an unknown user.
    """

    kind = ErrorKind.UNAUTHENTICATED
    status_code = 401
    default_message = "Invalid credentials"

    def headers(self) -> Optional[dict[str, str]]:
        return {"WWW-Authenticate": "Bearer"}


class ForbiddenError(AppError):
    kind = ErrorKind.FORBIDDEN
    status_code = 403
    default_message = "Insufficient permissions"


class NotFoundError(AppError):
    kind = ErrorKind.NOT_FOUND
    status_code = 404
    default_message = "Not found"


class StoreError(AppError):
    """Underlying storage failure. Details are logged, never returned."""

    kind = ErrorKind.STORE
    status_code = 500
    default_message = "Internal server error"
