"""Login diagnostics — development-only record of the last login attempt.

Learn: Frontend/backend mismatches during login (wrong field name,
missing content-type, CORS origin) are painful to debug from the
browser alone. When IOTMONITOR_DEBUG_ENDPOINTS is on, create_app()
puts a LoginDiagnostics on app.state and /auth/_debug/last_login
reads it back. When it's off, there is no sink at all and the login
route receives None.

Only sanitized metadata is stored — never the password.
"""

from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Optional

from starlette.requests import Request


@dataclass(frozen=True)
class LoginAttempt:
    username: Optional[str]
    email: Optional[str]
    password_present: bool
    ip: Optional[str]
    origin: Optional[str]
    referer: Optional[str]
    content_type: Optional[str]
    timestamp: datetime

    def to_dict(self) -> dict:
        return asdict(self)


class LoginDiagnostics:
    """Holds the most recent login attempt for one application instance."""

    def __init__(self):
        self._last: Optional[LoginAttempt] = None

    def record(
        self,
        request: Request,
        username: Optional[str],
        email: Optional[str],
        password_present: bool,
    ) -> LoginAttempt:
        attempt = LoginAttempt(
            username=username,
            email=email,
            password_present=password_present,
            ip=request.client.host if request.client else None,
            origin=request.headers.get("origin"),
            referer=request.headers.get("referer"),
            content_type=request.headers.get("content-type"),
            timestamp=datetime.now(timezone.utc),
        )
        self._last = attempt
        return attempt

    @property
    def last(self) -> Optional[LoginAttempt]:
        return self._last


def get_diagnostics(request: Request) -> Optional[LoginDiagnostics]:
    """FastAPI dependency — the app's sink, or None when debugging is off."""
    return getattr(request.app.state, "diagnostics", None)
