"""Request ID + access log middleware.

Learn: Every request gets an ID, either from the incoming X-Request-ID
header (set by a proxy) or auto-generated. It's bound to structlog's
contextvars so every log entry written while handling the request
carries it, and returned in the response header so a client-side
error report can be matched to server logs.

One "http.request" line per request records method, path, status and
duration. Query strings are left out — they can carry filters but never
credentials, and tokens travel in headers only.
"""

import time
import uuid

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response

logger = structlog.get_logger()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Generate and propagate a unique request ID, log each request."""

    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(request_id=request_id)

        started = time.perf_counter()
        response: Response = await call_next(request)
        response.headers["X-Request-ID"] = request_id

        logger.info(
            "http.request",
            method=request.method,
            path=request.url.path,
            status=response.status_code,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return response
