"""Rate limiting middleware — Redis-based fixed window per minute.

Learn: Each client IP gets a counter key like
"iotmonitor:rl:{ip}:{bucket}:{minute}". Login and register get a much
stricter bucket than the rest of the API — that's the brute-force
surface. Sensor ingestion gets its own bucket so a chatty board can't
starve a user's dashboard polling.

Gracefully skips rate limiting if Redis is unavailable (e.g., in tests
or on a single dev box).
"""

import time

import structlog
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response

from iotmonitor.errors import ErrorKind

logger = structlog.get_logger()

AUTH_PATHS = ("/api/v1/auth/login", "/api/v1/auth/register")
INGEST_PATH = "/api/v1/readings"


class RateLimitMiddleware(BaseHTTPMiddleware):
    """Redis-based rate limiting per IP per minute."""

    def __init__(self, app, default_rpm: int = 100, auth_rpm: int = 10):
        super().__init__(app)
        self.default_rpm = default_rpm
        self.auth_rpm = auth_rpm

    def _bucket(self, request: Request) -> tuple[str, int]:
        path = request.url.path
        if path.startswith(AUTH_PATHS):
            return "auth", self.auth_rpm
        if request.method == "POST" and path.rstrip("/") == INGEST_PATH:
            return "ingest", self.default_rpm
        return "api", self.default_rpm

    async def dispatch(self, request: Request, call_next) -> Response:
        # Try to get Redis — skip rate limiting if unavailable
        try:
            from iotmonitor.db.redis_client import get_redis

            redis = get_redis()
        except RuntimeError:
            return await call_next(request)

        client_ip = request.client.host if request.client else "unknown"
        bucket, rpm = self._bucket(request)
        window = int(time.time() // 60)
        key = f"iotmonitor:rl:{client_ip}:{bucket}:{window}"

        try:
            count = await redis.incr(key)
            if count == 1:
                await redis.expire(key, 120)  # 2-min TTL for safety
        except Exception as e:
            # Redis error — don't block the request
            logger.warning("rate_limit.redis_error", error=str(e))
            return await call_next(request)

        if count > rpm:
            logger.warning("rate_limit.exceeded", ip=client_ip, bucket=bucket)
            return JSONResponse(
                status_code=429,
                content={
                    "error": "Rate limit exceeded. Try again later.",
                    "kind": ErrorKind.RATE_LIMITED.value,
                },
                headers={"Retry-After": "60"},
            )

        response = await call_next(request)
        response.headers["X-RateLimit-Limit"] = str(rpm)
        response.headers["X-RateLimit-Remaining"] = str(max(0, rpm - count))
        return response
