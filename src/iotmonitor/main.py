"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance. Lifespan manages startup/shutdown (database, Redis).
Middleware, CORS, exception handlers, and routers all registered here.

Every error leaves the API in one shape:

    {"error": "<message>", "kind": "<validation|conflict|unauthenticated|...>"}

AppError subclasses carry their own status; FastAPI's request validation
becomes a 400; any SQLAlchemyError that escapes a service is logged with
its traceback and returned as a generic 500, as is anything else that
escapes a route.
"""

from contextlib import asynccontextmanager
from typing import Optional

import structlog
from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.exc import SQLAlchemyError
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.requests import Request
from starlette.responses import JSONResponse

from iotmonitor import __version__
from iotmonitor.api import API_PREFIX, api_router
from iotmonitor.config import Settings, settings
from iotmonitor.diagnostics import LoginDiagnostics
from iotmonitor.errors import AppError, ErrorKind, StoreError, ValidationError

logger = structlog.get_logger()

_STATUS_KINDS = {
    400: ErrorKind.VALIDATION,
    401: ErrorKind.UNAUTHENTICATED,
    403: ErrorKind.FORBIDDEN,
    404: ErrorKind.NOT_FOUND,
    409: ErrorKind.CONFLICT,
    429: ErrorKind.RATE_LIMITED,
}


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at shutdown.
    """
    config: Settings = app.state.settings
    logger.info(
        "iotmonitor.starting",
        version=__version__,
        environment=config.environment,
        port=config.port,
    )

    if config.create_tables_on_startup:
        from iotmonitor.db.engine import create_tables

        await create_tables()
        logger.info("iotmonitor.tables_ready")

    from iotmonitor.db.redis_client import close_redis, init_redis
    try:
        await init_redis(config.redis_url)
        logger.info("iotmonitor.redis_connected", url=config.redis_url)
    except Exception as e:
        # Redis is optional — only rate limiting depends on it
        logger.warning("iotmonitor.redis_unavailable", error=str(e))

    yield

    logger.info("iotmonitor.shutdown")
    await close_redis()

    from iotmonitor.db.engine import engine
    await engine.dispose()


def _error_response(exc: AppError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.message, "kind": exc.kind.value},
        headers=exc.headers(),
    )


def _describe_validation(exc: RequestValidationError) -> str:
    parts = []
    for err in exc.errors():
        loc = ".".join(str(p) for p in err.get("loc", ())[1:]) or "body"
        parts.append(f"{loc}: {err.get('msg', 'invalid')}")
    return "Invalid request — " + "; ".join(parts) if parts else "Invalid request"


def register_exception_handlers(app: FastAPI) -> None:
    @app.exception_handler(AppError)
    async def handle_app_error(_: Request, exc: AppError):
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def handle_request_validation(_: Request, exc: RequestValidationError):
        return _error_response(ValidationError(_describe_validation(exc)))

    @app.exception_handler(SQLAlchemyError)
    async def handle_store_error(request: Request, exc: SQLAlchemyError):
        logger.error("store.error", path=request.url.path, exc_info=exc)
        return _error_response(StoreError())

    @app.exception_handler(Exception)
    async def handle_unexpected(request: Request, exc: Exception):
        logger.error("unhandled.error", path=request.url.path, exc_info=exc)
        return _error_response(StoreError())

    @app.exception_handler(StarletteHTTPException)
    async def handle_http_error(_: Request, exc: StarletteHTTPException):
        kind = _STATUS_KINDS.get(
            exc.status_code,
            ErrorKind.STORE if exc.status_code >= 500 else ErrorKind.VALIDATION,
        )
        return JSONResponse(
            status_code=exc.status_code,
            content={"error": str(exc.detail), "kind": kind.value},
            headers=getattr(exc, "headers", None),
        )


def create_app(config: Optional[Settings] = None) -> FastAPI:
    """Build and return the FastAPI application.

    `config` drives the app wiring and request-time gates: CORS, rate
    limits, debug routes, the ingest key. Token signing, password hashing
    and query defaults read the process-wide `settings`, so a token minted
    by the CLI or any app instance verifies everywhere in the process.
    """
    config = config or settings
    app = FastAPI(
        title="IoT Monitor",
        description="Sensor monitoring backend — auth, devices, readings",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = config

    # Login diagnostics exist only when debug endpoints are switched on
    debug_enabled = config.debug_endpoints and config.environment != "production"
    app.state.diagnostics = LoginDiagnostics() if debug_enabled else None

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: RequestId → Security → RateLimit → CORS → handler

    from iotmonitor.middleware.rate_limit import RateLimitMiddleware
    from iotmonitor.middleware.request_id import RequestIdMiddleware
    from iotmonitor.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=config.rate_limit_rpm,
        auth_rpm=config.rate_limit_auth_rpm,
    )
    app.add_middleware(SecurityHeadersMiddleware, auth_prefix=f"{API_PREFIX}/auth")
    app.add_middleware(RequestIdMiddleware)

    register_exception_handlers(app)

    app.include_router(api_router)

    if debug_enabled:
        from iotmonitor.api.debug import router as debug_router

        app.include_router(debug_router, prefix=API_PREFIX, tags=["debug"])
        logger.warning("iotmonitor.debug_endpoints_enabled")

    return app


# Default app instance (used by uvicorn: iotmonitor.main:app)
app = create_app()
