"""Test fixtures — a fresh in-memory database per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Each test gets its own in-memory SQLite engine (aiosqlite). StaticPool
   keeps the single connection alive so every session sees the same DB.
2. Tables are created from the ORM metadata — no migrations needed.
3. get_db is overridden so the app and the test share one AsyncSession;
   tests can seed or inspect rows directly through `db_session`.

Environment is set before anything from iotmonitor is imported, since
settings (and the engine) are built at import time.
"""

import os

os.environ["IOTMONITOR_DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["IOTMONITOR_BCRYPT_ROUNDS"] = "4"
os.environ["IOTMONITOR_ENVIRONMENT"] = "development"
os.environ["IOTMONITOR_INGEST_API_KEY"] = ""

import uuid  # noqa: E402

import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from iotmonitor.config import Settings  # noqa: E402
from iotmonitor.db.engine import create_tables, get_db  # noqa: E402
from iotmonitor.main import app, create_app  # noqa: E402

PASSWORD = "Secret123!"


@pytest_asyncio.fixture()
async def db_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture()
async def db_session(db_engine):
    """Session shared by the test body and every request it makes."""
    session = AsyncSession(bind=db_engine, expire_on_commit=False)
    try:
        yield session
    finally:
        await session.close()


def _client_for(target_app, db_session, **transport_kwargs):
    async def override_get_db():
        yield db_session

    target_app.dependency_overrides[get_db] = override_get_db
    transport = ASGITransport(app=target_app, **transport_kwargs)
    return AsyncClient(transport=transport, base_url="http://test")


@pytest_asyncio.fixture()
async def client(db_session):
    """HTTP client against the real app, real auth pipeline, test database."""
    async with _client_for(app, db_session) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def register_user(client):
    """Factory: register a user through the API and return the response body.

    Learn: Returning a coroutine function lets one test register several
    users (owner vs. stranger) without a fixture per user.
    """

    async def _register(username: str | None = None, password: str = PASSWORD, **extra):
        username = username or f"user-{uuid.uuid4().hex[:8]}"
        r = await client.post(
            "/api/v1/auth/register",
            json={
                "username": username,
                "email": extra.pop("email", f"{username}@example.com"),
                "password": password,
                **extra,
            },
        )
        assert r.status_code == 201, r.text
        return r.json()

    return _register


@pytest_asyncio.fixture()
async def auth_headers(register_user):
    """Authorization header for a freshly registered user."""
    body = await register_user()
    return {"Authorization": f"Bearer {body['token']}"}


@pytest_asyncio.fixture()
async def debug_client(db_session):
    """Client for an app built with the /auth/_debug routes switched on."""
    debug_app = create_app(Settings(debug_endpoints=True))
    async with _client_for(debug_app, db_session) as ac:
        yield ac
    debug_app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def lenient_client(db_session):
    """Like `client`, but server errors come back as responses, not raised.

    Learn: Starlette's catch-all handler sends the 500 and then re-raises
    for the server to log; ASGITransport would otherwise surface that.
    """
    async with _client_for(app, db_session, raise_app_exceptions=False) as ac:
        yield ac
    app.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def keyed_client(db_session):
    """Client for an app configured with an ingest key of its own."""
    keyed_app = create_app(Settings(ingest_api_key="board-secret"))
    async with _client_for(keyed_app, db_session) as ac:
        yield ac
    keyed_app.dependency_overrides.clear()
