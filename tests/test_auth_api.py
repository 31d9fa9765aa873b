"""Auth API tests — register, login, logout, /me.

Learn: Tests cover:
1. Registration + duplicate prevention
2. Login by username or by email → token backed by a session row
3. Protected /me endpoint
4. Logout kills the token even though its signature is still valid
5. Every rejection returns the same {"error", "kind"} body shape
"""

import uuid

import pytest
from sqlalchemy import false, func, select
from sqlalchemy.exc import OperationalError

from iotmonitor.auth.jwt import verify_token
from iotmonitor.db.models import User, UserSession
from iotmonitor.services import auth_service
from iotmonitor.services.auth_service import AuthService

from conftest import PASSWORD


def _bearer(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


# ═══════════════════════════════════════════════════════════
# Registration
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_register_user(client, db_session):
    """Register returns a token and the new user's summary."""
    name = f"reg-{uuid.uuid4().hex[:8]}"
    r = await client.post(
        "/api/v1/auth/register",
        json={
            "username": name,
            "email": f"{name}@example.com",
            "password": PASSWORD,
            "full_name": "Reg User",
        },
    )
    assert r.status_code == 201
    data = r.json()
    assert data["success"] is True
    assert data["token"]
    assert data["user"]["username"] == name
    assert data["user"]["email"] == f"{name}@example.com"
    assert data["user"]["full_name"] == "Reg User"
    assert data["user"]["role"] == "user"
    assert "password" not in data["user"]
    assert "password_hash" not in data["user"]

    # The token's subject is the new user's id, and a session row backs it
    claims = verify_token(data["token"])
    assert claims.user_id == data["user"]["id"]
    result = await db_session.execute(
        select(UserSession).where(UserSession.token == data["token"])
    )
    session = result.scalars().one()
    assert session.is_active is True
    assert str(session.user_id) == data["user"]["id"]


@pytest.mark.asyncio
async def test_register_stores_hash_not_password(client, register_user, db_session):
    body = await register_user()
    user = await db_session.get(User, uuid.UUID(body["user"]["id"]))
    assert user.password_hash != PASSWORD
    assert user.password_hash.startswith("$2")


@pytest.mark.asyncio
async def test_register_normalizes_email(register_user):
    body = await register_user("casey", email="  Casey@Example.COM ")
    assert body["user"]["email"] == "casey@example.com"


@pytest.mark.asyncio
@pytest.mark.parametrize("missing", ["username", "email", "password"])
async def test_register_missing_field(client, missing):
    """Each of username/email/password is required."""
    body = {"username": "bob", "email": "bob@example.com", "password": PASSWORD}
    body.pop(missing)
    r = await client.post("/api/v1/auth/register", json=body)
    assert r.status_code == 400
    assert r.json() == {
        "error": "username, email and password are required",
        "kind": "validation",
    }


@pytest.mark.asyncio
async def test_register_duplicate_username(client, register_user):
    """Can't register with a username that's taken."""
    await register_user("dupe")
    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "dupe", "email": "other@example.com", "password": PASSWORD},
    )
    assert r.status_code == 409
    assert r.json()["kind"] == "conflict"


@pytest.mark.asyncio
async def test_register_duplicate_email(client, register_user):
    """Can't register with an email that's taken, whatever its case."""
    await register_user("first", email="shared@example.com")
    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "second", "email": "SHARED@example.com", "password": PASSWORD},
    )
    assert r.status_code == 409
    assert r.json()["error"] == "Username or email already registered"


@pytest.mark.asyncio
async def test_register_malformed_body(client):
    """A body FastAPI can't parse is still a 400 in the shared error shape."""
    r = await client.post(
        "/api/v1/auth/register",
        content=b"not json",
        headers={"Content-Type": "application/json"},
    )
    assert r.status_code == 400
    assert r.json()["kind"] == "validation"


# ═══════════════════════════════════════════════════════════
# Login
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_login_by_username(client, register_user):
    await register_user("dana")
    r = await client.post(
        "/api/v1/auth/login", json={"username": "dana", "password": PASSWORD}
    )
    assert r.status_code == 200
    data = r.json()
    assert data["success"] is True
    assert data["token_type"] == "bearer"
    assert data["user"]["username"] == "dana"


@pytest.mark.asyncio
async def test_login_by_email(client, register_user):
    await register_user("erin")
    r = await client.post(
        "/api/v1/auth/login",
        json={"email": "Erin@example.com", "password": PASSWORD},
    )
    assert r.status_code == 200
    assert r.json()["user"]["username"] == "erin"


@pytest.mark.asyncio
async def test_login_email_takes_precedence(client, register_user):
    """With both supplied, lookup is by email — the username is ignored."""
    await register_user("fay")
    r = await client.post(
        "/api/v1/auth/login",
        json={"username": "nobody", "email": "fay@example.com", "password": PASSWORD},
    )
    assert r.status_code == 200
    assert r.json()["user"]["username"] == "fay"


@pytest.mark.asyncio
async def test_login_wrong_password_and_unknown_user_look_alike(client, register_user):
    """Wrong password and unknown user return the same 401 body."""
    await register_user("gus")

    wrong = await client.post(
        "/api/v1/auth/login", json={"username": "gus", "password": "nope"}
    )
    unknown = await client.post(
        "/api/v1/auth/login", json={"username": "ghost", "password": "nope"}
    )

    assert wrong.status_code == unknown.status_code == 401
    assert wrong.json() == unknown.json() == {
        "error": "Invalid credentials",
        "kind": "unauthenticated",
    }
    assert wrong.headers["WWW-Authenticate"] == "Bearer"


@pytest.mark.asyncio
async def test_login_inactive_user_rejected(client, register_user, db_session):
    body = await register_user("hal")
    user = await db_session.get(User, uuid.UUID(body["user"]["id"]))
    user.is_active = False
    await db_session.commit()

    r = await client.post(
        "/api/v1/auth/login", json={"username": "hal", "password": PASSWORD}
    )
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid credentials"


@pytest.mark.asyncio
async def test_login_missing_fields(client):
    r = await client.post("/api/v1/auth/login", json={"username": "x"})
    assert r.status_code == 400
    assert r.json()["error"] == "username/email and password are required"

    r = await client.post("/api/v1/auth/login", json={"password": PASSWORD})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_login_updates_last_access(client, register_user, db_session):
    body = await register_user("ivy")
    user = await db_session.get(User, uuid.UUID(body["user"]["id"]))
    assert user.last_access_at is None

    await client.post("/api/v1/auth/login", json={"username": "ivy", "password": PASSWORD})
    await db_session.refresh(user)
    assert user.last_access_at is not None


@pytest.mark.asyncio
async def test_login_store_failure_is_500(client, monkeypatch):
    """A database error surfaces as a generic 500, never the raw exception."""

    async def broken_login(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is down"))

    monkeypatch.setattr(AuthService, "login", broken_login)
    r = await client.post(
        "/api/v1/auth/login", json={"username": "x", "password": "y"}
    )
    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error", "kind": "store"}
    assert "database is down" not in r.text


@pytest.mark.asyncio
async def test_unexpected_error_is_json_500(lenient_client, monkeypatch):
    """A bug outside the store still answers in the shared error shape."""

    async def broken_login(self, *args, **kwargs):
        raise RuntimeError("unexpected failure detail")

    monkeypatch.setattr(AuthService, "login", broken_login)
    r = await lenient_client.post(
        "/api/v1/auth/login", json={"username": "x", "password": "y"}
    )
    assert r.status_code == 500
    assert r.headers["content-type"].startswith("application/json")
    assert r.json() == {"error": "Internal server error", "kind": "store"}
    assert "unexpected failure detail" not in r.text


@pytest.mark.asyncio
async def test_register_undone_when_session_write_fails(
    client, register_user, db_session, monkeypatch
):
    """No session row, no user: a failed session insert rolls back the sign-up."""
    taken = (await register_user("first"))["token"]
    # Every new token collides with the one already stored
    monkeypatch.setattr(auth_service, "create_access_token", lambda **claims: taken)

    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "second", "email": "second@example.com", "password": PASSWORD},
    )
    assert r.status_code == 500
    assert r.json() == {"error": "Internal server error", "kind": "store"}

    usernames = (await db_session.execute(select(User.username))).scalars().all()
    assert usernames == ["first"]
    sessions = await db_session.execute(select(func.count(UserSession.id)))
    assert sessions.scalar_one() == 1


@pytest.mark.asyncio
async def test_login_undone_when_session_write_fails(
    client, register_user, db_session, monkeypatch
):
    """A failed session insert leaves no trace of the login either."""
    body = await register_user("solo")
    monkeypatch.setattr(
        auth_service, "create_access_token", lambda **claims: body["token"]
    )

    r = await client.post(
        "/api/v1/auth/login", json={"username": "solo", "password": PASSWORD}
    )
    assert r.status_code == 500
    assert r.json()["kind"] == "store"

    last_access = await db_session.execute(
        select(User.last_access_at).where(User.username == "solo")
    )
    assert last_access.scalar_one() is None


@pytest.mark.asyncio
async def test_register_race_lost_at_insert_is_409(
    client, register_user, db_session, monkeypatch
):
    """A sign-up that slips past the lookup still hits the unique constraint."""
    await register_user("racer", email="racer@example.com")
    # The lookup sees nothing, as if the competing insert hadn't committed yet
    monkeypatch.setattr(auth_service, "or_", lambda *clauses: false())

    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "racer", "email": "other@example.com", "password": PASSWORD},
    )
    assert r.status_code == 409
    assert r.json() == {
        "error": "Username or email already registered",
        "kind": "conflict",
    }

    count = await db_session.execute(
        select(func.count(User.id)).where(User.username == "racer")
    )
    assert count.scalar_one() == 1


# ═══════════════════════════════════════════════════════════
# /me and protected access
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_get_me(client, register_user):
    body = await register_user("jan", full_name="Jan J")
    r = await client.get("/api/v1/auth/me", headers=_bearer(body["token"]))
    assert r.status_code == 200
    user = r.json()["user"]
    assert user["username"] == "jan"
    assert user["full_name"] == "Jan J"
    assert user["is_active"] is True
    assert "password_hash" not in user


@pytest.mark.asyncio
async def test_me_accepts_bare_token(client, register_user):
    """Older clients send the token without the Bearer prefix."""
    body = await register_user()
    r = await client.get("/api/v1/auth/me", headers={"Authorization": body["token"]})
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_me_without_token(client):
    r = await client.get("/api/v1/auth/me")
    assert r.status_code == 401
    assert r.json() == {"error": "Token not provided", "kind": "unauthenticated"}


@pytest.mark.asyncio
async def test_me_with_garbage_token(client):
    r = await client.get("/api/v1/auth/me", headers=_bearer("not-a-jwt"))
    assert r.status_code == 401
    assert r.json()["error"] == "Invalid or expired token"


@pytest.mark.asyncio
async def test_devices_require_auth(client):
    """Whole routers mounted behind auth reject anonymous calls."""
    r = await client.get("/api/v1/devices")
    assert r.status_code == 401
    assert r.json()["error"] == "Token not provided"


# ═══════════════════════════════════════════════════════════
# Logout
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_logout_invalidates_token(client, register_user):
    body = await register_user()
    headers = _bearer(body["token"])

    r = await client.post("/api/v1/auth/logout", headers=headers)
    assert r.status_code == 200
    assert r.json() == {"success": True, "message": "Session closed"}

    r = await client.get("/api/v1/auth/me", headers=headers)
    assert r.status_code == 401
    assert r.json()["error"] == "Session invalidated"

    # Logging out twice — the token no longer authenticates at all
    r = await client.post("/api/v1/auth/logout", headers=headers)
    assert r.status_code == 401
    assert r.json()["error"] == "Session invalidated"


@pytest.mark.asyncio
async def test_logout_requires_token(client):
    r = await client.post("/api/v1/auth/logout")
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_logout_only_closes_that_session(client, register_user):
    """Two logins are two sessions; closing one leaves the other alive."""
    await register_user("kim")
    creds = {"username": "kim", "password": PASSWORD}
    t1 = (await client.post("/api/v1/auth/login", json=creds)).json()["token"]
    t2 = (await client.post("/api/v1/auth/login", json=creds)).json()["token"]
    assert t1 != t2

    await client.post("/api/v1/auth/logout", headers=_bearer(t1))

    assert (await client.get("/api/v1/auth/me", headers=_bearer(t1))).status_code == 401
    assert (await client.get("/api/v1/auth/me", headers=_bearer(t2))).status_code == 200


# ═══════════════════════════════════════════════════════════
# Full lifecycle
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_session_lifecycle(client, db_session):
    """Register → use → logout → rejected → login again with a new token."""
    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "alice", "email": "a@x.io", "password": "pw"},
    )
    assert r.status_code == 201
    t1 = r.json()["token"]
    alice_id = r.json()["user"]["id"]

    r = await client.get("/api/v1/devices", headers=_bearer(t1))
    assert r.status_code == 200
    assert r.json() == []

    r = await client.post("/api/v1/auth/logout", headers=_bearer(t1))
    assert r.status_code == 200

    r = await client.get("/api/v1/devices", headers=_bearer(t1))
    assert r.status_code == 401
    assert r.json()["error"] == "Session invalidated"

    r = await client.post(
        "/api/v1/auth/login", json={"email": "a@x.io", "password": "pw"}
    )
    assert r.status_code == 200
    t2 = r.json()["token"]
    assert t2 != t1
    assert verify_token(t2).user_id == alice_id

    r = await client.get("/api/v1/devices", headers=_bearer(t2))
    assert r.status_code == 200

    # One session row per token; only the newest is still active
    result = await db_session.execute(
        select(UserSession).where(UserSession.user_id == uuid.UUID(alice_id))
    )
    sessions = {s.token: s.is_active for s in result.scalars().all()}
    assert sessions == {t1: False, t2: True}


@pytest.mark.asyncio
async def test_alice_scenario(client):
    """register → login (new token) → /me → logout → /me rejected."""
    r = await client.post(
        "/api/v1/auth/register",
        json={"username": "alice", "email": "a@x.io", "password": "pw"},
    )
    assert r.status_code == 201
    t1 = r.json()["token"]

    r = await client.post(
        "/api/v1/auth/login", json={"username": "alice", "password": "pw"}
    )
    assert r.status_code == 200
    t2 = r.json()["token"]
    assert t2 != t1

    r = await client.get("/api/v1/auth/me", headers=_bearer(t2))
    assert r.status_code == 200
    assert r.json()["user"]["username"] == "alice"

    r = await client.post("/api/v1/auth/logout", headers=_bearer(t2))
    assert r.status_code == 200
    assert r.json()["success"] is True

    r = await client.get("/api/v1/auth/me", headers=_bearer(t2))
    assert r.status_code == 401

    # The registration session was never closed
    assert (await client.get("/api/v1/auth/me", headers=_bearer(t1))).status_code == 200
