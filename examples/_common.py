"""
Shared helpers for IoT Monitor examples.

Handles the health check and register-then-login so each example can
focus on its own flow.
"""

import sys
import uuid

import httpx

BASE = "http://localhost:8000/api/v1"


def check_backend() -> None:
    """Verify the backend is reachable and its database answers."""
    try:
        resp = httpx.get(f"{BASE}/health", timeout=5)
    except httpx.ConnectError:
        print(f"ERROR: Backend not reachable at {BASE}")
        print("Start it with:  uvicorn iotmonitor.main:app --reload --port 8000")
        sys.exit(1)

    if resp.status_code != 200:
        print(f"ERROR: Health check returned {resp.status_code}")
        sys.exit(1)

    health = resp.json()
    print("Backend health:")
    print(f"  Database: {'✓' if health['database'] == 'ok' else '✗'}")
    print(f"  Redis:    {'✓' if health['redis'] == 'ok' else '✗ (rate limiting off)'}")

    if health["database"] != "ok":
        print(f"\nERROR: Database check failed: {health['database']}")
        sys.exit(1)


def register(password: str = "demo-password-123") -> dict:
    """Register a fresh user. Unique per run so examples are repeatable.

    Returns {"username", "email", "password", "token"}.
    """
    run_id = uuid.uuid4().hex[:8]
    creds = {
        "username": f"demo-{run_id}",
        "email": f"demo-{run_id}@example.com",
        "password": password,
    }
    resp = httpx.post(f"{BASE}/auth/register", json=creds, timeout=10)
    if resp.status_code != 201:
        print(f"ERROR: Registration failed: {resp.status_code} {resp.text}")
        sys.exit(1)
    return {**creds, "token": resp.json()["token"]}


def login(email: str, password: str) -> str:
    """Open a new session and return its token."""
    resp = httpx.post(
        f"{BASE}/auth/login",
        json={"email": email, "password": password},
        timeout=10,
    )
    if resp.status_code != 200:
        print(f"ERROR: Login failed: {resp.status_code} {resp.text}")
        sys.exit(1)
    return resp.json()["token"]


def authed_client(token: str) -> httpx.Client:
    """httpx Client that sends the session token on every request."""
    return httpx.Client(
        base_url=BASE,
        timeout=10,
        headers={"Authorization": f"Bearer {token}"},
    )
