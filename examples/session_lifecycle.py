#!/usr/bin/env python3
"""
IoT Monitor Session Lifecycle Example.

Shows that a token is only as good as the session row behind it:

  1. Register → token T1 works
  2. Logout   → T1 is rejected ("Session invalidated") although its
                signature and expiry are still valid
  3. Login    → a new, different token T2 works

Run with: python examples/session_lifecycle.py

Requires: pip install httpx
Backend must be running: http://localhost:8000
"""

from _common import authed_client, check_backend, login, register


def _show(label: str, resp) -> None:
    body = resp.json()
    detail = body.get("error") or body.get("user", {}).get("username", "")
    print(f"   {label:<28} {resp.status_code}  {detail}")


def main():
    check_backend()

    print("\n1. Register")
    user = register()
    t1 = authed_client(user["token"])
    _show("GET /auth/me with T1", t1.get("/auth/me"))

    print("\n2. Logout")
    _show("POST /auth/logout with T1", t1.post("/auth/logout"))
    _show("GET /auth/me with T1", t1.get("/auth/me"))

    print("\n3. Login again")
    token = login(user["email"], user["password"])
    assert token != user["token"]
    t2 = authed_client(token)
    _show("GET /auth/me with T2", t2.get("/auth/me"))
    _show("GET /auth/me with T1", t1.get("/auth/me"))

    print("\n✓ Old token stays dead; the new session is independent.")


if __name__ == "__main__":
    main()
