"""iotmonitor CLI — operator tasks and quick looks at live data.

Usage:
    iotmonitor init-db                          # Create tables from the ORM models
    iotmonitor show-user admin@iot-monitor.com  # Inspect a user record
    iotmonitor set-password admin@iot-monitor.com
    iotmonitor set-role alice@example.com admin
    iotmonitor health                            # Ping the running API
    iotmonitor login --username alice            # Print a session token
    iotmonitor readings --limit 20               # Recent readings (needs IOTMONITOR_TOKEN)
    iotmonitor stats --hours 6                   # Aggregates over the last N hours

Database commands talk to IOTMONITOR_DATABASE_URL directly; the rest go
through the HTTP API at IOTMONITOR_API_URL.
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

from iotmonitor import __version__

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:8000"


def _api_url() -> str:
    return os.environ.get("IOTMONITOR_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(token: Optional[str] = None) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the backend."""
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.AsyncClient(base_url=_api_url(), timeout=30.0, headers=headers)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _token_from_ctx(token: Optional[str]) -> str:
    """Resolve the session token from flag or IOTMONITOR_TOKEN env var."""
    tok = token or os.environ.get("IOTMONITOR_TOKEN")
    if not tok:
        click.secho(
            "Error: --token required (or set IOTMONITOR_TOKEN; get one with `iotmonitor login`)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return tok


def _pretty_json(data: dict | list) -> str:
    return json.dumps(data, indent=2, default=str)


def _print_table(rows: list[dict], columns: list[tuple[str, str, int]]):
    """Print a simple ASCII table.

    columns: list of (header, dict_key, width)
    """
    header = "  ".join(h.ljust(w) for h, _, w in columns)
    click.secho(header, bold=True)
    click.echo("-" * len(header))
    for row in rows:
        line = "  ".join(str(row.get(k, "—"))[:w].ljust(w) for _, k, w in columns)
        click.echo(line)


def _fail_on_error(r: httpx.Response) -> None:
    """Print the API's {"error": ...} body and exit on non-2xx."""
    if r.is_success:
        return
    try:
        message = r.json().get("error", r.text)
    except ValueError:
        message = r.text
    click.secho(f"Error ({r.status_code}): {message}", fg="red", err=True)
    sys.exit(1)


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="iotmonitor")
def main():
    """IoT Monitor — manage users and inspect sensor data."""


# ---------------------------------------------------------------------------
# Database commands
# ---------------------------------------------------------------------------


@main.command("init-db")
def init_db():
    """Create all tables (idempotent; existing tables are left alone)."""
    _run(_init_db_impl())
    click.secho("Tables ready.", fg="green")


async def _init_db_impl():
    from iotmonitor.db.engine import create_tables, engine

    try:
        await create_tables()
    finally:
        await engine.dispose()


@main.command("show-user")
@click.argument("email")
def show_user(email: str):
    """Show a user's record (never the password hash)."""
    user = _run(_with_auth_service(lambda svc: svc.get_user_by_email(email)))
    click.echo(_pretty_json({
        "id": str(user.id),
        "username": user.username,
        "email": user.email,
        "full_name": user.full_name,
        "role": user.role,
        "is_active": user.is_active,
        "created_at": user.created_at,
        "last_access_at": user.last_access_at,
    }))


@main.command("set-password")
@click.argument("email")
@click.password_option("--password", "-p", help="New password (prompted if omitted)")
def set_password(email: str, password: str):
    """Reset the password for the user with EMAIL."""
    user = _run(_with_auth_service(lambda svc: svc.set_password(email, password)))
    click.secho(f"Password updated for {user.email}.", fg="green")


@main.command("set-role")
@click.argument("email")
@click.argument("role", type=click.Choice(["admin", "user"]))
def set_role(email: str, role: str):
    """Change the role of the user with EMAIL."""
    user = _run(_with_auth_service(lambda svc: svc.set_role(email, role)))
    click.secho(f"{user.email} is now '{user.role}'.", fg="green")


async def _with_auth_service(action):
    from iotmonitor.db.engine import async_session_factory, engine
    from iotmonitor.errors import AppError
    from iotmonitor.services.auth_service import AuthService

    try:
        async with async_session_factory() as session:
            return await action(AuthService(session))
    except AppError as e:
        click.secho(f"Error: {e.message}", fg="red", err=True)
        sys.exit(1)
    finally:
        await engine.dispose()


# ---------------------------------------------------------------------------
# API commands
# ---------------------------------------------------------------------------


@main.command()
def health():
    """Check the running API and its database."""
    _run(_health_impl())


async def _health_impl():
    try:
        async with _client() as c:
            r = await c.get("/api/v1/health")
    except httpx.ConnectError:
        click.secho(f"Backend not reachable at {_api_url()}", fg="red", err=True)
        sys.exit(1)
    _fail_on_error(r)
    data = r.json()
    color = "green" if data.get("status") == "healthy" else "yellow"
    click.secho(f"Status:   {data.get('status')}", fg=color, bold=True)
    click.echo(f"Version:  {data.get('version')}")
    click.echo(f"Database: {data.get('database')}")
    click.echo(f"Redis:    {data.get('redis')}")


@main.command()
@click.option("--username", "-u", help="Login by username")
@click.option("--email", "-e", help="Login by email (takes precedence)")
@click.option("--password", "-p", prompt=True, hide_input=True)
def login(username: Optional[str], email: Optional[str], password: str):
    """Log in and print a session token (export it as IOTMONITOR_TOKEN)."""
    if not username and not email:
        raise click.UsageError("--username or --email is required")
    _run(_login_impl(username, email, password))


async def _login_impl(username: Optional[str], email: Optional[str], password: str):
    body = {"password": password}
    if email:
        body["email"] = email
    else:
        body["username"] = username
    async with _client() as c:
        r = await c.post("/api/v1/auth/login", json=body)
    _fail_on_error(r)
    click.echo(r.json()["token"])


@main.command()
@click.option("--limit", "-l", default=20, help="Max results")
@click.option("--token", "-t", help="Session token (or set IOTMONITOR_TOKEN)")
def readings(limit: int, token: Optional[str]):
    """List the most recent readings."""
    _run(_readings_impl(limit, _token_from_ctx(token)))


async def _readings_impl(limit: int, token: str):
    async with _client(token) as c:
        r = await c.get("/api/v1/readings/recent", params={"limit": limit})
    _fail_on_error(r)
    rows = r.json()
    if not rows:
        click.echo("No readings yet.")
        return
    _print_table(rows, [
        ("ID", "id", 8),
        ("DEVICE", "device", 16),
        ("TEMP °C", "temperature", 8),
        ("HUM %", "humidity", 8),
        ("RECORDED", "recorded_at", 26),
    ])


@main.command()
@click.option("--hours", "-h", "hours", default=24, help="Lookback window in hours")
@click.option("--token", "-t", help="Session token (or set IOTMONITOR_TOKEN)")
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def stats(hours: int, token: Optional[str], as_json: bool):
    """Temperature/humidity aggregates over the last N hours."""
    _run(_stats_impl(hours, _token_from_ctx(token), as_json))


async def _stats_impl(hours: int, token: str, as_json: bool):
    async with _client(token) as c:
        r = await c.get("/api/v1/readings/stats", params={"hours": hours})
    _fail_on_error(r)
    data = r.json()
    if as_json:
        click.echo(_pretty_json(data))
        return
    click.secho(f"Last {data['hours']}h — {data['total_readings']} readings", bold=True)
    click.echo(
        f"  Temperature  avg {data['temperature_avg']}  "
        f"min {data['temperature_min']}  max {data['temperature_max']}"
    )
    click.echo(
        f"  Humidity     avg {data['humidity_avg']}  "
        f"min {data['humidity_min']}  max {data['humidity_max']}"
    )


if __name__ == "__main__":
    main()
