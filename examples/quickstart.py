#!/usr/bin/env python3
"""
IoT Monitor Quickstart — a board's day in one script.

Registers a user → registers a device → posts readings the way the
ESP32 firmware does → reads them back as the dashboard would.
Run with: python examples/quickstart.py

Requires: pip install httpx
Backend must be running: http://localhost:8000
"""

import random

import httpx

from _common import BASE, authed_client, check_backend, register


def main():
    check_backend()

    # ── Register ──────────────────────────────────────────────────
    print("\n1. Registering user...")
    user = register()
    client = authed_client(user["token"])
    print(f"   User: {user['username']}")

    # ── Register device ───────────────────────────────────────────
    print("\n2. Registering device...")
    resp = client.post("/devices", json={
        "name": "Greenhouse sensor",
        "type": "ESP32",
        "location": "Greenhouse, north wall",
        "config": {"interval_s": 5, "sensor": "DHT22"},
    })
    assert resp.status_code == 201, f"Failed: {resp.text}"
    device = resp.json()
    print(f"   Device: {device['name']} ({device['id'][:8]}...) status={device['status']}")

    # ── Ingest readings (no session — boards don't log in) ────────
    print("\n3. Posting readings as the board...")
    label = f"esp32-{device['id'][:6]}"
    for _ in range(5):
        resp = httpx.post(f"{BASE}/readings", json={
            "device": label,
            "temperature": round(random.uniform(18, 26), 1),
            "humidity": round(random.uniform(40, 60), 1),
        }, timeout=10)
        assert resp.status_code == 201, f"Failed: {resp.text}"
        print(f"   → reading #{resp.json()['id']}")

    resp = client.patch(f"/devices/{device['id']}/status", json={"status": "active"})
    assert resp.status_code == 200, f"Failed: {resp.text}"
    print(f"   Device marked {resp.json()['status']}")

    # ── Dashboard queries ─────────────────────────────────────────
    print("\n4. Dashboard view:")
    latest = client.get("/readings/latest", params={"device": label}).json()
    print(f"   Latest:  {latest['temperature']} °C, {latest['humidity']} %")

    stats = client.get("/readings/stats", params={"hours": 1}).json()
    print(f"   Last 1h: {stats['total_readings']} readings, "
          f"avg {stats['temperature_avg']} °C / {stats['humidity_avg']} %")

    # ── Done ──────────────────────────────────────────────────────
    client.post("/auth/logout")
    print("\n✓ Quickstart finished. Session closed.")


if __name__ == "__main__":
    main()
