"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running and the
database answers. Redis is reported but optional — without it only
rate limiting is off, so it doesn't make the service "degraded".
"""

from fastapi import APIRouter
from sqlalchemy import text

from iotmonitor import __version__
from iotmonitor.db.engine import engine

router = APIRouter()


@router.get("/health")
async def health_check():
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    try:
        from iotmonitor.db.redis_client import get_redis

        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"unavailable: {e}"

    status = "healthy" if checks["database"] == "ok" else "degraded"
    return {"status": status, **checks}
