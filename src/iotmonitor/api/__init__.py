"""API route aggregation.

All routers registered here get mounted in main.py.

Learn: Auth is applied at the include_router level using FastAPI's
dependencies parameter where a whole router is protected (devices).
Health and auth are open; auth/me and auth/logout declare the
identity dependency themselves. Readings mix open ingestion with
protected queries, so that router declares auth per route.
"""

from fastapi import APIRouter, Depends

from iotmonitor.api.auth import router as auth_router
from iotmonitor.api.devices import router as devices_router
from iotmonitor.api.health import router as health_router
from iotmonitor.api.readings import router as readings_router
from iotmonitor.auth.dependencies import get_current_identity

API_PREFIX = "/api/v1"

# All protected routers require authentication
_auth = [Depends(get_current_identity)]

api_router = APIRouter(prefix=API_PREFIX)

# Open routes — no auth required
api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])

# Protected routes — require a valid token backed by an active session
api_router.include_router(devices_router, tags=["devices"], dependencies=_auth)

# Mixed — ingestion open (or ingest-key), queries protected per route
api_router.include_router(readings_router, tags=["readings"])
