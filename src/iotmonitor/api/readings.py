"""Sensor reading API routes.

Learn: Two audiences share this router:
- Boards POST /readings (no session; optional shared ingest key)
- The dashboard polls the GET endpoints (session required)
so auth is declared per route instead of at include_router level.
"""

from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from iotmonitor.auth.dependencies import (
    get_current_identity,
    require_admin,
    verify_ingest_key,
)
from iotmonitor.config import settings
from iotmonitor.db.engine import get_db
from iotmonitor.schemas.reading import (
    DeviceReadingSummary,
    IngestResponse,
    PurgeResponse,
    ReadingCreate,
    ReadingRead,
    ReadingStats,
)
from iotmonitor.services.reading_service import ReadingService

router = APIRouter(prefix="/readings")

_auth = [Depends(get_current_identity)]


def _svc(db: AsyncSession = Depends(get_db)) -> ReadingService:
    return ReadingService(db)


@router.post(
    "",
    response_model=IngestResponse,
    status_code=201,
    dependencies=[Depends(verify_ingest_key)],
)
async def ingest_reading(body: ReadingCreate, svc: ReadingService = Depends(_svc)):
    """Store one sample from a board."""
    reading = await svc.ingest(
        device=body.device,
        temperature=body.temperature,
        humidity=body.humidity,
    )
    return IngestResponse(id=reading.id, recorded_at=reading.recorded_at)


@router.get("/recent", response_model=list[ReadingRead], dependencies=_auth)
async def recent_readings(
    limit: Optional[int] = Query(None, ge=1),
    svc: ReadingService = Depends(_svc),
):
    return await svc.recent(limit)


@router.get("/latest", response_model=Optional[ReadingRead], dependencies=_auth)
async def latest_reading(
    device: Optional[str] = None,
    svc: ReadingService = Depends(_svc),
):
    """Most recent sample, optionally for one device label (null if none)."""
    return await svc.latest(device)


@router.get("/stats", response_model=ReadingStats, dependencies=_auth)
async def reading_stats(
    hours: Optional[int] = Query(None, ge=1),
    svc: ReadingService = Depends(_svc),
):
    return await svc.stats(hours)


@router.get("/range", response_model=list[ReadingRead], dependencies=_auth)
async def readings_in_range(
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    svc: ReadingService = Depends(_svc),
):
    return await svc.in_range(start, end)


@router.get("/devices", response_model=list[DeviceReadingSummary], dependencies=_auth)
async def reporting_devices(svc: ReadingService = Depends(_svc)):
    """Every device label that has reported, with counts."""
    return await svc.device_summaries()


@router.delete(
    "/purge",
    response_model=PurgeResponse,
    dependencies=[Depends(require_admin)],
)
async def purge_readings(
    days: Optional[int] = Query(None, ge=1),
    svc: ReadingService = Depends(_svc),
):
    """Retention cleanup — delete readings older than `days` days (admin)."""
    days = days or settings.purge_default_days
    deleted = await svc.purge(days)
    return PurgeResponse(days=days, deleted=deleted)
