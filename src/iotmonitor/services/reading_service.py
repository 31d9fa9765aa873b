"""Reading service — sensor ingestion and the dashboard's aggregate queries.

Learn: The firmware posts {device, temperature, humidity} every few
seconds; the dashboard polls recent/latest/stats. Everything here is
a single SQL statement — aggregates (AVG/MIN/MAX/COUNT) run in the
database, not in Python.

Plausibility ranges match what a DHT22 can actually report:
temperature -50..100 °C, humidity 0..100 %.
"""

from datetime import datetime, timedelta, timezone
from typing import Optional

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from iotmonitor.config import settings
from iotmonitor.db.models import SensorReading, as_utc
from iotmonitor.errors import ValidationError
from iotmonitor.schemas.reading import DeviceReadingSummary, ReadingStats

logger = structlog.get_logger()

TEMPERATURE_RANGE = (-50.0, 100.0)
HUMIDITY_RANGE = (0.0, 100.0)


def _round(value: Optional[float]) -> Optional[float]:
    return round(float(value), 2) if value is not None else None


def _to_utc(value: datetime) -> datetime:
    return as_utc(value).astimezone(timezone.utc)


class ReadingService:
    """Business logic for sensor readings."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ─── Ingestion ──────────────────────────────────────

    async def ingest(
        self,
        device: Optional[str],
        temperature: Optional[float],
        humidity: Optional[float],
    ) -> SensorReading:
        device = (device or "").strip()
        if not device or temperature is None or humidity is None:
            raise ValidationError(
                "Incomplete data: device, temperature and humidity are required"
            )
        if len(device) > 50:
            raise ValidationError("Device label too long (max 50 characters)")

        low, high = TEMPERATURE_RANGE
        if not low <= temperature <= high:
            raise ValidationError("Temperature out of range (-50 to 100 °C)")
        low, high = HUMIDITY_RANGE
        if not low <= humidity <= high:
            raise ValidationError("Humidity out of range (0 to 100 %)")

        reading = SensorReading(
            device=device, temperature=temperature, humidity=humidity
        )
        self.db.add(reading)
        await self.db.commit()

        logger.info(
            "reading.ingested",
            device=device,
            temperature=temperature,
            humidity=humidity,
        )
        return reading

    # ─── Queries ────────────────────────────────────────

    async def recent(self, limit: Optional[int] = None) -> list[SensorReading]:
        """Newest readings first, limit clamped to [1, readings_max_limit]."""
        limit = limit or settings.readings_default_limit
        limit = max(1, min(limit, settings.readings_max_limit))
        result = await self.db.execute(
            select(SensorReading)
            .order_by(SensorReading.recorded_at.desc(), SensorReading.id.desc())
            .limit(limit)
        )
        return list(result.scalars().all())

    async def latest(self, device: Optional[str] = None) -> Optional[SensorReading]:
        q = select(SensorReading)
        if device:
            q = q.where(SensorReading.device == device)
        result = await self.db.execute(
            q.order_by(SensorReading.recorded_at.desc(), SensorReading.id.desc()).limit(1)
        )
        return result.scalars().first()

    async def stats(
        self,
        hours: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> ReadingStats:
        """Aggregates over the last `hours` hours, values rounded to 2 decimals."""
        hours = hours or settings.stats_default_hours
        if hours < 1:
            raise ValidationError("hours must be a positive integer")
        since = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)

        result = await self.db.execute(
            select(
                func.count(SensorReading.id),
                func.avg(SensorReading.temperature),
                func.max(SensorReading.temperature),
                func.min(SensorReading.temperature),
                func.avg(SensorReading.humidity),
                func.max(SensorReading.humidity),
                func.min(SensorReading.humidity),
                func.min(SensorReading.recorded_at),
                func.max(SensorReading.recorded_at),
            ).where(SensorReading.recorded_at > since)
        )
        row = result.one()
        return ReadingStats(
            hours=hours,
            total_readings=row[0] or 0,
            temperature_avg=_round(row[1]),
            temperature_max=_round(row[2]),
            temperature_min=_round(row[3]),
            humidity_avg=_round(row[4]),
            humidity_max=_round(row[5]),
            humidity_min=_round(row[6]),
            first_reading_at=row[7],
            last_reading_at=row[8],
        )

    async def in_range(
        self,
        start: Optional[datetime],
        end: Optional[datetime],
    ) -> list[SensorReading]:
        """Readings between start and end (inclusive), oldest first."""
        if start is None or end is None:
            raise ValidationError("start and end parameters are required")
        start, end = _to_utc(start), _to_utc(end)
        if start > end:
            raise ValidationError("start must not be after end")

        result = await self.db.execute(
            select(SensorReading)
            .where(SensorReading.recorded_at.between(start, end))
            .order_by(SensorReading.recorded_at.asc(), SensorReading.id.asc())
        )
        return list(result.scalars().all())

    async def device_summaries(self) -> list[DeviceReadingSummary]:
        """One row per reporting device label, most recently active first."""
        last_seen = func.max(SensorReading.recorded_at)
        result = await self.db.execute(
            select(
                SensorReading.device,
                func.count(SensorReading.id),
                last_seen,
            )
            .group_by(SensorReading.device)
            .order_by(last_seen.desc())
        )
        return [
            DeviceReadingSummary(
                device=device, total_readings=count, last_reading_at=last
            )
            for device, count, last in result.all()
        ]

    # ─── Maintenance ────────────────────────────────────

    async def purge(
        self,
        days: Optional[int] = None,
        now: Optional[datetime] = None,
    ) -> int:
        """Delete readings older than `days` days. Returns rows deleted."""
        days = days or settings.purge_default_days
        if days < 1:
            raise ValidationError("days must be a positive integer")
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(days=days)

        result = await self.db.execute(
            delete(SensorReading)
            .where(SensorReading.recorded_at < cutoff)
            .execution_options(synchronize_session=False)
        )
        await self.db.commit()

        logger.info("reading.purged", days=days, deleted=result.rowcount)
        return result.rowcount
