"""Pydantic schemas for sensor readings and their aggregates."""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel


class ReadingCreate(BaseModel):
    """Body posted by the ESP32 firmware. Checked in ReadingService."""
    device: Optional[str] = None
    temperature: Optional[float] = None
    humidity: Optional[float] = None


class ReadingRead(BaseModel):
    id: int
    device: str
    temperature: float
    humidity: float
    recorded_at: datetime

    model_config = {"from_attributes": True}


class IngestResponse(BaseModel):
    success: bool = True
    id: int
    recorded_at: datetime


class ReadingStats(BaseModel):
    hours: int
    total_readings: int
    temperature_avg: Optional[float] = None
    temperature_max: Optional[float] = None
    temperature_min: Optional[float] = None
    humidity_avg: Optional[float] = None
    humidity_max: Optional[float] = None
    humidity_min: Optional[float] = None
    first_reading_at: Optional[datetime] = None
    last_reading_at: Optional[datetime] = None


class DeviceReadingSummary(BaseModel):
    device: str
    total_readings: int
    last_reading_at: Optional[datetime] = None


class PurgeResponse(BaseModel):
    success: bool = True
    days: int
    deleted: int
