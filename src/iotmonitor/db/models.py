"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Relationships, constraints, and indexes defined here.

Key concepts:
- UUID primary keys for users and devices, integer keys for high-volume
  rows (sessions, readings)
- Portable column types (Uuid, JSON with a JSONB variant) so the same
  models run on PostgreSQL and on SQLite for local development/tests
- Python-side defaults for timestamps, so values are available right
  after flush without a refresh round trip
"""

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from sqlalchemy import (
    JSON,
    Boolean,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
    func,
    true,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


def as_utc(value: datetime) -> datetime:
    """Attach UTC to naive datetimes (SQLite drops tzinfo on the way back)."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


JSONType = JSON().with_variant(JSONB(), "postgresql")


class Role(str, Enum):
    ADMIN = "admin"
    USER = "user"


class DeviceStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"


# ══════════════════════════════════════════════════════════════
# Credential store + session store
# ══════════════════════════════════════════════════════════════


class User(Base):
    """A dashboard user.

    Learn: username and email are each unique at the storage level.
    Registration checks first for a friendly error, but the constraint
    is what actually wins a race between two concurrent sign-ups.
    """

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    username: Mapped[str] = mapped_column(String(50), unique=True, nullable=False)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    full_name: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=Role.USER.value
    )  # admin, user
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    last_access_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    sessions: Mapped[list["UserSession"]] = relationship(back_populates="user")
    devices: Mapped[list["Device"]] = relationship(back_populates="owner")


class UserSession(Base):
    """Server-side record backing an issued token.

    Learn: A JWT alone can't be revoked. Each login writes one of these
    rows and the authorizer requires it to exist, be active, and not be
    past expires_at. Logout flips is_active; rows are never deleted.
    """

    __tablename__ = "user_sessions"
    __table_args__ = (
        Index("idx_user_sessions_user_active", "user_id", "is_active"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    token: Mapped[str] = mapped_column(String(1024), unique=True, nullable=False)
    ip_address: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )

    user: Mapped["User"] = relationship(back_populates="sessions")


# ══════════════════════════════════════════════════════════════
# Devices + readings
# ══════════════════════════════════════════════════════════════


class Device(Base):
    """A sensor board registered by a user.

    Learn: Devices are owner-scoped — every query filters by user_id.
    Deleting a device only clears is_active, so historical readings
    keep a meaningful label.
    """

    __tablename__ = "devices"
    __table_args__ = (
        Index("idx_devices_user_active", "user_id", "is_active"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=new_uuid)
    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid, ForeignKey("users.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    type: Mapped[str] = mapped_column(String(50), nullable=False, default="ESP32")
    external_id: Mapped[Optional[str]] = mapped_column(
        String(100), unique=True, nullable=True
    )  # MAC address, chip id, ...
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    location: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    config: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=DeviceStatus.INACTIVE.value
    )  # active, inactive, error
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
    last_seen_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, server_default=true()
    )

    owner: Mapped["User"] = relationship(back_populates="devices")


class SensorReading(Base):
    """One temperature/humidity sample posted by a board.

    `device` is the free-form label the firmware sends, not a foreign
    key: boards can report before anyone registers them.
    """

    __tablename__ = "sensor_readings"
    __table_args__ = (
        Index("idx_sensor_readings_recorded", "recorded_at"),
        Index("idx_sensor_readings_device", "device"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    device: Mapped[str] = mapped_column(String(50), nullable=False)
    temperature: Mapped[float] = mapped_column(Float, nullable=False)
    humidity: Mapped[float] = mapped_column(Float, nullable=False)
    recorded_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, server_default=func.now()
    )
