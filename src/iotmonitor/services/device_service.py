"""Device service — owner-scoped CRUD for registered sensor boards.

Learn: Every query filters on (user_id, is_active=True). A device that
belongs to someone else is indistinguishable from one that doesn't
exist — both are 404 — so ids can't be probed across accounts.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from iotmonitor.db.models import Device, DeviceStatus
from iotmonitor.errors import ConflictError, NotFoundError, ValidationError
from iotmonitor.schemas.device import DevicePatch

logger = structlog.get_logger()

# Columns that may not be cleared with an explicit null
_REQUIRED_FIELDS = ("name", "type", "status")


class DeviceService:
    """Business logic for the device registry."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_devices(self, user_id: uuid.UUID) -> list[Device]:
        result = await self.db.execute(
            select(Device)
            .where(Device.user_id == user_id, Device.is_active.is_(True))
            .order_by(Device.created_at.desc())
        )
        return list(result.scalars().all())

    async def get_device(self, user_id: uuid.UUID, device_id: uuid.UUID) -> Device:
        result = await self.db.execute(
            select(Device).where(
                Device.id == device_id,
                Device.user_id == user_id,
                Device.is_active.is_(True),
            )
        )
        device = result.scalars().first()
        if device is None:
            raise NotFoundError("Device not found")
        return device

    async def create_device(
        self,
        user_id: uuid.UUID,
        name: Optional[str],
        type: str = "ESP32",
        external_id: Optional[str] = None,
        description: Optional[str] = None,
        location: Optional[str] = None,
        config: Optional[dict[str, Any]] = None,
    ) -> Device:
        name = (name or "").strip()
        if not name:
            raise ValidationError("Device name is required")
        if external_id:
            await self._ensure_external_id_free(external_id)

        device = Device(
            user_id=user_id,
            name=name,
            type=type,
            external_id=external_id or None,
            description=description,
            location=location,
            config=config,
            status=DeviceStatus.INACTIVE.value,
        )
        self.db.add(device)
        await self._commit_unique()

        logger.info("device.created", device_id=str(device.id), user_id=str(user_id))
        return device

    async def update_device(
        self,
        user_id: uuid.UUID,
        device_id: uuid.UUID,
        patch: DevicePatch,
    ) -> Device:
        """Apply only the fields present in the patch."""
        device = await self.get_device(user_id, device_id)

        changes = patch.changes()
        if not changes:
            raise ValidationError("No fields to update")
        for field in _REQUIRED_FIELDS:
            if field in changes and changes[field] is None:
                raise ValidationError(f"{field} cannot be null")

        new_external_id = changes.get("external_id")
        if new_external_id and new_external_id != device.external_id:
            await self._ensure_external_id_free(new_external_id)

        for field, value in changes.items():
            setattr(device, field, value)
        await self._commit_unique()

        logger.info(
            "device.updated",
            device_id=str(device.id),
            fields=sorted(changes),
        )
        return device

    async def delete_device(self, user_id: uuid.UUID, device_id: uuid.UUID) -> None:
        """Soft delete — the row stays, is_active goes false."""
        device = await self.get_device(user_id, device_id)
        device.is_active = False
        await self.db.commit()
        logger.info("device.deleted", device_id=str(device_id))

    async def set_status(
        self,
        user_id: uuid.UUID,
        device_id: uuid.UUID,
        status: Optional[str],
    ) -> Device:
        """Connection-state update reported for a board; stamps last_seen_at."""
        try:
            status = DeviceStatus(status).value
        except ValueError:
            raise ValidationError("Invalid status")

        device = await self.get_device(user_id, device_id)
        device.status = status
        device.last_seen_at = datetime.now(timezone.utc)
        await self.db.commit()

        logger.info("device.status_changed", device_id=str(device_id), status=status)
        return device

    # ─── Internals ──────────────────────────────────────

    async def _ensure_external_id_free(self, external_id: str) -> None:
        result = await self.db.execute(
            select(Device.id).where(Device.external_id == external_id).limit(1)
        )
        if result.first() is not None:
            raise ConflictError("A device with that identifier already exists")

    async def _commit_unique(self) -> None:
        try:
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("A device with that identifier already exists")
