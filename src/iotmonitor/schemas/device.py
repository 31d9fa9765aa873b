"""Pydantic schemas for the device registry.

Learn: DevicePatch is the typed replacement for building an UPDATE
statement out of whichever fields happen to be in the body. Only
fields the client actually sent (model_fields_set) are applied;
sending null explicitly clears a nullable column.
"""

import uuid
from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field

from iotmonitor.db.models import DeviceStatus


class DeviceCreate(BaseModel):
    name: Optional[str] = None
    type: str = Field(default="ESP32", min_length=1, max_length=50)
    external_id: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=200)
    config: Optional[dict[str, Any]] = None


class DevicePatch(BaseModel):
    name: Optional[str] = Field(default=None, max_length=100)
    type: Optional[str] = Field(default=None, max_length=50)
    external_id: Optional[str] = Field(default=None, max_length=100)
    description: Optional[str] = None
    location: Optional[str] = Field(default=None, max_length=200)
    status: Optional[DeviceStatus] = None
    config: Optional[dict[str, Any]] = None

    def changes(self) -> dict[str, Any]:
        """Only the fields present in the request body."""
        data = self.model_dump(exclude_unset=True)
        if data.get("status") is not None:
            data["status"] = DeviceStatus(data["status"]).value
        return data


class DeviceStatusUpdate(BaseModel):
    status: Optional[str] = None


class DeviceRead(BaseModel):
    id: uuid.UUID
    name: str
    type: str
    external_id: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    config: Optional[dict[str, Any]] = None
    status: str
    created_at: datetime
    last_seen_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
