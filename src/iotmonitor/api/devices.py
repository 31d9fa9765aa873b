"""Device API routes.

Learn: The whole router is mounted behind get_current_identity (see
api/__init__.py). Handlers still declare the identity parameter to
read user_id from it; FastAPI caches dependencies per request, so
the token/session check runs once.
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from iotmonitor.auth.dependencies import CurrentIdentity, get_current_identity
from iotmonitor.db.engine import get_db
from iotmonitor.schemas.device import (
    DeviceCreate,
    DevicePatch,
    DeviceRead,
    DeviceStatusUpdate,
)
from iotmonitor.services.device_service import DeviceService

router = APIRouter(prefix="/devices")


def _svc(db: AsyncSession = Depends(get_db)) -> DeviceService:
    return DeviceService(db)


@router.get("", response_model=list[DeviceRead])
async def list_devices(
    identity: CurrentIdentity = Depends(get_current_identity),
    svc: DeviceService = Depends(_svc),
):
    return await svc.list_devices(identity.user_id)


@router.get("/{device_id}", response_model=DeviceRead)
async def get_device(
    device_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_identity),
    svc: DeviceService = Depends(_svc),
):
    return await svc.get_device(identity.user_id, device_id)


@router.post("", response_model=DeviceRead, status_code=201)
async def create_device(
    body: DeviceCreate,
    identity: CurrentIdentity = Depends(get_current_identity),
    svc: DeviceService = Depends(_svc),
):
    """Register a board. New devices start as 'inactive' until they report."""
    return await svc.create_device(
        user_id=identity.user_id,
        name=body.name,
        type=body.type,
        external_id=body.external_id,
        description=body.description,
        location=body.location,
        config=body.config,
    )


@router.patch("/{device_id}", response_model=DeviceRead)
@router.put("/{device_id}", response_model=DeviceRead)
async def update_device(
    device_id: uuid.UUID,
    body: DevicePatch,
    identity: CurrentIdentity = Depends(get_current_identity),
    svc: DeviceService = Depends(_svc),
):
    """Partial update — omitted fields are left untouched."""
    return await svc.update_device(identity.user_id, device_id, body)


@router.delete("/{device_id}")
async def delete_device(
    device_id: uuid.UUID,
    identity: CurrentIdentity = Depends(get_current_identity),
    svc: DeviceService = Depends(_svc),
):
    await svc.delete_device(identity.user_id, device_id)
    return {"success": True, "deleted": True}


@router.patch("/{device_id}/status", response_model=DeviceRead)
async def set_device_status(
    device_id: uuid.UUID,
    body: DeviceStatusUpdate,
    identity: CurrentIdentity = Depends(get_current_identity),
    svc: DeviceService = Depends(_svc),
):
    return await svc.set_status(identity.user_id, device_id, body.status)
