from typing import List
from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession
from airpurifier.config import settings
from airpurifier.database import get_db
from airpurifier.middleware.rbac import get_current_user, get_device_for_user, require_admin
from airpurifier.models.user import User
from airpurifier.schemas.settings import SettingsUpdate, SettingsResponse
from airpurifier.services import store
from airpurifier.services.auth import log_audit

router = APIRouter(prefix="/api/settings", tags=["Settings"])


@router.get("/", response_model=List[SettingsResponse], dependencies=[Depends(require_admin())])
async def list_settings(db: AsyncSession = Depends(get_db)):
    return await store.list_settings(db)


@router.get("/{device_id}", response_model=SettingsResponse)
async def get_settings(
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    device = await get_device_for_user(db, device_id, current_user)
    row = await store.get_settings(db, device_id)
    if not row:
        return SettingsResponse(
            device_id=device_id,
            threshold=settings.DEFAULT_THRESHOLD,
            device_name=device.name,
            location=device.location,
        )
    return SettingsResponse(
        device_id=device_id,
        threshold=row.threshold,
        updated_at=row.updated_at,
        device_name=device.name,
        location=device.location,
    )


@router.put("/{device_id}", response_model=SettingsResponse)
async def update_settings(
    request: Request,
    device_id: str,
    payload: SettingsUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    device = await get_device_for_user(db, device_id, current_user, write=True)
    row = await store.upsert_settings(db, device_id, payload.threshold, store.utcnow())
    await log_audit(
        db, "settings_updated",
        user_id=current_user.id, username=current_user.username,
        resource_type="device", resource_id=device_id,
        details=f"threshold={payload.threshold}",
        source_ip=request.client.host if request.client else None,
    )
    return SettingsResponse(
        device_id=device_id,
        threshold=row.threshold,
        updated_at=row.updated_at,
        device_name=device.name,
        location=device.location,
    )
