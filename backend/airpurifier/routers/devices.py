import logging
import secrets
from typing import List
from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from airpurifier.crypto import encrypt_value, decrypt_value
from airpurifier.database import get_db
from airpurifier.middleware.rbac import get_current_user, get_device_for_user, require_admin
from airpurifier.models.device import Device, DeviceShare
from airpurifier.models.user import User
from airpurifier.schemas.device import (
    DeviceRegister, DeviceUpdate, DeviceResponse, DeviceStatusResponse,
    ShareRequest, ShareResponse, LivenessResponse,
)
from airpurifier.services import liveness, store
from airpurifier.services.auth import get_user_by_username, log_audit

router = APIRouter(prefix="/api/devices", tags=["Devices"])
logger = logging.getLogger(__name__)


def _source_ip(request: Request):
    return request.client.host if request.client else None


def _generate_device_id() -> str:
    return f"esp32_{secrets.token_hex(3)}_{int(store.utcnow().timestamp()):x}"


async def _device_row(db: AsyncSession, device: Device, user: User) -> dict:
    if device.owner_id == user.id:
        access_type = "owner"
    elif await store.get_share(db, device.device_id, user.id):
        access_type = "shared"
    else:
        access_type = "admin"
    owner = await db.get(User, device.owner_id) if device.owner_id else None
    return {
        "device": device,
        "status": await store.get_status(db, device.device_id),
        "access_type": access_type,
        "owner_username": owner.username if owner else None,
    }


def _device_response(row: dict, now) -> DeviceResponse:
    device, status = row["device"], row["status"]
    return DeviceResponse(
        id=device.id,
        device_id=device.device_id,
        name=device.name,
        location=device.location,
        owner_id=device.owner_id,
        owner_username=row.get("owner_username"),
        device_username=device.device_username,
        created_at=device.created_at,
        access_type=row["access_type"],
        is_online=liveness.seen_within(status.last_seen if status else None, now),
        status=DeviceStatusResponse.model_validate(status) if status else None,
    )


@router.get("/", response_model=List[DeviceResponse])
async def list_devices(
    all_devices: bool = False,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Devices the caller owns or has been shared. Admins may ask for every device."""
    rows = await store.list_devices(
        db, user_id=current_user.id, include_all=all_devices and current_user.is_admin
    )
    now = store.utcnow()
    return [_device_response(row, now) for row in rows]


@router.post("/register", response_model=DeviceResponse, status_code=201)
async def register_device(
    request: Request,
    payload: DeviceRegister,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    device_id = payload.device_id or _generate_device_id()
    device = await store.add_device(
        db,
        device_id=device_id,
        name=payload.device_name,
        location=payload.location,
        owner_id=current_user.id,
        device_username=payload.username,
        device_password=encrypt_value(payload.password),
    )
    logger.info("Device %s registered by %s", device_id, current_user.username)
    await log_audit(
        db, "device_registered",
        user_id=current_user.id, username=current_user.username,
        resource_type="device", resource_id=device_id,
        details=f"name={payload.device_name} location={payload.location}",
        source_ip=_source_ip(request),
    )
    return _device_response(await _device_row(db, device, current_user), store.utcnow())


@router.get("/{device_id}", response_model=DeviceResponse)
async def get_device(
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    device = await get_device_for_user(db, device_id, current_user)
    return _device_response(await _device_row(db, device, current_user), store.utcnow())


@router.get("/{device_id}/credentials")
async def get_device_credentials(
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Device login the firmware is provisioned with. Owner or admin only."""
    device = await get_device_for_user(db, device_id, current_user, write=True)
    return {
        "device_id": device.device_id,
        "username": device.device_username,
        "password": decrypt_value(device.device_password),
    }


@router.put("/{device_id}", response_model=DeviceResponse)
async def update_device(
    request: Request,
    device_id: str,
    payload: DeviceUpdate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    device = await get_device_for_user(db, device_id, current_user, write=True)
    update_data = payload.model_dump(exclude_unset=True, exclude_none=True)
    for key, value in update_data.items():
        setattr(device, key, value)
    await db.commit()
    await db.refresh(device)

    await log_audit(
        db, "device_updated",
        user_id=current_user.id, username=current_user.username,
        resource_type="device", resource_id=device_id,
        details=f"Updated fields: {sorted(update_data)}",
        source_ip=_source_ip(request),
    )
    return _device_response(await _device_row(db, device, current_user), store.utcnow())


@router.delete("/{device_id}")
async def delete_device(
    request: Request,
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    device = await get_device_for_user(db, device_id, current_user, write=True)
    await store.delete_device(db, device)
    logger.info("Device %s deleted by %s", device_id, current_user.username)

    await log_audit(
        db, "device_deleted",
        user_id=current_user.id, username=current_user.username,
        resource_type="device", resource_id=device_id,
        source_ip=_source_ip(request),
    )
    return {"message": "Device deleted"}


# ── sharing ────────────────────────────────────────────────────────────────────

@router.post("/{device_id}/share", response_model=ShareResponse, status_code=201)
async def share_device(
    request: Request,
    device_id: str,
    payload: ShareRequest,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    device = await store.get_device(db, device_id)
    if not device or device.owner_id != current_user.id:
        raise HTTPException(status_code=404, detail="Device not found or you do not own this device")

    target = await get_user_by_username(db, payload.shared_username)
    if not target or not target.is_active:
        raise HTTPException(status_code=404, detail="User not found")
    if target.id == current_user.id:
        raise HTTPException(status_code=400, detail="Cannot share device with yourself")
    if await store.get_share(db, device_id, target.id):
        raise HTTPException(status_code=400, detail="Device is already shared with this user")

    share = DeviceShare(
        device_id=device_id,
        owner_user_id=current_user.id,
        shared_user_id=target.id,
        permissions="view_only",
    )
    db.add(share)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=400, detail="Device is already shared with this user")
    await db.refresh(share)

    await log_audit(
        db, "device_shared",
        user_id=current_user.id, username=current_user.username,
        resource_type="device", resource_id=device_id,
        details=f"Shared with {target.username}",
        source_ip=_source_ip(request),
    )
    return ShareResponse(
        id=share.id,
        device_id=device_id,
        shared_user_id=target.id,
        shared_username=target.username,
        permissions=share.permissions,
        created_at=share.created_at,
    )


@router.get("/{device_id}/shares", response_model=List[ShareResponse])
async def list_shares(
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await get_device_for_user(db, device_id, current_user, write=True)
    result = await db.execute(
        select(DeviceShare, User.username)
        .join(User, User.id == DeviceShare.shared_user_id)
        .where(DeviceShare.device_id == device_id)
        .order_by(DeviceShare.created_at.desc(), DeviceShare.id.desc())
    )
    return [
        ShareResponse(
            id=share.id,
            device_id=share.device_id,
            shared_user_id=share.shared_user_id,
            shared_username=username,
            permissions=share.permissions,
            created_at=share.created_at,
        )
        for share, username in result.all()
    ]


@router.delete("/{device_id}/shares/{share_id}")
async def unshare_device(
    request: Request,
    device_id: str,
    share_id: int,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    share = await db.get(DeviceShare, share_id)
    # The owner revokes; the recipient may drop a share they no longer want
    if (
        not share
        or share.device_id != device_id
        or current_user.id not in (share.owner_user_id, share.shared_user_id)
    ):
        raise HTTPException(status_code=404, detail="Share not found or access denied")
    await db.delete(share)
    await db.commit()

    await log_audit(
        db, "device_unshared",
        user_id=current_user.id, username=current_user.username,
        resource_type="device", resource_id=device_id,
        details=f"Removed share {share_id}",
        source_ip=_source_ip(request),
    )
    return {"message": "Share removed"}


# ── liveness debug ─────────────────────────────────────────────────────────────

@router.get("/{device_id}/liveness", response_model=LivenessResponse)
async def device_liveness(
    device_id: str,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Stored online flag next to the live two-minute verdict."""
    await get_device_for_user(db, device_id, current_user)
    return await liveness.liveness_report(db, device_id)


@router.post("/{device_id}/force-online")
async def force_online(
    request: Request,
    device_id: str,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    await liveness.set_stored_liveness(db, device_id, True)
    await log_audit(
        db, "device_forced_online",
        user_id=current_user.id, username=current_user.username,
        resource_type="device", resource_id=device_id,
        source_ip=_source_ip(request),
    )
    return {"success": True, "message": f"Device {device_id} forced online"}


@router.post("/{device_id}/force-offline")
async def force_offline(
    request: Request,
    device_id: str,
    current_user: User = Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    await liveness.set_stored_liveness(db, device_id, False)
    await log_audit(
        db, "device_forced_offline",
        user_id=current_user.id, username=current_user.username,
        resource_type="device", resource_id=device_id,
        source_ip=_source_ip(request),
    )
    return {"success": True, "message": f"Device {device_id} forced offline"}
