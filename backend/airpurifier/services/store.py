"""
Persistence gateway: key lookups and single-row writes over the device,
current_status, readings, command_queue and settings tables.

No business rules live here. Every driver failure is rolled back and
re-raised as StorageError; nothing is retried.
"""
import functools
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional
from sqlalchemy import select, update, delete, func, case
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from airpurifier.config import settings
from airpurifier.exceptions import StorageError, ValidationError
from airpurifier.models.device import Device, CurrentStatus, DeviceSettings, DeviceShare
from airpurifier.models.reading import Reading
from airpurifier.models.command import Command
from airpurifier.models.user import User

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; they were written as UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def storage_guard(fn):
    @functools.wraps(fn)
    async def wrapper(db: AsyncSession, *args, **kwargs):
        try:
            return await fn(db, *args, **kwargs)
        except SQLAlchemyError as exc:
            await db.rollback()
            logger.error("Storage failure in %s: %s", fn.__name__, exc)
            raise StorageError(f"Storage failure in {fn.__name__}") from exc
    return wrapper


# ── devices ────────────────────────────────────────────────────────────────────

@storage_guard
async def get_device(db: AsyncSession, device_id: str) -> Optional[Device]:
    result = await db.execute(select(Device).where(Device.device_id == device_id))
    return result.scalar_one_or_none()


@storage_guard
async def add_device(
    db: AsyncSession,
    device_id: str,
    name: Optional[str],
    location: Optional[str],
    owner_id: Optional[int],
    device_username: Optional[str] = None,
    device_password: Optional[str] = None,
    threshold: Optional[int] = None,
) -> Device:
    """Insert a device with its default settings row and an offline status row.

    Duplicate ids raise ValidationError.
    """
    if threshold is None:
        threshold = settings.DEFAULT_THRESHOLD
    device = Device(
        device_id=device_id,
        name=name,
        location=location,
        owner_id=owner_id,
        device_username=device_username,
        device_password=device_password,
    )
    db.add(device)
    db.add(DeviceSettings(device_id=device_id, threshold=threshold))
    db.add(CurrentStatus(device_id=device_id, system_mode="offline", online=False, threshold=threshold))
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        raise ValidationError("Device ID already exists") from exc
    await db.refresh(device)
    return device


@storage_guard
async def delete_device(db: AsyncSession, device: Device) -> None:
    """Remove a device with everything that hangs off it, queued commands included."""
    await db.execute(delete(Command).where(Command.device_id == device.device_id))
    await db.delete(device)
    await db.commit()


def _access_type(device: Device, share_id: Optional[int], user_id: Optional[int]) -> str:
    if user_id is not None and device.owner_id == user_id:
        return "owner"
    return "shared" if share_id is not None else "admin"


@storage_guard
async def list_devices(
    db: AsyncSession, user_id: Optional[int] = None, include_all: bool = False
) -> List[Dict[str, Any]]:
    """Devices with their current status, as seen by user_id.

    Only devices the user owns or has been shared are returned unless
    include_all is set.
    """
    query = (
        select(Device, CurrentStatus, DeviceShare.id, User.username)
        .outerjoin(CurrentStatus, CurrentStatus.device_id == Device.device_id)
        .outerjoin(
            DeviceShare,
            (DeviceShare.device_id == Device.device_id) & (DeviceShare.shared_user_id == user_id),
        )
        .outerjoin(User, User.id == Device.owner_id)
    )
    if not include_all:
        query = query.where((Device.owner_id == user_id) | (DeviceShare.id.is_not(None)))
    result = await db.execute(query.order_by(Device.created_at.desc(), Device.id.desc()))
    return [
        {
            "device": device,
            "status": status,
            "access_type": _access_type(device, share_id, user_id),
            "owner_username": owner_username,
        }
        for device, status, share_id, owner_username in result.all()
    ]


@storage_guard
async def get_share(db: AsyncSession, device_id: str, user_id: int) -> Optional[DeviceShare]:
    result = await db.execute(
        select(DeviceShare).where(DeviceShare.device_id == device_id, DeviceShare.shared_user_id == user_id)
    )
    return result.scalar_one_or_none()


# ── current status ─────────────────────────────────────────────────────────────

@storage_guard
async def get_status(db: AsyncSession, device_id: str) -> Optional[CurrentStatus]:
    result = await db.execute(select(CurrentStatus).where(CurrentStatus.device_id == device_id))
    return result.scalar_one_or_none()


async def _apply_status(db: AsyncSession, device_id: str, values: Dict[str, Any]) -> CurrentStatus:
    result = await db.execute(select(CurrentStatus).where(CurrentStatus.device_id == device_id))
    row = result.scalar_one_or_none()
    if row is None:
        threshold = await db.execute(
            select(DeviceSettings.threshold).where(DeviceSettings.device_id == device_id)
        )
        row = CurrentStatus(device_id=device_id, threshold=threshold.scalar_one_or_none())
        db.add(row)
    for key, value in values.items():
        setattr(row, key, value)
    await db.commit()
    return row


@storage_guard
async def upsert_status(db: AsyncSession, device_id: str, values: Dict[str, Any]) -> CurrentStatus:
    """Overwrite the given fields on the device's status row, creating it if absent.

    Last write wins. Two first-ever writers racing on the unique device_id
    resolve by retrying the loser as an update.
    """
    try:
        return await _apply_status(db, device_id, values)
    except IntegrityError:
        await db.rollback()
        return await _apply_status(db, device_id, values)


@storage_guard
async def stale_online_device_ids(db: AsyncSession, cutoff: datetime) -> List[str]:
    result = await db.execute(
        select(CurrentStatus.device_id)
        .where(CurrentStatus.online == True, CurrentStatus.last_seen < cutoff)
        .order_by(CurrentStatus.device_id)
    )
    return list(result.scalars().all())


@storage_guard
async def mark_offline(db: AsyncSession, device_ids: List[str], cutoff: datetime, commit: bool = True) -> int:
    if not device_ids:
        return 0
    result = await db.execute(
        update(CurrentStatus)
        .where(
            CurrentStatus.device_id.in_(device_ids),
            CurrentStatus.online == True,
            CurrentStatus.last_seen < cutoff,
        )
        .values(online=False, system_mode="offline")
        .execution_options(synchronize_session=False)
    )
    if commit:
        await db.commit()
    return result.rowcount or 0


# ── readings ───────────────────────────────────────────────────────────────────

@storage_guard
async def insert_reading(db: AsyncSession, device_id: str, values: Dict[str, Any], timestamp: datetime) -> Reading:
    reading = Reading(device_id=device_id, timestamp=timestamp, **values)
    db.add(reading)
    await db.commit()
    await db.refresh(reading)
    return reading


@storage_guard
async def list_readings(
    db: AsyncSession,
    device_id: Optional[str] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Reading]:
    query = select(Reading)
    if device_id:
        query = query.where(Reading.device_id == device_id)
    if start:
        query = query.where(Reading.timestamp >= start)
    if end:
        query = query.where(Reading.timestamp <= end)
    query = query.order_by(Reading.timestamp.desc(), Reading.id.desc()).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())


@storage_guard
async def reading_stats(db: AsyncSession, device_id: str, since: datetime) -> Dict[str, Any]:
    result = await db.execute(
        select(
            func.avg(Reading.input_air_quality),
            func.avg(Reading.output_air_quality),
            func.avg(Reading.efficiency),
            func.min(Reading.input_air_quality),
            func.max(Reading.input_air_quality),
            func.count(Reading.id),
            func.sum(case((Reading.fan_state == True, 1), else_=0)),
            func.sum(case((Reading.system_mode == "online", 1), else_=0)),
        ).where(Reading.device_id == device_id, Reading.timestamp >= since)
    )
    row = result.one()
    return {
        "avg_input_quality": row[0],
        "avg_output_quality": row[1],
        "avg_efficiency": row[2],
        "min_input_quality": row[3],
        "max_input_quality": row[4],
        "reading_count": row[5] or 0,
        "fan_on_count": row[6] or 0,
        "online_count": row[7] or 0,
    }


# ── command queue ──────────────────────────────────────────────────────────────

@storage_guard
async def insert_command(db: AsyncSession, device_id: str, command: str, value: str, created_at: datetime) -> Command:
    row = Command(device_id=device_id, command=command, value=value, status="pending", created_at=created_at)
    db.add(row)
    await db.commit()
    await db.refresh(row)
    return row


@storage_guard
async def get_command(db: AsyncSession, command_id: int) -> Optional[Command]:
    result = await db.execute(select(Command).where(Command.id == command_id))
    return result.scalar_one_or_none()


@storage_guard
async def commands_by_status(db: AsyncSession, device_id: str, status: str) -> List[Command]:
    result = await db.execute(
        select(Command)
        .where(Command.device_id == device_id, Command.status == status)
        .order_by(Command.created_at.asc(), Command.id.asc())
    )
    return list(result.scalars().all())


@storage_guard
async def list_commands(
    db: AsyncSession,
    device_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Command]:
    query = select(Command)
    if device_id:
        query = query.where(Command.device_id == device_id)
    if status:
        query = query.where(Command.status == status)
    query = query.order_by(Command.created_at.desc(), Command.id.desc()).limit(limit).offset(offset)
    result = await db.execute(query)
    return list(result.scalars().all())


@storage_guard
async def transition_command(
    db: AsyncSession, command: Command, expected: str, status: str, processed_at: Optional[datetime]
) -> bool:
    """Compare-and-set on status. False when the row left ``expected`` since it was read.

    ``command`` is refreshed either way.
    """
    result = await db.execute(
        update(Command)
        .where(Command.id == command.id, Command.status == expected)
        .values(status=status, processed_at=processed_at)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(command)
    return bool(result.rowcount)


# ── settings ───────────────────────────────────────────────────────────────────

@storage_guard
async def get_settings(db: AsyncSession, device_id: str) -> Optional[DeviceSettings]:
    result = await db.execute(select(DeviceSettings).where(DeviceSettings.device_id == device_id))
    return result.scalar_one_or_none()


@storage_guard
async def upsert_settings(db: AsyncSession, device_id: str, threshold: int, now: datetime) -> DeviceSettings:
    result = await db.execute(select(DeviceSettings).where(DeviceSettings.device_id == device_id))
    row = result.scalar_one_or_none()
    if row is None:
        row = DeviceSettings(device_id=device_id)
        db.add(row)
    row.threshold = threshold
    row.updated_at = now
    await db.execute(
        update(CurrentStatus).where(CurrentStatus.device_id == device_id).values(threshold=threshold)
    )
    await db.commit()
    await db.refresh(row)
    return row


@storage_guard
async def list_settings(db: AsyncSession) -> List[Dict[str, Any]]:
    result = await db.execute(
        select(DeviceSettings, Device.name, Device.location)
        .outerjoin(Device, Device.device_id == DeviceSettings.device_id)
        .order_by(DeviceSettings.device_id)
    )
    return [
        {
            "device_id": s.device_id,
            "threshold": s.threshold,
            "updated_at": s.updated_at,
            "device_name": name,
            "location": location,
        }
        for s, name, location in result.all()
    ]


# ── users (owner lookup for auto-provisioning) ─────────────────────────────────

@storage_guard
async def first_admin_id(db: AsyncSession) -> Optional[int]:
    result = await db.execute(
        select(User.id).where(User.is_admin == True, User.is_active == True).order_by(User.id).limit(1)
    )
    return result.scalar_one_or_none()
