"""
Status ingestion - turns a device's self-reported snapshot into durable state.

The reading insert and the current-status upsert are two independent writes.
If the second fails the reading stays stored and PartialIngestError says so.
"""
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from airpurifier.exceptions import StorageError, PartialIngestError, ValidationError
from airpurifier.models.device import Device
from airpurifier.services import store

logger = logging.getLogger(__name__)

PLACEHOLDER_LOCATION = "Unknown"


@dataclass(frozen=True)
class IngestResult:
    device_id: str
    reading_id: int
    device_created: bool
    status_updated: bool = True


async def find_or_create_device(db: AsyncSession, device_id: str) -> Tuple[Device, bool]:
    """Return (device, created). Unknown ids are provisioned, never rejected."""
    device = await store.get_device(db, device_id)
    if device:
        return device, False

    owner_id = await store.first_admin_id(db)
    try:
        device = await store.add_device(
            db,
            device_id=device_id,
            name=f"Auto-provisioned {device_id}",
            location=PLACEHOLDER_LOCATION,
            owner_id=owner_id,
        )
    except ValidationError:
        # Another report for the same new device won the insert
        device = await store.get_device(db, device_id)
        if not device:
            raise StorageError(f"Could not provision device {device_id}")
        return device, False

    logger.info("Auto-provisioned device %s (owner=%s)", device_id, owner_id)
    return device, True


async def ingest(
    db: AsyncSession,
    device_id: str,
    system_mode: str,
    input_quality: float,
    output_quality: float,
    efficiency: float,
    fan_state: bool,
    auto_mode: bool,
    source_ip: Optional[str] = None,
    now: Optional[datetime] = None,
) -> IngestResult:
    now = store.as_utc(now) or store.utcnow()
    _, created = await find_or_create_device(db, device_id)

    snapshot = {
        "system_mode": system_mode,
        "input_air_quality": input_quality,
        "output_air_quality": output_quality,
        "efficiency": efficiency,
        "fan_state": fan_state,
        "auto_mode": auto_mode,
    }
    reading = await store.insert_reading(db, device_id, snapshot, now)
    reading_id = reading.id

    status_values = dict(snapshot, online=(system_mode == "online"), last_seen=now)
    if source_ip:
        status_values["ip_address"] = source_ip
    try:
        await store.upsert_status(db, device_id, status_values)
    except StorageError as e:
        raise PartialIngestError(
            f"Reading {reading_id} stored but status update failed for {device_id}",
            reading_id=reading_id,
            device_created=created,
        ) from e

    logger.debug("Ingested reading %s for %s (mode=%s)", reading_id, device_id, system_mode)
    return IngestResult(device_id=device_id, reading_id=reading_id, device_created=created)
