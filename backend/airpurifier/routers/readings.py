"""
Device-facing ingest and poll endpoints, plus the history and statistics views.

The ingest endpoints are public: the firmware authenticates with nothing but
its device id. They are rate-limited per source address instead.
"""
import logging
from datetime import datetime, timedelta
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from airpurifier.config import settings
from airpurifier.database import get_db
from airpurifier.exceptions import PartialIngestError
from airpurifier.extensions import limiter
from airpurifier.middleware.rbac import get_current_user, get_device_for_user
from airpurifier.models.user import User
from airpurifier.schemas.command import CommandResponse
from airpurifier.schemas.reading import (
    ReadingIn, IngestResponse, ReadingResponse, StatsResponse,
    DevicePollResponse, DeviceStatusView,
)
from airpurifier.services import command_queue, ingestion, liveness, store

router = APIRouter(prefix="/api", tags=["Readings"])
logger = logging.getLogger(__name__)


async def _ingest(request: Request, payload: ReadingIn, db: AsyncSession) -> IngestResponse:
    source_ip = request.client.host if request.client else None
    try:
        result = await ingestion.ingest(
            db,
            device_id=payload.device_id,
            system_mode=payload.system_mode,
            input_quality=payload.input_air_quality,
            output_quality=payload.output_air_quality,
            efficiency=payload.efficiency,
            fan_state=payload.fan_state,
            auto_mode=payload.auto_mode,
            source_ip=source_ip,
        )
    except PartialIngestError as e:
        # The reading is durable; report it and let the next report fix the status row
        logger.warning("%s", e.message)
        result = ingestion.IngestResult(
            device_id=payload.device_id,
            reading_id=e.reading_id,
            device_created=e.device_created,
            status_updated=False,
        )

    pending = await command_queue.drain_pending(db, payload.device_id)
    if pending:
        logger.info("Returning %d pending command(s) to %s", len(pending), payload.device_id)
    return IngestResponse(
        success=True,
        message="Reading stored" if result.status_updated else "Reading stored, status update failed",
        reading_id=result.reading_id,
        device_created=result.device_created,
        status_updated=result.status_updated,
        pending_commands=len(pending),
        commands=[CommandResponse.model_validate(c) for c in pending],
    )


@router.post("/readings", response_model=IngestResponse, status_code=201)
@limiter.limit(settings.RATE_LIMIT_INGEST)
async def add_reading(request: Request, payload: ReadingIn, db: AsyncSession = Depends(get_db)):
    return await _ingest(request, payload, db)


@router.post("/device-data", response_model=IngestResponse)
@limiter.limit(settings.RATE_LIMIT_INGEST)
async def store_device_data(request: Request, payload: ReadingIn, db: AsyncSession = Depends(get_db)):
    return await _ingest(request, payload, db)


@router.get("/device-data", response_model=DevicePollResponse)
async def get_device_data(
    device_id: str = settings.DEFAULT_DEVICE_ID,
    db: AsyncSession = Depends(get_db),
):
    """What the firmware polls for: stored state, never the live verdict."""
    status = await store.get_status(db, device_id)
    if not status:
        return DevicePollResponse(
            system_mode="offline",
            input_air_quality=0.0,
            output_air_quality=0.0,
            efficiency=0.0,
            fan=0,
            auto_mode="OFF",
            threshold=settings.DEFAULT_THRESHOLD,
            backend_url=settings.APP_URL,
            timestamp=store.utcnow(),
        )
    return DevicePollResponse(
        system_mode=status.system_mode or "offline",
        input_air_quality=status.input_air_quality or 0.0,
        output_air_quality=status.output_air_quality or 0.0,
        efficiency=status.efficiency or 0.0,
        fan=1 if status.fan_state else 0,
        auto_mode="ON" if status.auto_mode else "OFF",
        threshold=status.threshold or settings.DEFAULT_THRESHOLD,
        backend_url=settings.APP_URL,
        timestamp=store.as_utc(status.last_seen) or store.utcnow(),
    )


@router.get("/device-status", response_model=DeviceStatusView)
async def get_device_status(
    device_id: str = settings.DEFAULT_DEVICE_ID,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await get_device_for_user(db, device_id, current_user)
    status = await store.get_status(db, device_id)
    online = liveness.seen_within(status.last_seen, store.utcnow()) if status else False
    if not status:
        return DeviceStatusView(device_id=device_id, status="offline", is_online=False)
    return DeviceStatusView(
        device_id=device_id,
        status="online" if online else "offline",
        is_online=online,
        data={
            "system_mode": status.system_mode,
            "input_air_quality": status.input_air_quality,
            "output_air_quality": status.output_air_quality,
            "efficiency": status.efficiency,
            "fan_state": status.fan_state,
            "auto_mode": status.auto_mode,
            "threshold": status.threshold,
            "stored_online": status.online,
            "ip_address": status.ip_address,
            "last_seen": store.as_utc(status.last_seen),
        },
    )


@router.get("/readings", response_model=List[ReadingResponse])
async def get_readings(
    device_id: str,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    hours: Optional[int] = Query(None, ge=1, le=24 * 365),
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Newest first. ``hours`` is shorthand for ``start = now - hours``."""
    await get_device_for_user(db, device_id, current_user)
    if hours and not start:
        start = store.utcnow() - timedelta(hours=hours)
    if start and end and store.as_utc(start) > store.as_utc(end):
        raise HTTPException(status_code=400, detail="start must not be after end")
    return await store.list_readings(
        db, device_id, store.as_utc(start), store.as_utc(end), limit=limit, offset=offset
    )


@router.get("/stats", response_model=StatsResponse)
async def get_stats(
    device_id: str,
    hours: int = Query(24, ge=1, le=24 * 365),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await get_device_for_user(db, device_id, current_user)
    stats = await store.reading_stats(db, device_id, store.utcnow() - timedelta(hours=hours))
    return StatsResponse(device_id=device_id, hours=hours, **stats)
