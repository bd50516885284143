"""
Background event log: admin listing plus the writer used by scheduler jobs.
"""
import logging
from typing import Optional
from datetime import datetime
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel
from sqlalchemy import select, desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from airpurifier.database import get_db, AsyncSessionLocal
from airpurifier.middleware.rbac import require_admin
from airpurifier.models.system_event import SystemEvent

router = APIRouter(prefix="/api/system-events", tags=["system-events"])
logger = logging.getLogger(__name__)


class SystemEventResponse(BaseModel):
    id: int
    timestamp: datetime
    level: str
    source: str
    event_type: str
    resource_type: Optional[str] = None
    resource_id: Optional[str] = None
    message: str
    details: Optional[str] = None

    model_config = {"from_attributes": True}


@router.get("/", response_model=list[SystemEventResponse])
async def list_system_events(
    limit: int = Query(200, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    level: Optional[str] = None,
    source: Optional[str] = None,
    resource_id: Optional[str] = None,
    _=Depends(require_admin()),
    db: AsyncSession = Depends(get_db),
):
    q = select(SystemEvent).order_by(desc(SystemEvent.timestamp), desc(SystemEvent.id))
    if level:
        q = q.where(SystemEvent.level == level)
    if source:
        q = q.where(SystemEvent.source == source)
    if resource_id:
        q = q.where(SystemEvent.resource_id == resource_id)
    q = q.offset(offset).limit(limit)
    result = await db.execute(q)
    return result.scalars().all()


# ── writer for scheduler jobs ─────────────────────────────────────────────────

async def log_system_event(
    level: str,
    source: str,
    event_type: str,
    message: str,
    resource_type: Optional[str] = None,
    resource_id: Optional[str] = None,
    details: Optional[str] = None,
    session_factory=None,
) -> None:
    """Persist one event in a fresh session; write failures are logged only."""
    try:
        async with (session_factory or AsyncSessionLocal)() as db:
            db.add(SystemEvent(
                level=level,
                source=source,
                event_type=event_type,
                resource_type=resource_type,
                resource_id=resource_id,
                message=message,
                details=details,
            ))
            await db.commit()
    except SQLAlchemyError as exc:
        logger.error("Failed to write system event: %s", exc)
