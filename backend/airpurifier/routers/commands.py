import logging
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from airpurifier.database import get_db
from airpurifier.middleware.rbac import get_current_user, get_device_for_user
from airpurifier.models.user import User
from airpurifier.schemas.command import CommandCreate, CommandStatusUpdate, CommandResponse
from airpurifier.services import command_queue, store
from airpurifier.services.auth import log_audit

router = APIRouter(prefix="/api/commands", tags=["Commands"])
logger = logging.getLogger(__name__)


@router.post("/", response_model=CommandResponse, status_code=201)
async def send_command(
    request: Request,
    payload: CommandCreate,
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    # A device that has not reported yet has no owner, so only admins may queue for it
    if await store.get_device(db, payload.device_id):
        await get_device_for_user(db, payload.device_id, current_user, write=True)
    elif not current_user.is_admin:
        raise HTTPException(status_code=404, detail="Device not found")

    command = await command_queue.enqueue(db, payload.device_id, payload.command, payload.value)
    await log_audit(
        db, "command_queued",
        user_id=current_user.id, username=current_user.username,
        resource_type="device", resource_id=payload.device_id,
        details=f"#{command.id} {command.command}={command.value}",
        source_ip=request.client.host if request.client else None,
    )
    return command


@router.get("/pending", response_model=List[CommandResponse])
async def get_pending_commands(device_id: str, db: AsyncSession = Depends(get_db)):
    """Device poll. Returns the same list until each command is acknowledged."""
    return await command_queue.drain_pending(db, device_id)


@router.get("/", response_model=List[CommandResponse])
async def list_commands(
    device_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = Query(100, ge=1, le=1000),
    offset: int = Query(0, ge=0),
    current_user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if device_id is None and not current_user.is_admin:
        raise HTTPException(status_code=400, detail="device_id is required")
    if device_id is not None and not current_user.is_admin:
        await get_device_for_user(db, device_id, current_user)
    return await command_queue.list_commands(db, device_id=device_id, status=status, limit=limit, offset=offset)


@router.patch("/{command_id}", response_model=CommandResponse)
async def update_command_status(
    command_id: int,
    payload: CommandStatusUpdate,
    db: AsyncSession = Depends(get_db),
):
    """Device acknowledgement. Terminal statuses stamp processed_at."""
    return await command_queue.set_status(db, command_id, payload.status)
