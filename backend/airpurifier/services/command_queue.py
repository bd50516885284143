"""
Command Queue - durable, per-device, insertion-ordered ledger of operator
commands awaiting pickup by a polling device.

Delivery is at-least-once: draining is a read-only peek, and a command keeps
coming back on every poll until someone moves it out of ``pending``.
"""
import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple
from sqlalchemy.ext.asyncio import AsyncSession
from airpurifier.config import settings
from airpurifier.exceptions import ValidationError, NotFoundError, InvalidTransitionError
from airpurifier.models.command import Command, CommandName, CommandStatus, TERMINAL_STATUSES
from airpurifier.services import store

logger = logging.getLogger(__name__)

# Forward-only lifecycle. Re-applying the current status is accepted as a no-op.
ALLOWED_TRANSITIONS = {
    CommandStatus.pending.value: {
        CommandStatus.processing.value,
        CommandStatus.completed.value,
        CommandStatus.failed.value,
    },
    CommandStatus.processing.value: {
        CommandStatus.completed.value,
        CommandStatus.failed.value,
    },
    CommandStatus.completed.value: set(),
    CommandStatus.failed.value: set(),
}


def _normalize_switch(value: Any, on: str, off: str, command: str) -> str:
    if isinstance(value, str) and value.strip().lower() in (on.lower(), off.lower()):
        return on if value.strip().lower() == on.lower() else off
    raise ValidationError(f"Invalid value for '{command}': expected '{on}' or '{off}'")


def _normalize_threshold(value: Any) -> str:
    if isinstance(value, bool):
        raise ValidationError("Threshold must be an integer")
    if isinstance(value, float):
        if not value.is_integer():
            raise ValidationError("Threshold must be an integer")
        number = int(value)
    elif isinstance(value, int):
        number = value
    elif isinstance(value, str):
        try:
            number = int(value.strip())
        except ValueError:
            raise ValidationError("Threshold must be an integer")
    else:
        raise ValidationError("Threshold must be an integer")

    if not settings.THRESHOLD_MIN <= number <= settings.THRESHOLD_MAX:
        raise ValidationError(
            f"Threshold must be between {settings.THRESHOLD_MIN} and {settings.THRESHOLD_MAX}"
        )
    return str(number)


def validate_command(command: str, value: Any) -> Tuple[str, str]:
    """Return the canonical (command, value) pair or raise ValidationError."""
    if command == CommandName.fan.value:
        return command, _normalize_switch(value, "on", "off", command)
    if command == CommandName.auto.value:
        return command, _normalize_switch(value, "ON", "OFF", command)
    if command == CommandName.threshold.value:
        return command, _normalize_threshold(value)
    raise ValidationError(f"Unknown command '{command}'")


async def enqueue(
    db: AsyncSession,
    device_id: str,
    command: str,
    value: Any,
    now: Optional[datetime] = None,
) -> Command:
    command, value = validate_command(command, value)
    row = await store.insert_command(db, device_id, command, value, store.as_utc(now) or store.utcnow())
    logger.info("Queued command %s for %s: %s=%s", row.id, device_id, command, value)
    return row


async def drain_pending(db: AsyncSession, device_id: str) -> List[Command]:
    """All pending commands for the device, oldest first. Does not change any row."""
    return await store.commands_by_status(db, device_id, CommandStatus.pending.value)


async def set_status(
    db: AsyncSession,
    command_id: int,
    status: str,
    now: Optional[datetime] = None,
) -> Command:
    if status not in ALLOWED_TRANSITIONS:
        raise ValidationError(f"Invalid status '{status}'")

    command = await store.get_command(db, command_id)
    if not command:
        raise NotFoundError("Command not found")

    processed_at = (store.as_utc(now) or store.utcnow()) if status in TERMINAL_STATUSES else None
    # Compare-and-set; a lost race re-checks against the refreshed row
    while True:
        if command.status == status:
            return command
        if status not in ALLOWED_TRANSITIONS.get(command.status, set()):
            raise InvalidTransitionError(command.id, command.status, status)
        if await store.transition_command(db, command, command.status, status, processed_at):
            break
    logger.info("Command %s for %s is now %s", command.id, command.device_id, status)
    return command


async def list_commands(
    db: AsyncSession,
    device_id: Optional[str] = None,
    status: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[Command]:
    if status and status not in ALLOWED_TRANSITIONS:
        raise ValidationError(f"Invalid status '{status}'")
    return await store.list_commands(db, device_id=device_id, status=status, limit=limit, offset=offset)
