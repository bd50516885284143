"""
Online/Offline inference.

Two mechanisms with two different windows:

* ``is_online`` answers live queries: a device is online when it reported
  within ONLINE_WINDOW_SECONDS (2 minutes).
* ``mark_stale_offline`` converges the stored ``online`` flag: rows still
  flagged online with no report for OFFLINE_SWEEP_STALE_SECONDS (5 minutes)
  are flipped offline. ``OfflineSweeper`` runs it on an interval.

A device 3 minutes silent therefore reads offline live while its stored flag
is still true until the next sweep.
"""
import logging
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from airpurifier.config import settings
from airpurifier.exceptions import NotFoundError, StorageError
from airpurifier.models.system_event import SystemEvent
from airpurifier.services import store

logger = logging.getLogger(__name__)

ONLINE_WINDOW = timedelta(seconds=settings.ONLINE_WINDOW_SECONDS)
STALE_AFTER = timedelta(seconds=settings.OFFLINE_SWEEP_STALE_SECONDS)


def seen_within(last_seen: Optional[datetime], now: datetime, window: timedelta = ONLINE_WINDOW) -> bool:
    last_seen = store.as_utc(last_seen)
    if last_seen is None:
        return False
    return (store.as_utc(now) - last_seen) < window


async def is_online(db: AsyncSession, device_id: str, now: Optional[datetime] = None) -> bool:
    status = await store.get_status(db, device_id)
    if not status:
        return False
    return seen_within(status.last_seen, now or store.utcnow())


async def mark_stale_offline(
    db: AsyncSession, now: Optional[datetime] = None, commit: bool = True
) -> List[str]:
    """Flip the stored flag for every device silent longer than STALE_AFTER.

    Returns the ids that were flipped. With ``commit=False`` the caller owns
    the transaction.
    """
    cutoff = (store.as_utc(now) or store.utcnow()) - STALE_AFTER
    device_ids = await store.stale_online_device_ids(db, cutoff)
    if device_ids:
        await store.mark_offline(db, device_ids, cutoff, commit=commit)
        logger.info("Marking %d stale device(s) offline: %s", len(device_ids), ", ".join(device_ids))
    return device_ids


async def set_stored_liveness(
    db: AsyncSession, device_id: str, online: bool, now: Optional[datetime] = None
) -> None:
    """Force the stored flag. Forcing online also refreshes last_seen."""
    status = await store.get_status(db, device_id)
    if not status:
        raise NotFoundError("Device status not found")
    values: Dict[str, Any] = {"online": online, "system_mode": "online" if online else "offline"}
    if online:
        values["last_seen"] = store.as_utc(now) or store.utcnow()
    await store.upsert_status(db, device_id, values)
    logger.info("Stored liveness for %s forced %s", device_id, "online" if online else "offline")


async def liveness_report(db: AsyncSession, device_id: str, now: Optional[datetime] = None) -> Dict[str, Any]:
    now = store.as_utc(now) or store.utcnow()
    status = await store.get_status(db, device_id)
    last_seen = store.as_utc(status.last_seen) if status else None
    return {
        "device_id": device_id,
        "stored_online": bool(status.online) if status else False,
        "stored_system_mode": status.system_mode if status else None,
        "last_seen": last_seen,
        "is_online": seen_within(last_seen, now),
        "seconds_since_seen": (now - last_seen).total_seconds() if last_seen else None,
        "online_window_seconds": int(ONLINE_WINDOW.total_seconds()),
        "sweep_stale_seconds": int(STALE_AFTER.total_seconds()),
        "current_time": now,
    }


class OfflineSweeper:
    """Periodic ``mark_stale_offline`` with an injectable clock and interval."""

    job_id = "offline_sweep"

    def __init__(
        self,
        session_factory,
        interval_seconds: int = settings.OFFLINE_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], datetime] = store.utcnow,
        lock: Optional[Callable[[str, int], Any]] = None,
    ):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds
        self.clock = clock
        self.lock = lock

    async def run_once(self) -> List[str]:
        if self.lock is not None and not await self.lock(self.job_id, max(self.interval_seconds - 5, 1)):
            return []
        try:
            async with self.session_factory() as db:
                flipped = await mark_stale_offline(db, now=self.clock(), commit=False)
                for device_id in flipped:
                    db.add(SystemEvent(
                        level="warning",
                        source="offline_sweep",
                        event_type="device_offline",
                        resource_type="device",
                        resource_id=device_id,
                        message=f"{device_id} silent for over {int(STALE_AFTER.total_seconds())}s, marked offline",
                    ))
                if flipped:
                    await db.commit()
                return flipped
        except (StorageError, SQLAlchemyError) as e:
            logger.warning("Offline sweep failed: %s", e)
            from airpurifier.routers.system_events import log_system_event
            await log_system_event(
                "error", "offline_sweep", "sweep_failed",
                f"Offline sweep failed: {e}",
                session_factory=self.session_factory,
            )
            return []

    def start(self, scheduler) -> None:
        scheduler.add_job(
            self.run_once,
            "interval",
            seconds=self.interval_seconds,
            id=self.job_id,
            max_instances=1,
            replace_existing=True,
        )
        logger.info("Offline sweep registered (every %ss, stale after %ss)",
                    self.interval_seconds, int(STALE_AFTER.total_seconds()))
