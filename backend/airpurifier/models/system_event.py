from sqlalchemy import Column, Integer, String, DateTime, Text
from sqlalchemy.sql import func
from airpurifier.database import Base


class SystemEvent(Base):
    """
    Operational log for automated background actions such as the offline
    sweep flipping a device's stored online flag.

    Separate from AuditLog, which records user-initiated actions.
    level:   info | warning | error
    source:  offline_sweep
    """
    __tablename__ = "system_events"

    id            = Column(Integer, primary_key=True, index=True)
    timestamp     = Column(DateTime(timezone=True), server_default=func.now(), index=True)
    level         = Column(String(20), nullable=False, index=True)
    source        = Column(String(50), nullable=False, index=True)
    event_type    = Column(String(100), nullable=False)               # device_offline, sweep_failed
    resource_type = Column(String(50), nullable=True)
    resource_id   = Column(String(200), nullable=True)
    message       = Column(String(500), nullable=False)
    details       = Column(Text, nullable=True)
