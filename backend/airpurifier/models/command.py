import enum
from sqlalchemy import Column, Integer, String, DateTime, Index
from airpurifier.database import Base


class CommandName(str, enum.Enum):
    fan = "fan"
    auto = "auto"
    threshold = "threshold"


class CommandStatus(str, enum.Enum):
    pending = "pending"
    processing = "processing"
    completed = "completed"
    failed = "failed"


TERMINAL_STATUSES = {CommandStatus.completed.value, CommandStatus.failed.value}


class Command(Base):
    __tablename__ = "command_queue"

    id = Column(Integer, primary_key=True, index=True, autoincrement=True)
    device_id = Column(String(50), nullable=False)  # no FK: commands may precede first report
    command = Column(String(20), nullable=False)    # fan, auto, threshold
    value = Column(String(50), nullable=False)
    status = Column(String(20), nullable=False, default=CommandStatus.pending.value)
    created_at = Column(DateTime(timezone=True), nullable=False)
    processed_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        Index("ix_command_queue_device_status", "device_id", "status", "created_at"),
    )
