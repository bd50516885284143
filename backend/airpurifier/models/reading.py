"""Historical sensor readings. Append-only."""
from sqlalchemy import Column, Integer, String, Float, Boolean, DateTime, ForeignKey, Index
from airpurifier.database import Base


class Reading(Base):
    __tablename__ = "readings"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(String(50), ForeignKey("devices.device_id", ondelete="CASCADE"), nullable=False)
    system_mode = Column(String(20))
    input_air_quality = Column(Float)
    output_air_quality = Column(Float)
    efficiency = Column(Float)
    fan_state = Column(Boolean, default=False)
    auto_mode = Column(Boolean, default=False)
    timestamp = Column(DateTime(timezone=True), nullable=False)

    __table_args__ = (
        Index("ix_readings_device_ts", "device_id", "timestamp"),
    )
