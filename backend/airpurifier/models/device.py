from sqlalchemy import Column, Integer, String, Boolean, DateTime, ForeignKey, Float, UniqueConstraint
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from airpurifier.database import Base


class Device(Base):
    __tablename__ = "devices"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(String(50), unique=True, nullable=False, index=True)
    name = Column(String(255))
    location = Column(String(255))
    owner_id = Column(Integer, ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)
    device_username = Column(String(100), nullable=True)
    device_password = Column(String(255), nullable=True)  # Fernet-encrypted
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    owner = relationship("User", back_populates="devices")
    status = relationship(
        "CurrentStatus", back_populates="device", uselist=False,
        cascade="all, delete-orphan", passive_deletes=True,
    )
    settings = relationship(
        "DeviceSettings", back_populates="device", uselist=False,
        cascade="all, delete-orphan", passive_deletes=True,
    )
    readings = relationship("Reading", cascade="all, delete-orphan", passive_deletes=True)
    shares = relationship("DeviceShare", back_populates="device", cascade="all, delete-orphan", passive_deletes=True)


class CurrentStatus(Base):
    """Latest known snapshot of a device. One row per device, upserted."""
    __tablename__ = "current_status"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(
        String(50), ForeignKey("devices.device_id", ondelete="CASCADE"),
        unique=True, nullable=False, index=True,
    )
    system_mode = Column(String(20), default="offline")  # online, offline
    input_air_quality = Column(Float, default=0.0)
    output_air_quality = Column(Float, default=0.0)
    efficiency = Column(Float, default=0.0)
    fan_state = Column(Boolean, default=False)
    auto_mode = Column(Boolean, default=True)
    threshold = Column(Integer, nullable=True)
    online = Column(Boolean, default=False, nullable=False, index=True)
    last_seen = Column(DateTime(timezone=True), nullable=True, index=True)
    ip_address = Column(String(50), nullable=True)

    device = relationship("Device", back_populates="status")


class DeviceSettings(Base):
    __tablename__ = "settings"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(
        String(50), ForeignKey("devices.device_id", ondelete="CASCADE"),
        unique=True, nullable=False, index=True,
    )
    threshold = Column(Integer, nullable=False, default=300)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    device = relationship("Device", back_populates="settings")


class DeviceShare(Base):
    """View-only access to a device granted by its owner."""
    __tablename__ = "device_shares"

    id = Column(Integer, primary_key=True, index=True)
    device_id = Column(String(50), ForeignKey("devices.device_id", ondelete="CASCADE"), nullable=False, index=True)
    owner_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    shared_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    permissions = Column(String(20), default="view_only")
    created_at = Column(DateTime(timezone=True), server_default=func.now())

    device = relationship("Device", back_populates="shares")
    shared_user = relationship("User", foreign_keys=[shared_user_id])

    __table_args__ = (
        UniqueConstraint("device_id", "shared_user_id", name="uq_device_share_user"),
    )
