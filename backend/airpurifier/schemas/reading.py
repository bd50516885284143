from pydantic import BaseModel, field_validator
from typing import Any, Dict, List, Optional
from datetime import datetime
from airpurifier.config import settings
from airpurifier.schemas.command import CommandResponse
from airpurifier.schemas.device import check_device_id

SYSTEM_MODES = ("online", "offline")


class ReadingIn(BaseModel):
    """A device's self-reported snapshot. Booleans accept true/false, 1/0 and their string forms."""
    device_id: str = settings.DEFAULT_DEVICE_ID
    system_mode: str = "online"
    input_air_quality: float = 0.0
    output_air_quality: float = 0.0
    efficiency: float = 0.0
    fan_state: bool = False
    auto_mode: bool = False

    @field_validator("device_id", mode="before")
    @classmethod
    def validate_device_id(cls, v: Any) -> Any:
        if v is None or (isinstance(v, str) and not v.strip()):
            return settings.DEFAULT_DEVICE_ID
        return check_device_id(str(v).strip())

    @field_validator("system_mode")
    @classmethod
    def validate_mode(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in SYSTEM_MODES:
            raise ValueError("system_mode must be 'online' or 'offline'")
        return v

    @field_validator("input_air_quality", "output_air_quality")
    @classmethod
    def validate_quality(cls, v: float) -> float:
        if v < 0 or v > settings.AIR_QUALITY_MAX:
            raise ValueError(f"Air quality must be between 0 and {settings.AIR_QUALITY_MAX:g}")
        return v


class IngestResponse(BaseModel):
    success: bool = True
    message: str
    reading_id: int
    device_created: bool
    status_updated: bool
    pending_commands: int
    commands: List[CommandResponse]


class ReadingResponse(BaseModel):
    id: int
    device_id: str
    system_mode: Optional[str] = None
    input_air_quality: Optional[float] = None
    output_air_quality: Optional[float] = None
    efficiency: Optional[float] = None
    fan_state: Optional[bool] = None
    auto_mode: Optional[bool] = None
    timestamp: datetime

    model_config = {"from_attributes": True}


class StatsResponse(BaseModel):
    device_id: str
    hours: int
    avg_input_quality: Optional[float] = None
    avg_output_quality: Optional[float] = None
    avg_efficiency: Optional[float] = None
    min_input_quality: Optional[float] = None
    max_input_quality: Optional[float] = None
    reading_count: int
    fan_on_count: int
    online_count: int


class DevicePollResponse(BaseModel):
    """Stored state in the shape the firmware parses: fan as 1/0, auto as ON/OFF."""
    system_mode: str
    input_air_quality: float
    output_air_quality: float
    efficiency: float
    fan: int
    auto_mode: str
    threshold: int
    backend_url: str
    timestamp: datetime


class DeviceStatusView(BaseModel):
    device_id: str
    status: str
    is_online: bool
    data: Optional[Dict[str, Any]] = None
