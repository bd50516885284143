from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime
import re
from airpurifier.config import settings

DEVICE_ID_RE = re.compile(r"^[A-Za-z0-9_.:-]{1,50}$")


def check_device_id(v: str) -> str:
    if not DEVICE_ID_RE.match(v):
        raise ValueError("Device ID must be 1-50 characters: letters, digits, '_', '.', ':', '-'")
    return v


class DeviceRegister(BaseModel):
    device_id: Optional[str] = None
    device_name: str
    location: str
    username: str
    password: str

    @field_validator("device_id")
    @classmethod
    def validate_device_id(cls, v: Optional[str]) -> Optional[str]:
        if v is None or not v.strip():
            return None
        return check_device_id(v.strip())

    @field_validator("device_name", "location", "username")
    @classmethod
    def not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Field must not be empty")
        return v

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        if len(v) < settings.DEVICE_PASSWORD_MIN_LENGTH:
            raise ValueError(
                f"Password must be at least {settings.DEVICE_PASSWORD_MIN_LENGTH} characters long"
            )
        return v


class DeviceUpdate(BaseModel):
    name: Optional[str] = None
    location: Optional[str] = None


class DeviceStatusResponse(BaseModel):
    system_mode: Optional[str] = None
    input_air_quality: Optional[float] = None
    output_air_quality: Optional[float] = None
    efficiency: Optional[float] = None
    fan_state: Optional[bool] = None
    auto_mode: Optional[bool] = None
    threshold: Optional[int] = None
    online: bool = False
    last_seen: Optional[datetime] = None
    ip_address: Optional[str] = None

    model_config = {"from_attributes": True}


class DeviceResponse(BaseModel):
    id: int
    device_id: str
    name: Optional[str] = None
    location: Optional[str] = None
    owner_id: Optional[int] = None
    owner_username: Optional[str] = None
    device_username: Optional[str] = None
    created_at: Optional[datetime] = None
    access_type: str = "owner"
    is_online: bool = False
    status: Optional[DeviceStatusResponse] = None

    model_config = {"from_attributes": True}


class ShareRequest(BaseModel):
    shared_username: str


class ShareResponse(BaseModel):
    id: int
    device_id: str
    shared_user_id: int
    shared_username: Optional[str] = None
    permissions: str
    created_at: Optional[datetime] = None


class LivenessResponse(BaseModel):
    device_id: str
    stored_online: bool
    stored_system_mode: Optional[str] = None
    last_seen: Optional[datetime] = None
    is_online: bool
    seconds_since_seen: Optional[float] = None
    online_window_seconds: int
    sweep_stale_seconds: int
    current_time: datetime
