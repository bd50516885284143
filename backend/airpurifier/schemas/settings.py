from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime
from airpurifier.config import settings


class SettingsUpdate(BaseModel):
    threshold: int

    @field_validator("threshold")
    @classmethod
    def validate_threshold(cls, v: int) -> int:
        if not settings.THRESHOLD_MIN <= v <= settings.THRESHOLD_MAX:
            raise ValueError(
                f"Threshold must be between {settings.THRESHOLD_MIN} and {settings.THRESHOLD_MAX}"
            )
        return v


class SettingsResponse(BaseModel):
    device_id: str
    threshold: int
    updated_at: Optional[datetime] = None
    device_name: Optional[str] = None
    location: Optional[str] = None
