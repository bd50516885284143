from pydantic import BaseModel, field_validator
from typing import Any, Optional
from datetime import datetime
from airpurifier.schemas.device import check_device_id


class CommandCreate(BaseModel):
    device_id: str
    command: str
    value: Any  # checked per command by the queue, not here

    @field_validator("device_id")
    @classmethod
    def validate_device_id(cls, v: str) -> str:
        return check_device_id(v.strip())


class CommandStatusUpdate(BaseModel):
    status: str


class CommandResponse(BaseModel):
    id: int
    device_id: str
    command: str
    value: str
    status: str
    created_at: datetime
    processed_at: Optional[datetime] = None

    model_config = {"from_attributes": True}
