from airpurifier.schemas.auth import Token, TokenData, LoginRequest, RegisterRequest, PasswordChangeRequest, RefreshTokenRequest
from airpurifier.schemas.user import UserCreate, UserUpdate, UserResponse, ProfileUpdate, AuditLogResponse
from airpurifier.schemas.device import DeviceRegister, DeviceUpdate, DeviceResponse, ShareRequest, ShareResponse
from airpurifier.schemas.reading import ReadingIn, IngestResponse, ReadingResponse, StatsResponse
from airpurifier.schemas.command import CommandCreate, CommandStatusUpdate, CommandResponse
from airpurifier.schemas.settings import SettingsUpdate, SettingsResponse

__all__ = [
    "Token", "TokenData", "LoginRequest", "RegisterRequest", "PasswordChangeRequest", "RefreshTokenRequest",
    "UserCreate", "UserUpdate", "UserResponse", "ProfileUpdate", "AuditLogResponse",
    "DeviceRegister", "DeviceUpdate", "DeviceResponse", "ShareRequest", "ShareResponse",
    "ReadingIn", "IngestResponse", "ReadingResponse", "StatsResponse",
    "CommandCreate", "CommandStatusUpdate", "CommandResponse",
    "SettingsUpdate", "SettingsResponse",
]
