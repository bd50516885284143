from airpurifier.models.user import User, AuditLog
from airpurifier.models.device import Device, CurrentStatus, DeviceSettings, DeviceShare
from airpurifier.models.reading import Reading
from airpurifier.models.command import Command, CommandName, CommandStatus
from airpurifier.models.system_event import SystemEvent

__all__ = [
    "User", "AuditLog",
    "Device", "CurrentStatus", "DeviceSettings", "DeviceShare",
    "Reading",
    "Command", "CommandName", "CommandStatus",
    "SystemEvent",
]
