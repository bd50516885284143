"""
Error taxonomy for the device-state and command-queue core.

Services raise these; ``main.py`` maps them onto HTTP responses.
"""
from typing import Optional


class PurifierError(Exception):
    """Base class for domain errors."""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ValidationError(PurifierError):
    """Malformed command or out-of-range setting. Raised before any write."""


class NotFoundError(PurifierError):
    """A referenced command or device id has no matching row."""


class InvalidTransitionError(PurifierError):
    """A command status change that the forward-only lifecycle does not allow."""

    def __init__(self, command_id: int, current: str, requested: str):
        super().__init__(f"Command {command_id} cannot move from '{current}' to '{requested}'")
        self.command_id = command_id
        self.current = current
        self.requested = requested


class StorageError(PurifierError):
    """The persistence layer failed. Never retried inside the core."""


class PartialIngestError(StorageError):
    """The reading was stored but the current-status upsert failed."""

    def __init__(self, message: str, reading_id: Optional[int] = None, device_created: bool = False):
        super().__init__(message)
        self.reading_id = reading_id
        self.device_created = device_created
