"""Core configuration and error taxonomy."""

from logibrew.core.config import Settings, get_settings, settings
from logibrew.core.exceptions import (
    ErrorCode,
    ErrorResponse,
    LogiBrewError,
    ValidationError,
    SerializationError,
    ChainConflict,
    SequenceConflict,
    LinkageConflict,
    AppendContention,
    StorageError,
    StorageTimeout,
    UnreadableRecord,
    VersionConflict,
)

__all__ = [
    "Settings",
    "get_settings",
    "settings",
    "ErrorCode",
    "ErrorResponse",
    "LogiBrewError",
    "ValidationError",
    "SerializationError",
    "ChainConflict",
    "SequenceConflict",
    "LinkageConflict",
    "AppendContention",
    "StorageError",
    "StorageTimeout",
    "UnreadableRecord",
    "VersionConflict",
]
