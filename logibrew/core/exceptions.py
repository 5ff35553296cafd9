"""
Application Exceptions Module.

Centralized exception definitions with:
- Structured error responses
- HTTP status code mapping
- Error codes for client handling

Chain verification failures are NOT exceptions: detecting tampering is
the purpose of the system, so the verifier reports it as data.
"""

from datetime import datetime
from typing import Optional, Dict, Any
from enum import Enum

from fastapi import Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
import structlog

logger = structlog.get_logger(__name__)


# ============================================================================
# ERROR CODES
# ============================================================================


class ErrorCode(str, Enum):
    """Application error codes."""

    # General errors (1xxx)
    INTERNAL_ERROR = "E1000"
    VALIDATION_ERROR = "E1001"

    # Chain errors (2xxx)
    SERIALIZATION_ERROR = "E2000"
    SEQUENCE_CONFLICT = "E2001"
    LINKAGE_CONFLICT = "E2002"
    APPEND_CONTENTION = "E2003"

    # Storage errors (5xxx)
    STORAGE_ERROR = "E5000"
    STORAGE_TIMEOUT = "E5001"
    VERSION_CONFLICT = "E5002"
    RECORD_UNREADABLE = "E5003"


# ============================================================================
# ERROR RESPONSE MODEL
# ============================================================================


class ErrorDetail(BaseModel):
    """Detailed error information."""

    code: str
    message: str
    field: Optional[str] = None
    details: Optional[Dict[str, Any]] = None


class ErrorResponse(BaseModel):
    """
    Standard error response.

    All API errors return this unified format for consistency.
    """

    error: ErrorDetail
    request_id: Optional[str] = None
    timestamp: Optional[str] = None


# ============================================================================
# BASE EXCEPTION
# ============================================================================


class LogiBrewError(Exception):
    """Base exception for the decision chain service."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.INTERNAL_ERROR,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None,
        field: Optional[str] = None,
    ):
        self.message = message
        self.code = code
        self.status_code = status_code
        self.details = details or {}
        self.field = field
        super().__init__(message)

    def to_response(self, request_id: Optional[str] = None) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            error=ErrorDetail(
                code=self.code.value,
                message=self.message,
                field=self.field,
                details=self.details,
            ),
            request_id=request_id,
            timestamp=datetime.utcnow().isoformat(),
        )


# ============================================================================
# SPECIFIC EXCEPTIONS
# ============================================================================


class ValidationError(LogiBrewError):
    """Invalid caller input (bad shipment id, bad range, ...)."""

    def __init__(
        self,
        message: str,
        field: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=ErrorCode.VALIDATION_ERROR,
            status_code=400,
            field=field,
            details=details,
        )


class SerializationError(LogiBrewError):
    """Payload cannot be canonically serialized; nothing was written."""

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=f"Payload cannot be canonically serialized: {reason}",
            code=ErrorCode.SERIALIZATION_ERROR,
            status_code=422,
            field="payload",
            details={"reason": reason, **(details or {})},
        )


class ChainConflict(LogiBrewError):
    """Compare-and-append rejected: the chain tail moved."""

    def __init__(
        self,
        message: str,
        code: ErrorCode,
        shipment_id: str,
        details: Optional[Dict[str, Any]] = None,
    ):
        self.shipment_id = shipment_id
        super().__init__(
            message=message,
            code=code,
            status_code=409,
            details={"shipment_id": shipment_id, **(details or {})},
        )


class SequenceConflict(ChainConflict):
    """Record sequence does not equal the current chain length."""

    def __init__(self, shipment_id: str, expected: int, actual: int):
        self.expected = expected
        self.actual = actual
        super().__init__(
            message=f"Sequence conflict on {shipment_id}: expected {expected}, got {actual}",
            code=ErrorCode.SEQUENCE_CONFLICT,
            shipment_id=shipment_id,
            details={"expected_sequence": expected, "actual_sequence": actual},
        )


class LinkageConflict(ChainConflict):
    """Record previousHash does not equal the current tail hash."""

    def __init__(self, shipment_id: str, expected_hash: str, actual_hash: str):
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            message=(
                f"Linkage conflict on {shipment_id}: expected previousHash "
                f"{expected_hash[:16]}..., got {actual_hash[:16]}..."
            ),
            code=ErrorCode.LINKAGE_CONFLICT,
            shipment_id=shipment_id,
            details={"expected_previous_hash": expected_hash, "actual_previous_hash": actual_hash},
        )


class AppendContention(LogiBrewError):
    """Concurrent writers kept winning; retry budget exhausted."""

    def __init__(self, shipment_id: str, attempts: int):
        self.shipment_id = shipment_id
        self.attempts = attempts
        super().__init__(
            message=f"Could not append to {shipment_id} after {attempts} attempts",
            code=ErrorCode.APPEND_CONTENTION,
            status_code=409,
            details={"shipment_id": shipment_id, "attempts": attempts},
        )


class StorageError(LogiBrewError):
    """Storage collaborator failure."""

    def __init__(
        self,
        message: str,
        code: ErrorCode = ErrorCode.STORAGE_ERROR,
        status_code: int = 503,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message,
            code=code,
            status_code=status_code,
            details=details,
        )


class StorageTimeout(StorageError):
    """A storage call exceeded its timeout; treated as failed."""

    def __init__(self, operation: str, timeout_seconds: float, key: Optional[str] = None):
        self.operation = operation
        self.timeout_seconds = timeout_seconds
        super().__init__(
            message=f"Storage {operation} timed out after {timeout_seconds}s",
            code=ErrorCode.STORAGE_TIMEOUT,
            status_code=504,
            details={"operation": operation, "timeout_seconds": timeout_seconds, "key": key},
        )


class UnreadableRecord(StorageError):
    """A stored record no longer matches the record schema."""

    def __init__(self, shipment_id: str, sequence: int, reason: str):
        self.shipment_id = shipment_id
        self.sequence = sequence
        self.reason = reason
        super().__init__(
            message=f"Record {sequence} of {shipment_id} is unreadable",
            code=ErrorCode.RECORD_UNREADABLE,
            details={"shipment_id": shipment_id, "sequence": sequence, "reason": reason},
        )


class VersionConflict(StorageError):
    """Conditional put failed: stored version differs from ifMatch."""

    def __init__(self, key: str, expected: Optional[int], actual: Optional[int]):
        self.key = key
        self.expected = expected
        self.actual = actual
        super().__init__(
            message=f"Version conflict on {key}: expected {expected}, found {actual}",
            code=ErrorCode.VERSION_CONFLICT,
            status_code=409,
            details={"key": key, "expected_version": expected, "actual_version": actual},
        )


# ============================================================================
# EXCEPTION HANDLERS
# ============================================================================


async def logibrew_exception_handler(
    request: Request,
    exc: LogiBrewError,
) -> JSONResponse:
    """Handle LogiBrewError exceptions."""
    request_id = getattr(request.state, "request_id", None)

    log = logger.warning if exc.status_code < 500 else logger.error
    log(
        "logibrew_error",
        error_code=exc.code.value,
        message=exc.message,
        status_code=exc.status_code,
        request_id=request_id,
        details=exc.details,
    )

    return JSONResponse(
        status_code=exc.status_code,
        content=exc.to_response(request_id).model_dump(),
    )


async def generic_exception_handler(
    request: Request,
    exc: Exception,
) -> JSONResponse:
    """Handle generic exceptions."""
    request_id = getattr(request.state, "request_id", None)

    logger.exception(
        "unhandled_exception",
        error=str(exc),
        request_id=request_id,
    )

    error = LogiBrewError(
        message="An internal error occurred",
        code=ErrorCode.INTERNAL_ERROR,
        status_code=500,
    )

    return JSONResponse(
        status_code=500,
        content=error.to_response(request_id).model_dump(),
    )


def register_exception_handlers(app):
    """Register exception handlers with FastAPI app."""
    app.add_exception_handler(LogiBrewError, logibrew_exception_handler)
    app.add_exception_handler(Exception, generic_exception_handler)
