"""Health Check Endpoints.

Liveness plus a storage check for load balancers and monitoring.
"""

import time
from datetime import datetime
from typing import Optional

import structlog
from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from logibrew.api.dependencies import get_decision_logger
from logibrew.audit.service import DecisionLogger
from logibrew.core.config import settings
from logibrew.core.exceptions import StorageError

logger = structlog.get_logger(__name__)

router = APIRouter()

# Startup time tracking
_startup_time: Optional[datetime] = None


def set_startup_time() -> None:
    """Set the application startup time."""
    global _startup_time
    _startup_time = datetime.utcnow()


# ============================================================================
# SCHEMAS
# ============================================================================


class ComponentHealth(BaseModel):
    """Health status of a component."""

    name: str
    status: str  # healthy, unhealthy
    latency_ms: Optional[float] = None
    message: Optional[str] = None


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = Field(description="Overall health status")
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    version: str = Field(default=settings.app_version)
    storage_backend: str
    anchor_enabled: bool
    pending_anchors: int = 0
    uptime_seconds: Optional[float] = None
    components: list[ComponentHealth] = Field(default_factory=list)


# ============================================================================
# ENDPOINTS
# ============================================================================


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(
    decisions: DecisionLogger = Depends(get_decision_logger),
) -> HealthResponse:
    store = decisions.store

    started = time.perf_counter()
    try:
        await store.list_shipments()
        storage = ComponentHealth(
            name="storage",
            status="healthy",
            latency_ms=round((time.perf_counter() - started) * 1000, 2),
        )
    except StorageError as e:
        logger.warning("health_storage_unhealthy", error=e.message)
        storage = ComponentHealth(name="storage", status="unhealthy", message=e.message)

    uptime = None
    if _startup_time is not None:
        uptime = (datetime.utcnow() - _startup_time).total_seconds()

    return HealthResponse(
        status="healthy" if storage.status == "healthy" else "degraded",
        storage_backend=store.backend,
        anchor_enabled=decisions.anchor_enabled,
        pending_anchors=decisions.pending_anchors,
        uptime_seconds=uptime,
        components=[storage],
    )
