"""API Routes.

Aggregates all API routers.
"""

from fastapi import APIRouter

from logibrew.api.routes.chains import router as chains_router
from logibrew.api.routes.health import router as health_router
from logibrew.api.routes.metrics import router as metrics_router

router = APIRouter()

# Include all routers
router.include_router(health_router, tags=["Health"])
router.include_router(chains_router, prefix="/chains", tags=["Decision Chains"])
router.include_router(metrics_router, prefix="/metrics", tags=["Metrics"])

__all__ = ["router"]
