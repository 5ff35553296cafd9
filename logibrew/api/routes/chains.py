"""
Decision Chain API Routes.

Provides endpoints for:
- Logging a decision to a shipment's chain
- Retrieving a chain with its integrity verdict
- Checking a chain against an anchored hash root

A broken chain is returned as data (verification.valid = false with the
sequence at fault), never as an HTTP error.
"""

from typing import Any

import structlog
from fastapi import APIRouter, Depends, Path, status
from pydantic import BaseModel, Field

from logibrew.api.dependencies import get_decision_logger
from logibrew.audit.schemas import (
    ChainVerification,
    DecisionRecord,
    HashRoot,
    VerifiedChain,
)
from logibrew.audit.service import DecisionLogger

logger = structlog.get_logger(__name__)

router = APIRouter()


# ============================================================================
# REQUEST MODELS
# ============================================================================


class LogDecisionRequest(BaseModel):
    """Request body for logging a decision."""
    payload: dict[str, Any] = Field(
        default_factory=dict,
        description="Decision data: action, actor, outcome, delayCause, aiInsight, ...",
    )


# ============================================================================
# ENDPOINTS
# ============================================================================


@router.post(
    "/{shipment_id}/records",
    response_model=DecisionRecord,
    status_code=status.HTTP_201_CREATED,
    summary="Log a decision",
    description="Append a decision to the shipment's hash chain.",
)
async def log_decision(
    request: LogDecisionRequest,
    shipment_id: str = Path(..., description="Shipment identifier"),
    decisions: DecisionLogger = Depends(get_decision_logger),
) -> DecisionRecord:
    return await decisions.log(shipment_id, request.payload)


@router.get(
    "/{shipment_id}",
    response_model=VerifiedChain,
    summary="Get verified chain",
    description="Full chain for a shipment together with its integrity verdict.",
)
async def get_chain(
    shipment_id: str = Path(..., description="Shipment identifier"),
    decisions: DecisionLogger = Depends(get_decision_logger),
) -> VerifiedChain:
    logger.info("chain_requested", shipment_id=shipment_id)
    return await decisions.get_verified_chain(shipment_id)


@router.post(
    "/{shipment_id}/anchor-check",
    response_model=ChainVerification,
    summary="Verify chain against an anchored root",
    description="Detects wholesale rewrites of the chain store that re-hash every record.",
)
async def check_anchor(
    root: HashRoot,
    shipment_id: str = Path(..., description="Shipment identifier"),
    decisions: DecisionLogger = Depends(get_decision_logger),
) -> ChainVerification:
    return await decisions.verify_against_anchor(shipment_id, root)
