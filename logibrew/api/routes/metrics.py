"""Dashboard metrics endpoint."""

from typing import Optional

from fastapi import APIRouter, Depends, Query

from logibrew.api.dependencies import get_metrics_aggregator
from logibrew.metrics.aggregator import MetricsAggregator
from logibrew.metrics.schemas import MetricsSnapshot

router = APIRouter()


@router.get(
    "/dashboard",
    response_model=MetricsSnapshot,
    summary="Dashboard metrics",
    description="Delay patterns, response times, compliance rate and trend forecast.",
)
async def get_dashboard(
    shipment_ids: Optional[list[str]] = Query(
        default=None,
        description="Chains to include (default: all)",
    ),
    window_days: Optional[int] = Query(default=None, ge=1, le=365),
    as_of: Optional[int] = Query(
        default=None,
        ge=0,
        description="Window end, epoch milliseconds (default: now)",
    ),
    aggregator: MetricsAggregator = Depends(get_metrics_aggregator),
) -> MetricsSnapshot:
    return await aggregator.build_metrics(
        shipment_ids=shipment_ids,
        window_days=window_days,
        as_of=as_of,
    )
