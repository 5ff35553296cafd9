"""
Dashboard Metrics Schemas.

Every number is derived from decision chain records. Snapshots are
computed on demand and never persisted.

If no records fall in the window, all numbers are 0 with a helpful message.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class MetricsModel(BaseModel):
    """Base for metrics schemas: camelCase on the wire."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
    )


class DelayPattern(MetricsModel):
    """One bar of the delay-cause histogram."""
    cause: str
    count: int = Field(ge=0)


class RecentActivity(MetricsModel):
    """A recently logged decision."""
    shipment_id: str
    sequence: int
    action: str = "decision"
    status: str = "completed"
    timestamp: int
    insight: Optional[Any] = Field(
        default=None,
        description="AI-produced content from the payload, passed through verbatim",
    )


class MetricsSummary(MetricsModel):
    total_shipments: int = 0
    total_records: int = 0
    avg_response_time: float = Field(default=0.0, description="Hours")
    response_time_samples: int = 0
    compliance_rate: float = Field(default=0.0, description="Percent, 0-100")
    delay_rate: float = Field(default=0.0, description="Percent, 0-100")


class ForecastStatistics(MetricsModel):
    delay_rate: float = 0.0
    previous_delay_rate: float = 0.0
    compliance_rate: float = 0.0
    trend: str = "stable"  # "rising" | "falling" | "stable"


class Prediction(MetricsModel):
    severity: str  # "high" | "medium" | "low"
    message: str
    metric: str = "delay_rate"


class Recommendation(MetricsModel):
    cause: str
    description: str
    priority: str  # "high" | "medium" | "low"


class TrendForecast(MetricsModel):
    """Rule-based outlook for the next period. No model inference."""
    period: str
    window_days: int
    severity: str = "low"
    statistics: ForecastStatistics = Field(default_factory=ForecastStatistics)
    top_delay_causes: list[DelayPattern] = Field(default_factory=list)
    predictions: list[Prediction] = Field(default_factory=list)
    recommendations: list[Recommendation] = Field(default_factory=list)


class ChainIntegrity(MetricsModel):
    """Verification verdict for one chain read during aggregation."""
    shipment_id: str
    valid: bool
    records_checked: int = 0
    broken_at_sequence: Optional[int] = None
    error_type: Optional[str] = None


class MetricsSnapshot(MetricsModel):
    """
    Dashboard snapshot over a set of chains and a time window.

    Identical inputs (shipment ids, window, as_of) over unchanged chains
    produce equal snapshots.
    """
    summary: MetricsSummary = Field(default_factory=MetricsSummary)
    delay_patterns: list[DelayPattern] = Field(default_factory=list)
    recent_activities: list[RecentActivity] = Field(default_factory=list)
    forecast: TrendForecast
    integrity: list[ChainIntegrity] = Field(default_factory=list)

    window_days: int
    window_start: int = Field(description="Epoch milliseconds, inclusive")
    window_end: int = Field(description="Epoch milliseconds, inclusive")
    last_updated: datetime
    has_data: bool = False
    message: Optional[str] = None
