"""Dashboard metrics and rule-based trend forecasting over decision chains."""

from logibrew.metrics.aggregator import MetricsAggregator
from logibrew.metrics.forecast import TrendForecaster
from logibrew.metrics.schemas import (
    ChainIntegrity,
    DelayPattern,
    MetricsSnapshot,
    MetricsSummary,
    RecentActivity,
    TrendForecast,
)

__all__ = [
    "MetricsAggregator",
    "TrendForecaster",
    "ChainIntegrity",
    "DelayPattern",
    "MetricsSnapshot",
    "MetricsSummary",
    "RecentActivity",
    "TrendForecast",
]
