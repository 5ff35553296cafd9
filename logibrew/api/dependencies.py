"""
Request-scoped access to the services built at startup.

The application lifespan stores one DecisionLogger and one
MetricsAggregator on app.state; routes resolve them per request.
"""

from fastapi import Request

from logibrew.audit.service import DecisionLogger
from logibrew.metrics.aggregator import MetricsAggregator


def get_decision_logger(request: Request) -> DecisionLogger:
    return request.app.state.decision_logger


def get_metrics_aggregator(request: Request) -> MetricsAggregator:
    return request.app.state.metrics_aggregator
