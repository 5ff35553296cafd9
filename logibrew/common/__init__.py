"""
Common utilities.

Provides shared resilience patterns (retry with backoff, timeouts).
"""

from logibrew.common.resilience import (
    retry_with_backoff,
    run_with_timeout,
    RetryExhaustedError,
)

__all__ = [
    "retry_with_backoff",
    "run_with_timeout",
    "RetryExhaustedError",
]
