"""
Resilience patterns for storage and anchor calls.

Implements:
- Retry with exponential backoff (used by the append retry loop)
- Timeout handling (every storage call, anchor mirroring)

Storage calls are never retried implicitly: only the compare-and-append
cycle is, because a stale retried append is rejected, never duplicated.
"""

import asyncio
import random
from functools import wraps
from typing import Awaitable, Callable, TypeVar, ParamSpec, Optional

import structlog

logger = structlog.get_logger(__name__)

P = ParamSpec("P")
T = TypeVar("T")


# ============================================================================
# EXCEPTIONS
# ============================================================================


class RetryExhaustedError(Exception):
    """Raised when all retry attempts have been exhausted."""

    def __init__(self, attempts: int, last_error: Exception):
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"All {attempts} retry attempts exhausted. Last error: {last_error}"
        )


# ============================================================================
# RETRY WITH EXPONENTIAL BACKOFF
# ============================================================================


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 0.05,
    max_delay: float = 1.0,
    exponential_base: float = 2.0,
    retryable_exceptions: tuple = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None,
):
    """
    Decorator for retry with exponential backoff on async functions.

    Args:
        max_retries: Maximum number of retry attempts (total attempts = max_retries + 1)
        base_delay: Initial delay between retries (seconds)
        max_delay: Maximum delay between retries (seconds)
        exponential_base: Base for exponential backoff calculation
        retryable_exceptions: Tuple of exceptions that trigger retry
        on_retry: Optional callback called on each retry (attempt, exception)

    Usage:
        @retry_with_backoff(max_retries=3, retryable_exceptions=(ChainConflict,))
        async def append_next():
            ...

    Backoff formula: delay = min(base_delay * (exponential_base ** attempt), max_delay)
    Exceptions outside retryable_exceptions propagate immediately.
    """

    def decorator(func: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @wraps(func)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            last_exception: Optional[Exception] = None

            for attempt in range(max_retries + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as e:
                    last_exception = e

                    if attempt < max_retries:
                        delay = min(
                            base_delay * (exponential_base ** attempt),
                            max_delay,
                        )

                        # Jitter (±10%) so contending writers spread out
                        jitter = delay * 0.1 * (2 * random.random() - 1)
                        delay = max(0.0, delay + jitter)

                        logger.warning(
                            "retry_attempt",
                            function=func.__name__,
                            attempt=attempt + 1,
                            max_retries=max_retries,
                            delay_seconds=round(delay, 3),
                            error_type=type(e).__name__,
                            error=str(e)[:200],
                        )

                        if on_retry:
                            on_retry(attempt + 1, e)

                        await asyncio.sleep(delay)
                    else:
                        logger.error(
                            "retry_exhausted",
                            function=func.__name__,
                            attempts=max_retries + 1,
                            error_type=type(e).__name__,
                            error=str(e)[:200],
                        )

            raise RetryExhaustedError(max_retries + 1, last_exception)

        return wrapper

    return decorator


# ============================================================================
# TIMEOUT
# ============================================================================


async def run_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: float,
    on_timeout: Callable[[], Exception],
    operation: str = "operation",
) -> T:
    """
    Await with a deadline.

    On expiry the awaited call is cancelled and the exception built by
    on_timeout is raised; the operation is treated as failed.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.error(
            "operation_timeout",
            operation=operation,
            timeout_seconds=timeout_seconds,
        )
        raise on_timeout() from None
