"""Retry utility with exponential backoff.

Stage-scoped retries for external service calls. Delay between attempts
follows base_delay * 2^attempt with no jitter. The last error is always
re-raised unchanged so the classifier sees the original message.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def execute_with_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    base_delay: float = 1.0,
    label: str = "operation",
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
) -> T:
    """Invoke an async operation, retrying failures with exponential delay.

    Delay follows the formula: base_delay * 2^attempt

    Args:
        operation: Zero-argument callable returning an awaitable.
        max_attempts: Total number of calls, including the first. Values
            below 1 are treated as 1.
        base_delay: Delay in seconds before the first retry.
        label: Name used in retry log lines (usually the stage name).
        retryable_exceptions: Exception types eligible for retry. If None,
            every exception is retried. Others are re-raised immediately.

    Returns:
        Whatever the operation returns on its first successful call.

    Raises:
        Exception: The error from the final attempt, unchanged except for
            a _retry_count attribute holding the number of retries spent.
    """
    attempts = max(1, max_attempts)
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            permanent = retryable_exceptions is not None and not isinstance(
                exc, retryable_exceptions
            )
            if permanent or attempt + 1 >= attempts:
                exc._retry_count = attempt  # type: ignore[attr-defined]
                raise
            delay = base_delay * (2**attempt)
            logger.warning(
                "Retry %d/%d for %s after %.1fs: %s",
                attempt + 1,
                attempts - 1,
                label,
                delay,
                exc,
                extra={"stage": label, "attempt": attempt + 1},
            )
            await asyncio.sleep(delay)
            attempt += 1


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
) -> Callable:
    """Decorator form of execute_with_backoff for adapter methods.

    Args:
        max_retries: Retries after the first call (default 3).
        base_delay: Base delay in seconds before first retry (default 1.0).
        retryable_exceptions: Exception types eligible for retry. If None,
            all exceptions are retried.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await execute_with_backoff(
                lambda: func(*args, **kwargs),
                max_attempts=max_retries + 1,
                base_delay=base_delay,
                label=func.__name__,
                retryable_exceptions=retryable_exceptions,
            )

        return wrapper

    return decorator
