"""Bounded retry with linear backoff for remote calls."""

import asyncio
from typing import Awaitable, Callable, Tuple, Type, TypeVar

from gamal.services.exceptions import RemoteError, RequestTimeoutError
from gamal.utils.logging import get_logger


logger = get_logger(__name__)

T = TypeVar("T")

RETRYABLE_ERRORS: Tuple[Type[BaseException], ...] = (RequestTimeoutError, RemoteError)


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    backoff: float = 1.5,
    retry_on: Tuple[Type[BaseException], ...] = RETRYABLE_ERRORS,
    label: str = "request",
) -> T:
    """
    Run an async operation, retrying on transient errors.

    Before attempt N (N >= 2) the caller sleeps (N - 1) * backoff seconds, so
    three attempts mean two delays of 1.5s and 3.0s with the defaults. The
    operation is called afresh every time; nothing from a failed attempt is
    reused.

    Args:
        operation: Zero-argument coroutine factory issuing the request
        max_attempts: Total number of attempts (default: 3)
        backoff: Delay unit in seconds (default: 1.5)
        retry_on: Exception types that qualify for another attempt
        label: Name used in log events

    Returns:
        Result of the first successful attempt

    Raises:
        The last retryable error once attempts are exhausted, or any
        non-retryable error immediately.
    """
    attempt = 1
    while True:
        try:
            return await operation()
        except retry_on as e:
            if attempt >= max_attempts:
                logger.error(
                    "request_failed",
                    label=label,
                    attempts=attempt,
                    error=str(e),
                    error_type=type(e).__name__,
                )
                raise

            retry_delay = attempt * backoff
            logger.warning(
                "request_retry",
                label=label,
                attempt=attempt,
                max_attempts=max_attempts,
                error=str(e),
                retry_delay=retry_delay,
            )
            await asyncio.sleep(retry_delay)
            attempt += 1
