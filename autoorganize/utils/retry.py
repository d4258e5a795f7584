"""
Retry helper with exponential backoff.

Only errors listed in ``retry_on`` are retried; anything else propagates
on the first attempt.
"""

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

from autoorganize.utils.exceptions import StorageFailure
from autoorganize.utils.logger import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    operation_name: str,
    max_attempts: int = 3,
    base_delay: float = 0.5,
    retry_on: tuple[type[BaseException], ...] = (StorageFailure,),
    attempts_out: list[int] | None = None,
) -> T:
    """
    Run an async operation, retrying retryable errors with exponential backoff.

    Args:
        operation: Zero-argument async callable
        operation_name: Name for logging
        max_attempts: Total attempts including the first
        base_delay: Delay before the second attempt; doubles afterwards
        retry_on: Exception types that are retried
        attempts_out: Optional list; the number of attempts made is appended

    Returns:
        Result of operation

    Raises:
        The last retryable error once attempts are exhausted, or any
        non-retryable error immediately.
    """
    attempt = 0
    try:
        while True:
            attempt += 1
            try:
                return await operation()
            except retry_on as e:
                if attempt >= max_attempts:
                    logger.error(
                        f"{operation_name} failed after {max_attempts} attempts",
                        extra={
                            "operation": operation_name,
                            "error": str(e),
                            "error_type": type(e).__name__,
                        },
                    )
                    raise
                delay = base_delay * (2 ** (attempt - 1))
                logger.warning(
                    f"{operation_name} failed (attempt {attempt}/{max_attempts}): {e}. "
                    f"Retrying in {delay}s...",
                    extra={
                        "operation": operation_name,
                        "attempt": attempt,
                        "error_type": type(e).__name__,
                    },
                )
                await asyncio.sleep(delay)
    finally:
        if attempts_out is not None:
            attempts_out.append(attempt)
