"""
Bounded exponential backoff for async upstream calls.

Errors that mean the request itself is wrong (bad request, bad credentials,
forbidden, missing configuration) are raised on the spot. Everything else is
retried after ``base_delay_ms * 2**attempt`` milliseconds until the retries
run out, at which point the last error is raised unchanged.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from sheet_grader.grading.llm_client import (
    NON_RETRYABLE_STATUSES,
    ConfigurationError,
    LLMError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """
    Classify an error raised by an upstream call.

    Args:
        error: The exception raised by the operation.

    Returns:
        False for configuration errors, request errors and HTTP 400/401/403;
        True for anything else.
    """
    if isinstance(error, ConfigurationError):
        return False
    if isinstance(error, LLMError):
        return error.retryable
    status = getattr(error, "status_code", None) or getattr(error, "status", None)
    return status not in NON_RETRYABLE_STATUSES


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry configuration.

    Attributes:
        max_retries: Retries after the first attempt (total attempts = max_retries + 1).
        base_delay_ms: Delay before the first retry, doubled for each later one.
    """

    max_retries: int = 3
    base_delay_ms: int = 1000

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        if self.base_delay_ms < 0:
            raise ValueError("base_delay_ms must be >= 0")

    def calculate_delay(self, attempt: int) -> float:
        """
        Calculate delay for exponential backoff.

        Args:
            attempt: Current attempt number (0-indexed).

        Returns:
            Delay in seconds.
        """
        return self.base_delay_ms * (2**attempt) / 1000

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """
        Run ``operation`` until it succeeds, fails fatally, or retries are exhausted.

        Args:
            operation: Zero-argument coroutine function.

        Returns:
            Whatever the operation returns.

        Raises:
            The first non-retryable error, or the last error once retries run out.
        """
        attempts = self.max_retries + 1

        for attempt in range(attempts):
            try:
                return await operation()
            except Exception as e:
                if not is_retryable(e):
                    logger.error("Non-retryable error: %s: %s", type(e).__name__, e)
                    raise

                if attempt == self.max_retries:
                    logger.error(
                        "Giving up after %d attempts, last error: %s: %s",
                        attempts,
                        type(e).__name__,
                        e,
                    )
                    raise

                delay = self.calculate_delay(attempt)
                logger.warning(
                    "Completion call failed (attempt %d/%d): %s. Retrying in %dms...",
                    attempt + 1,
                    attempts,
                    e,
                    int(delay * 1000),
                )
                await asyncio.sleep(delay)

        # Should not reach here
        raise AssertionError("retry loop exited without a result")


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    max_retries: int = 3,
    base_delay_ms: int = 1000,
) -> T:
    """
    Run an async operation with bounded exponential backoff.

    Args:
        operation: Zero-argument coroutine function.
        max_retries: Retries after the first attempt.
        base_delay_ms: Delay before the first retry in milliseconds.

    Returns:
        The operation's result.
    """
    return await RetryPolicy(max_retries=max_retries, base_delay_ms=base_delay_ms).call(operation)
