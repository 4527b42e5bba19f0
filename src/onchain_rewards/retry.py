"""Bounded retry with exponential backoff for transient store failures."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from onchain_rewards.errors import TransientStoreError

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 0.5


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    retry_on: tuple[type[Exception], ...] = (TransientStoreError,),
    label: str = "operation",
) -> T:
    """Run ``func`` until it succeeds, retrying only on ``retry_on``.

    ``func`` is re-invoked from scratch on every attempt, so it must re-read
    any idempotency marker it relies on rather than reuse earlier state.

    Args:
        func: Zero-argument coroutine factory.
        max_retries: Maximum number of retry attempts.
        base_delay: Base delay in seconds (doubles with each retry).
        retry_on: Tuple of exception types to retry on.
        label: Name used in log messages.

    Raises:
        RetryError: If every attempt failed with a retryable exception.
    """
    last_exception: Exception | None = None

    for attempt in range(max_retries + 1):
        try:
            return await func()
        except retry_on as e:
            last_exception = e
            if attempt == max_retries:
                break

            delay = base_delay * (2**attempt)
            logger.warning(
                "Attempt %d/%d for %s failed: %s. Retrying in %.2f seconds...",
                attempt + 1,
                max_retries + 1,
                label,
                str(e),
                delay,
            )
            await asyncio.sleep(delay)

    raise RetryError(
        f"All {max_retries + 1} attempts failed for {label}",
        last_exception=last_exception,
    )
