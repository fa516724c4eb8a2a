"""Bounded retry with exponential backoff.

This module provides:
- retry_with_backoff: run a function up to max_attempts times
- TRANSIENT_EXCEPTIONS: failures worth another attempt
- UNSENT_EXCEPTIONS: failures after which the request had no effect

Retry bounds stand in for timeouts: nothing here waits indefinitely.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from typing import TypeVar

import httpx

from worldbackup.core.types import ServerError

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Default retry configuration
DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_INITIAL_BACKOFF = 0.5  # seconds
DEFAULT_MAX_BACKOFF = 10.0  # seconds
DEFAULT_BACKOFF_MULTIPLIER = 2.0

# Network failures and 5xx answers; protocol errors are never retried
TRANSIENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.TransportError,
    ServerError,
    ConnectionError,
    TimeoutError,
)

# For requests that must not be applied twice: the request never reached
# the server, or the server refused it
UNSENT_EXCEPTIONS: tuple[type[Exception], ...] = (
    httpx.ConnectError,
    httpx.ConnectTimeout,
    ServerError,
    ConnectionRefusedError,
)


def retry_with_backoff(
    func: Callable[[], T],
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    initial_backoff: float = DEFAULT_INITIAL_BACKOFF,
    max_backoff: float = DEFAULT_MAX_BACKOFF,
    backoff_multiplier: float = DEFAULT_BACKOFF_MULTIPLIER,
    retryable_exceptions: tuple[type[Exception], ...] = TRANSIENT_EXCEPTIONS,
    description: str = "request",
) -> T:
    """Execute a function with exponential backoff retry.

    Args:
        func: Function to execute.
        max_attempts: Total number of attempts, including the first one.
        initial_backoff: Initial backoff time in seconds.
        max_backoff: Maximum backoff time in seconds.
        backoff_multiplier: Multiplier for each retry.
        retryable_exceptions: Tuple of exception types to retry on.
        description: What is being attempted, for log messages.

    Returns:
        Result of the function.

    Raises:
        The last exception if all attempts fail, or any non-retryable
        exception immediately.
    """
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    backoff = initial_backoff
    for attempt in range(1, max_attempts + 1):
        try:
            return func()
        except retryable_exceptions as e:
            if attempt == max_attempts:
                logger.error(f"{description}: all {max_attempts} attempts failed: {e}")
                raise

            logger.warning(
                f"{description}: attempt {attempt}/{max_attempts} failed: {e}. "
                f"Retrying in {backoff:.1f}s..."
            )
            if backoff > 0:
                time.sleep(backoff)
            backoff = min(backoff * backoff_multiplier, max_backoff)

    # Should not reach here, but satisfy type checker
    raise RuntimeError("Unexpected retry loop exit")
