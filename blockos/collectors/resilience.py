"""
Retry with exponential backoff for provider calls.

Provides:
- RetryConfig: Configuration for retry behavior
- retry_with_backoff: Run a callable, retrying transient failures with jitter
"""

import logging
import random
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import TypeVar

from googleapiclient.errors import HttpError

T = TypeVar("T")

logger = logging.getLogger(__name__)

# HTTP statuses worth another attempt; anything else fails immediately
RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


@dataclass
class RetryConfig:
    """Configuration for retry behavior with exponential backoff."""

    max_retries: int = 3
    base_delay: float = 1.0  # seconds
    max_delay: float = 30.0  # seconds
    exponential_base: float = 2.0

    @classmethod
    def from_dict(cls, data: dict | None) -> "RetryConfig":
        data = data or {}
        return cls(
            max_retries=int(data.get("max_retries", cls.max_retries)),
            base_delay=float(data.get("base_delay", cls.base_delay)),
            max_delay=float(data.get("max_delay", cls.max_delay)),
            exponential_base=float(data.get("exponential_base", cls.exponential_base)),
        )

    def delay_for(self, attempt: int) -> float:
        return min(self.base_delay * (self.exponential_base**attempt), self.max_delay)


def is_retryable(error: Exception) -> bool:
    if isinstance(error, HttpError):
        return error.resp.status in RETRYABLE_STATUS
    return isinstance(error, (OSError, TimeoutError))


def retry_with_backoff(
    func: Callable[[], T],
    config: RetryConfig,
    logger_: logging.Logger | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Execute a function with exponential backoff and jitter.

    Args:
        func: Callable to execute
        config: RetryConfig with max_retries, base_delay, max_delay, exponential_base
        logger_: Optional logger for retry attempts
        sleep: Sleep function (replaced in tests)

    Returns:
        Result of successful function call

    Raises:
        The last error once retries are exhausted, or immediately for a
        non-retryable error
    """
    log = logger_ or logger

    for attempt in range(config.max_retries + 1):
        try:
            return func()
        except (HttpError, OSError, TimeoutError) as e:
            if not is_retryable(e) or attempt >= config.max_retries:
                if attempt:
                    log.error("All %d attempts failed: %s", attempt + 1, e)
                raise

            delay = config.delay_for(attempt)
            # Add jitter (up to 10% of delay)
            actual_delay = delay + random.uniform(0, delay * 0.1)  # noqa: S311
            log.warning("Attempt %d failed: %s. Retrying in %.1fs", attempt + 1, e, actual_delay)
            sleep(actual_delay)

    raise RuntimeError("retry loop exited without a result")
