"""
Retry configuration for query execution with exponential backoff.

This module provides RetryConfig for calculating retry delays with
exponential backoff: the first retry waits base_delay_seconds, each further
retry doubles the wait, and no wait exceeds max_delay_seconds. Optional
jitter spreads out retries from many callers failing at once.

Only retryable execution errors (timeouts, rate limiting, unavailability)
are retried; see kafka_query.exceptions.
"""

import random
from dataclasses import dataclass

from kafka_query.exceptions import ExecutionError, RateLimitedError


@dataclass
class RetryConfig:
    """
    Configuration for execution retry behavior.

    Attributes:
        max_attempts: Total attempts including the first one (default 3)
        base_delay_seconds: Wait before the first retry (default 0.25)
        max_delay_seconds: Maximum wait between attempts (default 5.0)
        exponential_base: Growth factor per attempt (default 2.0)
        jitter_fraction: Fraction of the wait added as random jitter (default 0)

    Example:
        config = RetryConfig(max_attempts=4, base_delay_seconds=0.5)
        config.calculate_delay(0)  # 0.5
        config.calculate_delay(2)  # 2.0
    """

    max_attempts: int = 3
    base_delay_seconds: float = 0.25
    max_delay_seconds: float = 5.0
    exponential_base: float = 2.0
    jitter_fraction: float = 0.0

    def calculate_delay(self, retry: int, error: ExecutionError | None = None) -> float:
        """
        Calculate the wait before a retry.

        Formula: min(max_delay, wait + random(0, wait * jitter)) where
        wait = min(max_delay, base_delay * base^retry)

        A rate-limited error carrying a Retry-After hint waits at least that
        long, still capped at max_delay_seconds.

        Args:
            retry: The retry number (0 for first retry, 1 for second, etc.)
            error: The error that caused the retry

        Returns:
            Seconds to wait
        """
        wait = min(
            self.max_delay_seconds,
            self.base_delay_seconds * (self.exponential_base**retry),
        )

        if isinstance(error, RateLimitedError) and error.retry_after is not None:
            wait = max(wait, min(error.retry_after, self.max_delay_seconds))

        if self.jitter_fraction > 0:
            wait += random.uniform(0, wait * self.jitter_fraction)
        return min(wait, self.max_delay_seconds)

    def should_retry(self, attempts: int, error: Exception) -> bool:
        """
        Check if another attempt should be made.

        Args:
            attempts: Number of attempts made so far
            error: The error the last attempt failed with

        Returns:
            True if the error is retryable and attempts < max_attempts
        """
        retryable = isinstance(error, ExecutionError) and error.retryable
        return retryable and attempts < self.max_attempts
