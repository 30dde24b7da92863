"""
Retry configuration with exponential backoff.

RetryConfig computes the delay before the next attempt of a rollout step
(a transient API failure, or another health probe while awaiting health).
Jitter spreads out the requeues of many clusters failing at once.

The attempt counter itself is persisted in RolloutState, so backoff
progress survives an operator restart.
"""

import random
from dataclasses import dataclass


@dataclass
class RetryConfig:
    """
    Configuration for step retry behavior.

    Attributes:
        max_attempts: Attempts before the failure is surfaced (default 5)
        min_wait_seconds: Wait before the first retry (default 2.0)
        max_wait_seconds: Maximum wait between retries (default 60.0)
        exponential_base: Base for exponential calculation (default 2.0)
        jitter_fraction: Fraction of wait time to add as jitter (default 0.1)

    Example:
        config = RetryConfig(max_attempts=5, min_wait_seconds=2.0)
        config.delay_seconds(attempt=2)
        # Returns ~8-8.8 seconds (2s * 2^2 + jitter)
    """

    max_attempts: int = 5
    min_wait_seconds: float = 2.0
    max_wait_seconds: float = 60.0
    exponential_base: float = 2.0
    jitter_fraction: float = 0.1

    def delay_seconds(self, attempt: int) -> float:
        """
        Delay before the next attempt.

        Formula: min(max_wait, min_wait * base^attempt) + random(0, wait * jitter)

        Args:
            attempt: The attempt number (0 for first retry, 1 for second, etc.)
        """
        wait = min(
            self.max_wait_seconds,
            self.min_wait_seconds * (self.exponential_base ** max(0, attempt)),
        )
        if self.jitter_fraction <= 0:
            return wait
        return wait + random.uniform(0, wait * self.jitter_fraction)

    def should_retry(self, retry_count: int) -> bool:
        """
        Check if the retry budget still has room.

        Args:
            retry_count: Current number of attempts made

        Returns:
            True if retry_count < max_attempts, False otherwise
        """
        return retry_count < self.max_attempts
