"""Retry backoff for failed scheduled runs.

The executor never retries a node; a failed scheduled run is retried by
pushing the schedule's ``next_run_at`` forward:

    delay(n) = base_delay * 2 ** (n - 1), capped at max_delay

where ``n`` is the consecutive failure count after the failure. Fixed and
linear policies exist for deployments that prefer them.

Usage:
    strategy = RetryStrategy.from_settings()
    next_run_at = failed_at + timedelta(seconds=strategy.compute_delay(retry_count))
"""

import random
from dataclasses import dataclass
from enum import Enum

from app.config import get_settings


class RetryPolicy(str, Enum):
    """Available retry policies."""
    FIXED = "fixed"
    EXPONENTIAL = "exponential"
    LINEAR = "linear"


@dataclass
class RetryStrategy:
    """Backoff policy applied to a schedule after a failed run."""
    policy: RetryPolicy = RetryPolicy.EXPONENTIAL
    base_delay: float = 60.0
    max_delay: float = 86400.0
    max_consecutive_failures: int = 0  # 0 = never give up
    jitter: bool = False
    jitter_range: float = 0.1

    @classmethod
    def exponential(
        cls,
        base_delay: float = 60.0,
        max_delay: float = 86400.0,
        max_consecutive_failures: int = 0,
    ) -> 'RetryStrategy':
        """Doubling backoff: base, 2*base, 4*base, ..."""
        return cls(
            policy=RetryPolicy.EXPONENTIAL,
            base_delay=base_delay,
            max_delay=max_delay,
            max_consecutive_failures=max_consecutive_failures,
        )

    @classmethod
    def fixed(cls, delay: float = 300.0, max_consecutive_failures: int = 0) -> 'RetryStrategy':
        """Same delay after every failure."""
        return cls(
            policy=RetryPolicy.FIXED,
            base_delay=delay,
            max_delay=delay,
            max_consecutive_failures=max_consecutive_failures,
        )

    @classmethod
    def linear(
        cls,
        base_delay: float = 60.0,
        max_delay: float = 3600.0,
        max_consecutive_failures: int = 0,
    ) -> 'RetryStrategy':
        """Linear backoff: delay = base_delay * failure_count."""
        return cls(
            policy=RetryPolicy.LINEAR,
            base_delay=base_delay,
            max_delay=max_delay,
            max_consecutive_failures=max_consecutive_failures,
        )

    @classmethod
    def from_settings(cls) -> 'RetryStrategy':
        """Exponential policy configured from SCHEDULER_* settings."""
        settings = get_settings()
        return cls.exponential(
            base_delay=settings.SCHEDULER_BACKOFF_BASE_SECONDS,
            max_delay=settings.SCHEDULER_BACKOFF_MAX_SECONDS,
            max_consecutive_failures=settings.SCHEDULER_MAX_CONSECUTIVE_FAILURES,
        )

    def to_dict(self) -> dict:
        return {
            'policy': self.policy.value,
            'base_delay': self.base_delay,
            'max_delay': self.max_delay,
            'max_consecutive_failures': self.max_consecutive_failures,
            'jitter': self.jitter,
        }

    def compute_delay(self, attempt: int) -> float:
        """Delay in seconds after the ``attempt``-th consecutive failure (1-based)."""
        attempt = max(1, attempt)

        if self.policy == RetryPolicy.FIXED:
            delay = self.base_delay
        elif self.policy == RetryPolicy.EXPONENTIAL:
            # cap the exponent so huge failure counts cannot overflow
            delay = self.base_delay * (2 ** min(attempt - 1, 62))
        else:
            delay = self.base_delay * attempt

        # Apply max cap
        delay = min(delay, self.max_delay)

        # Apply jitter
        if self.jitter and delay > 0:
            jitter_amount = delay * self.jitter_range
            delay = min(self.max_delay, max(0.0, delay + random.uniform(-jitter_amount, jitter_amount)))

        return round(delay, 3)

    def should_deactivate(self, failure_count: int) -> bool:
        """True once the consecutive failure limit is reached."""
        return 0 < self.max_consecutive_failures <= failure_count
