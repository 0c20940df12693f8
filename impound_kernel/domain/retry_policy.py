"""
Bounded retry with exponential backoff and jitter.

Used by the reconciliation coordinator for transient store errors and by
the SMS gateway for retryable transport failures.  The two policies are
configured independently.
"""

from __future__ import annotations

import random
from dataclasses import dataclass


@dataclass(frozen=True)
class RetryPolicy:
    """
    Attempt budget and backoff curve.

    Guarantees:
        - delay(attempt) is min(max_delay, base_delay * 2**(attempt-1))
          plus up to the same amount again as jitter.
    """

    max_attempts: int = 3
    base_delay_seconds: float = 0.05
    max_delay_seconds: float = 1.0
    max_conflict_retries: int = 5
    jitter: bool = True

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.max_conflict_retries < 1:
            raise ValueError("max_conflict_retries must be >= 1")
        if self.base_delay_seconds < 0 or self.max_delay_seconds < 0:
            raise ValueError("retry delays must be >= 0")

    def _backoff(self, attempt: int) -> float:
        base = self.base_delay_seconds
        cap = max(base, self.max_delay_seconds)
        return min(cap, base * (2 ** max(0, attempt - 1)))

    def delay(self, attempt: int) -> float:
        delay = self._backoff(attempt)
        if self.jitter and delay > 0:
            delay += random.uniform(0.0, delay)
        return delay

    def max_total_delay(self) -> float:
        """Upper bound on the sleeps between max_attempts attempts."""
        factor = 2 if self.jitter else 1
        return sum(factor * self._backoff(a) for a in range(1, self.max_attempts))


NO_WAIT = RetryPolicy(base_delay_seconds=0.0, max_delay_seconds=0.0, jitter=False)
