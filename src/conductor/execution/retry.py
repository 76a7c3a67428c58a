"""Retry policy with exponential or linear backoff and optional jitter.

Example:
    >>> policy = RetryPolicy(max_attempts=4, base_delay=1.0, max_delay=10.0, jitter=False)
    >>> [policy.next_delay(n) for n in range(3)]
    [1.0, 2.0, 4.0]
    >>> linear = RetryPolicy(max_attempts=4, base_delay=1.0, backoff="linear")
    >>> [linear.next_delay(n) for n in range(3)]
    [1.0, 2.0, 3.0]
"""

from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Any, Literal

from conductor.core.errors import is_retryable

Backoff = Literal["exponential", "linear"]


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff with a cap and optional jitter.

    exponential: delay = min(base_delay * (multiplier ** retry_index), max_delay) ± jitter
    linear:      delay = min(base_delay * (retry_index + 1), max_delay) ± jitter

    Attributes:
        max_attempts: Total attempts including the first one (1 = no retry)
        base_delay: Delay before the first retry, in seconds
        multiplier: Exponential multiplier (ignored for linear backoff)
        max_delay: Cap on a single delay
        jitter: Add randomness to spread out retries
        jitter_range: Jitter as fraction of the delay (0.0-1.0)
        backoff: "exponential" or "linear"
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    multiplier: float = 2.0
    max_delay: float = 60.0
    jitter: bool = False
    jitter_range: float = 0.25
    backoff: Backoff = "exponential"

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError(f"max_attempts must be >= 1, got {self.max_attempts}")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("retry delays must be non-negative")
        if self.backoff not in ("exponential", "linear"):
            raise ValueError(f"unknown backoff {self.backoff!r}")

    def next_delay(self, retry_index: int) -> float:
        """Delay before retry number ``retry_index`` (0 = first retry)."""
        if self.backoff == "linear":
            delay = self.base_delay * (retry_index + 1)
        else:
            delay = self.base_delay * (self.multiplier ** retry_index)
        delay = min(delay, self.max_delay)
        if self.jitter and delay > 0:
            jitter_amount = delay * self.jitter_range
            delay = max(0.0, delay + random.uniform(-jitter_amount, jitter_amount))
        return delay

    def should_retry(self, attempts_made: int, error: Exception) -> bool:
        """True if another attempt is allowed after ``attempts_made`` failures."""
        if attempts_made >= self.max_attempts:
            return False
        return is_retryable(error)

    @classmethod
    def no_retry(cls) -> RetryPolicy:
        return cls(max_attempts=1)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RetryPolicy:
        known = {k: data[k] for k in cls.__dataclass_fields__ if k in data}
        return cls(**known)

    def to_dict(self) -> dict[str, Any]:
        return {
            "max_attempts": self.max_attempts,
            "base_delay": self.base_delay,
            "multiplier": self.multiplier,
            "max_delay": self.max_delay,
            "jitter": self.jitter,
            "backoff": self.backoff,
        }
