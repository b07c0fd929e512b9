"""
Bounded exponential backoff for failed sync intents.
"""

from dataclasses import dataclass
from typing import List

from snapsync.exceptions import ConfigurationError


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry schedule for the consumer.

    With the defaults an intent is attempted up to six times, with delays of
    5, 10, 20, 40 and 80 seconds between attempts.

    Attributes:
        max_retries: Number of retries after the first attempt (1-10)
        base_delay_seconds: Delay before the first retry
        max_delay_seconds: Upper bound for any delay
    """

    max_retries: int = 5
    base_delay_seconds: float = 5.0
    max_delay_seconds: float = 300.0

    def __post_init__(self):
        if not 1 <= self.max_retries <= 10:
            raise ConfigurationError(f"max_retries must be between 1 and 10, got {self.max_retries}")
        if self.base_delay_seconds <= 0:
            raise ConfigurationError("base_delay_seconds must be positive")
        if self.max_delay_seconds < self.base_delay_seconds:
            raise ConfigurationError("max_delay_seconds must be >= base_delay_seconds")

    def delay_for(self, retry_count: int) -> float:
        """Delay before re-attempting an intent that has failed retry_count times before."""
        if retry_count < 0:
            raise ValueError("retry_count must be non-negative")
        return float(min(self.base_delay_seconds * (2 ** retry_count), self.max_delay_seconds))

    def should_retry(self, retry_count: int) -> bool:
        return retry_count < self.max_retries

    def schedule(self) -> List[float]:
        """All delays in order."""
        return [self.delay_for(n) for n in range(self.max_retries)]
