"""Bounded exponential backoff."""
from dataclasses import dataclass
from typing import Iterator

from ..config.strategy_config import StrategyConfig


@dataclass(frozen=True)
class RetryPolicy:
    """At most max_retries attempts, waiting base, 2*base, 4*base ... capped at max_delay."""
    max_retries: int = 3
    base_delay: float = 1.0
    max_delay: float = 30.0

    def __post_init__(self):
        if self.max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if self.base_delay <= 0 or self.max_delay < self.base_delay:
            raise ValueError("delays must satisfy 0 < base_delay <= max_delay")

    @classmethod
    def from_config(cls, config: StrategyConfig) -> "RetryPolicy":
        return cls(
            max_retries=config.max_retries,
            base_delay=config.base_delay_seconds,
            max_delay=config.max_delay_seconds,
        )

    def delay_for(self, failure_index: int) -> float:
        """Wait after the failure_index-th failed attempt (0-based)."""
        if failure_index < 0:
            raise ValueError("failure_index must be non-negative")
        # Cap the exponent before multiplying so large indexes cannot overflow
        if failure_index >= 64:
            return self.max_delay
        return min(self.base_delay * (2 ** failure_index), self.max_delay)

    def delays(self) -> Iterator[float]:
        """The delay after each of the max_retries failed attempts."""
        for i in range(self.max_retries):
            yield self.delay_for(i)
