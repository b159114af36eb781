"""
Retry policies for channel-dependent operations.

Provides:
- Fixed or exponential backoff delays
- Bounded or unbounded attempt counts
- Jitter

The policy is pure data: callers ask it for the next delay and whether
another attempt is allowed, and schedule the retry themselves.
"""
import random
from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RetryPolicy:
    """Configuration for retry behavior."""
    base_delay: float = 2.0  # seconds
    max_attempts: Optional[int] = None  # None = unbounded
    exponential_base: float = 1.0  # 1.0 = fixed delay
    max_delay: float = 30.0  # seconds
    jitter: float = 0.0  # random jitter factor

    @classmethod
    def fixed(cls, delay: float, max_attempts: Optional[int] = None) -> "RetryPolicy":
        """Same delay before every retry."""
        return cls(base_delay=delay, max_attempts=max_attempts)

    @classmethod
    def exponential(
        cls,
        base_delay: float = 1.0,
        max_attempts: Optional[int] = 5,
        max_delay: float = 30.0,
        jitter: float = 0.1,
    ) -> "RetryPolicy":
        """Doubling delay capped at max_delay."""
        return cls(
            base_delay=base_delay,
            max_attempts=max_attempts,
            exponential_base=2.0,
            max_delay=max_delay,
            jitter=jitter,
        )

    def allows(self, attempt: int) -> bool:
        """
        Check whether attempt number `attempt` (1-based) may run.

        Args:
            attempt: Attempt about to be made

        Returns:
            True if the policy permits it
        """
        return self.max_attempts is None or attempt <= self.max_attempts

    def delay_for(self, attempt: int) -> float:
        """
        Delay to wait after failed attempt number `attempt` (1-based).

        Args:
            attempt: Attempt that just failed

        Returns:
            Delay in seconds
        """
        delay = min(
            self.base_delay * (self.exponential_base ** (attempt - 1)),
            self.max_delay
        )

        if self.jitter:
            delay += delay * self.jitter * random.random()

        return delay
