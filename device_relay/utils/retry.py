"""Retry state and exponential backoff for forwarding attempts."""

import threading
from typing import Callable, Optional


class BackoffPolicy:
    """Tracks consecutive failures and computes capped exponential delays.

    ``delay = initial_delay * multiplier ** (failures - 1)``, capped at
    ``max_delay``. No delay is due until the first failure is recorded.
    """

    def __init__(
        self,
        max_attempts: int,
        initial_delay: float,
        max_delay: float,
        multiplier: float = 2.0,
        sleep: Optional[Callable[[float], object]] = None,
    ) -> None:
        self.max_attempts = max_attempts
        self.initial_delay = initial_delay
        self.max_delay = max_delay
        self.multiplier = multiplier
        self.consecutive_failures = 0
        self._sleep = sleep or threading.Event().wait

    @classmethod
    def for_forwarding(cls, config, sleep: Optional[Callable[[float], object]] = None) -> "BackoffPolicy":
        return cls(
            max_attempts=config.forward_retry_attempts,
            initial_delay=config.forward_initial_backoff,
            max_delay=config.forward_max_backoff,
            multiplier=config.forward_backoff_multiplier,
            sleep=sleep,
        )

    def mark_failure(self) -> None:
        self.consecutive_failures += 1

    def mark_success(self) -> None:
        self.consecutive_failures = 0

    @property
    def exhausted(self) -> bool:
        return self.consecutive_failures >= self.max_attempts

    def get_backoff_delay(self) -> float:
        if self.consecutive_failures == 0:
            return 0.0

        delay = self.initial_delay * (self.multiplier ** (self.consecutive_failures - 1))
        return min(delay, self.max_delay)

    def wait(self) -> float:
        """Sleep for the current backoff delay and return it."""
        delay = self.get_backoff_delay()
        if delay > 0:
            self._sleep(delay)
        return delay
