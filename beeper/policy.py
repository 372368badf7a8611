"""What the dispatcher does after the notifier reports a failure."""
from typing import Optional, Protocol

from .schemas import Job


class DeliveryPolicy(Protocol):
    def retry_delay(self, job: Job, attempt: int) -> Optional[float]:
        """Seconds to wait before attempt ``attempt + 1``, or None to give up."""
        ...


class NoRetryPolicy:
    """A failed delivery leaves the job stored with no timer."""

    def retry_delay(self, job: Job, attempt: int) -> Optional[float]:
        return None


class BackoffRetryPolicy:
    def __init__(
        self,
        max_retries: int = 3,
        base_delay: float = 60.0,
        max_delay: float = 3600.0,
        exponential_base: float = 2.0,
    ):
        self.max_retries = max_retries
        self.base_delay = base_delay
        self.max_delay = max_delay
        self.exponential_base = exponential_base

    def retry_delay(self, job: Job, attempt: int) -> Optional[float]:
        if attempt > self.max_retries:
            return None
        return min(self.base_delay * self.exponential_base ** (attempt - 1), self.max_delay)


def policy_from_settings(max_retries: int, base_delay: float) -> DeliveryPolicy:
    if max_retries <= 0:
        return NoRetryPolicy()
    return BackoffRetryPolicy(max_retries=max_retries, base_delay=base_delay)
