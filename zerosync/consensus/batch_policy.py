"""
Batch formation policy.

Decides when the sequencer should cut a batch: as soon as enough transactions are
pending, or when the batch timeout has elapsed since the last check and at least
one transaction is waiting.
"""

import time
from typing import Any


class BatchPolicy:
    """Size/time trigger for batch creation"""

    def __init__(self, config: dict[str, Any]):
        """
        Initialize batch policy.

        Args:
            config: Batching configuration (batch_size, batch_timeout in ms)

        Raises:
            ValueError: If batch_size is not positive or batch_timeout is negative
        """
        self.batch_size = config.get("batch_size", 8)
        self.batch_timeout = config.get("batch_timeout", 10000)  # milliseconds

        if isinstance(self.batch_size, bool) or not isinstance(self.batch_size, int) or self.batch_size <= 0:
            raise ValueError(f"batch_size must be a positive integer, got {self.batch_size!r}")
        if isinstance(self.batch_timeout, bool) or not isinstance(self.batch_timeout, (int, float)) \
                or self.batch_timeout < 0:
            raise ValueError(f"batch_timeout must be zero or positive, got {self.batch_timeout!r}")

        self.last_check = time.time()

    @property
    def timer_enabled(self) -> bool:
        """A zero timeout disables time-based batching."""
        return self.batch_timeout > 0

    def wait_interval(self) -> float | None:
        """Seconds the worker sleeps between checks; None means until woken."""
        if not self.timer_enabled:
            return None
        return self.batch_timeout / 1000.0

    def is_size_reached(self, pending_count: int) -> bool:
        """Check if enough transactions are pending for a full batch"""
        return pending_count >= self.batch_size

    def is_timer_expired(self, now: float | None = None) -> bool:
        """Check if the batch timeout elapsed since the last check"""
        if not self.timer_enabled:
            return False
        now = time.time() if now is None else now
        return (now - self.last_check) * 1000 >= self.batch_timeout

    def should_fire(self, pending_count: int, timer_expired: bool | None = None) -> bool:
        """
        Decide whether a batch cycle should run.

        Args:
            pending_count: Transactions currently in the pool
            timer_expired: Override for the timer check (the worker knows when its wait timed out)
        """
        if pending_count <= 0:
            return False

        if self.is_size_reached(pending_count):
            return True

        if timer_expired is None:
            timer_expired = self.is_timer_expired()
        return timer_expired

    def mark_checked(self) -> None:
        """Restart the timeout window"""
        self.last_check = time.time()

    def to_dict(self) -> dict[str, Any]:
        return {
            "batch_size": self.batch_size,
            "batch_timeout": self.batch_timeout,
            "timer_enabled": self.timer_enabled,
        }
