"""Bounded exponential reconnect backoff."""
from __future__ import annotations

from typing import Optional


class Backoff:
    """Exponential delay capped at ``maximum``.

    ``attempts`` counts consecutive failures since the last reset; the client
    resets it after a connected period longer than ``stability_threshold``.
    """

    def __init__(
        self,
        initial: float = 1.0,
        maximum: float = 60.0,
        multiplier: float = 2.0,
        stability_threshold: float = 60.0,
        max_attempts: Optional[int] = None,
    ) -> None:
        self.initial = max(initial, 0.0)
        self.maximum = max(maximum, self.initial)
        self.multiplier = max(multiplier, 1.0)
        self.stability_threshold = max(stability_threshold, 0.0)
        self.max_attempts = max_attempts
        self.attempts = 0

    def next_delay(self) -> float:
        delay = min(self.initial * (self.multiplier ** self.attempts), self.maximum)
        self.attempts += 1
        return delay

    def exhausted(self) -> bool:
        return self.max_attempts is not None and self.attempts >= self.max_attempts

    def reset(self) -> None:
        self.attempts = 0

    def record_connected_period(self, seconds: float) -> bool:
        """Reset when the connection stayed up long enough; returns True on reset."""

        if seconds >= self.stability_threshold:
            self.reset()
            return True
        return False
