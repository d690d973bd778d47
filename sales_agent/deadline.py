from __future__ import annotations

import time

from .errors import DeadlineExceeded


class Deadline:
    """Per-request time budget measured on the monotonic clock."""

    def __init__(self, seconds: float | None, *, clock=time.monotonic) -> None:
        self._clock = clock
        self.seconds = seconds
        self._expires_at = None if seconds is None else clock() + max(0.0, float(seconds))

    @classmethod
    def unbounded(cls) -> "Deadline":
        return cls(None)

    def remaining(self) -> float | None:
        if self._expires_at is None:
            return None
        return max(0.0, self._expires_at - self._clock())

    def expired(self) -> bool:
        remaining = self.remaining()
        return remaining is not None and remaining <= 0.0

    def check(self, stage: str) -> None:
        if self.expired():
            raise DeadlineExceeded(stage)
