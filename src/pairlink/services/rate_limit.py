"""Fixed-window request limiting keyed by client."""

import time
from collections.abc import Callable
from dataclasses import dataclass


@dataclass(frozen=True)
class RateLimitDecision:
    """Outcome of counting one request against a client's window."""

    allowed: bool
    limit: int
    remaining: int
    reset_after_seconds: int


@dataclass
class _Window:
    started_at: float
    count: int


@dataclass
class InMemoryRateLimiter:
    """Counts requests per key inside fixed windows."""

    max_requests: int
    window_seconds: int
    clock: Callable[[], float]
    _windows: dict[str, _Window]

    def __init__(
        self,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self.clock = clock
        self._windows = {}

    def hit(self, key: str) -> RateLimitDecision:
        """Record a request for ``key`` and report whether it may proceed."""
        now = self.clock()
        self._evict_expired(now)
        window = self._windows.get(key)
        if window is None:
            window = _Window(started_at=now, count=0)
            self._windows[key] = window
        window.count += 1
        reset_after = max(0, round(window.started_at + self.window_seconds - now))
        return RateLimitDecision(
            allowed=window.count <= self.max_requests,
            limit=self.max_requests,
            remaining=max(0, self.max_requests - window.count),
            reset_after_seconds=reset_after,
        )

    def _evict_expired(self, now: float) -> None:
        expired = [
            key
            for key, window in self._windows.items()
            if now - window.started_at >= self.window_seconds
        ]
        for key in expired:
            self._windows.pop(key, None)
