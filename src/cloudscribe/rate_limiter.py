"""In-memory sliding-window rate limiter.

One instance per process, built at startup and handed to the handlers. The
counters live in process memory, so they reset on cold start and are not
shared between serverless instances: this is best-effort throttling, not a
correctness guarantee.
"""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from cloudscribe.config import RATE_LIMITS

_CLEANUP_INTERVAL = 300  # purge stale entries every 5 minutes


@dataclass(frozen=True)
class RateLimit:
    max_requests: int
    window_seconds: float


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    retry_after: float = 0.0


PRESETS: dict[str, RateLimit] = {
    name: RateLimit(max_requests, window) for name, (max_requests, window) in RATE_LIMITS.items()
}


class RateLimiter:
    """Sliding-window counter keyed by ``action:identity``."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._clock = clock
        self._hits: dict[str, list[float]] = {}
        self._lock = threading.Lock()
        self._last_cleanup = clock()
        self._max_window = max((p.window_seconds for p in PRESETS.values()), default=60)

    def check(
        self, action: str, identity: str, limit: RateLimit | None = None
    ) -> RateLimitDecision:
        """Record one request and report whether it is within the limit."""
        limit = limit or PRESETS[action]
        key = f"{action}:{identity}"
        now = self._clock()

        with self._lock:
            self._cleanup_stale_entries(now)
            timestamps = [t for t in self._hits.get(key, []) if now - t < limit.window_seconds]
            if len(timestamps) >= limit.max_requests:
                self._hits[key] = timestamps
                retry_after = limit.window_seconds - (now - timestamps[0])
                return RateLimitDecision(False, max(retry_after, 0.0))
            timestamps.append(now)
            self._hits[key] = timestamps
        return RateLimitDecision(True)

    def reset(self) -> None:
        with self._lock:
            self._hits.clear()

    def __len__(self) -> int:
        return len(self._hits)

    def _cleanup_stale_entries(self, now: float) -> None:
        """Drop keys idle for longer than twice the widest window."""
        if now - self._last_cleanup < _CLEANUP_INTERVAL:
            return
        self._last_cleanup = now
        horizon = self._max_window * 2
        stale = [k for k, ts in self._hits.items() if not ts or now - ts[-1] > horizon]
        for k in stale:
            del self._hits[k]
