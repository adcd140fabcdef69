"""In-memory fixed-window rate limiter for API endpoints."""

from __future__ import annotations

import asyncio
import math
import time
from dataclasses import dataclass

from ..config import settings


@dataclass
class _Window:
    count: int
    reset_at: float  # monotonic deadline


@dataclass(frozen=True)
class RateLimitDecision:
    allowed: bool
    limit: int
    remaining: int
    retry_after: int
    reset_epoch: int

    def headers(self) -> dict[str, str]:
        headers = {
            "X-RateLimit-Limit": str(self.limit),
            "X-RateLimit-Remaining": str(self.remaining),
            "X-RateLimit-Reset": str(self.reset_epoch),
        }
        if not self.allowed:
            headers["Retry-After"] = str(self.retry_after)
        return headers


class FixedWindowRateLimiter:
    """Counts requests per key inside a window that starts with the key's first request.

    The store is bounded: expired windows are swept periodically and, when the
    store is still full, the window closest to expiry is evicted.
    """

    def __init__(
        self,
        *,
        window_seconds: float | None = None,
        max_entries: int | None = None,
        sweep_interval: float | None = None,
    ) -> None:
        self._window_seconds = window_seconds
        self._max_entries = max_entries
        self._sweep_interval = sweep_interval
        self._windows: dict[str, _Window] = {}
        self._last_sweep = time.monotonic()
        self._lock = asyncio.Lock()

    @property
    def window_seconds(self) -> float:
        if self._window_seconds is not None:
            return self._window_seconds
        return settings.rate_limit_window_seconds

    @property
    def max_entries(self) -> int:
        if self._max_entries is not None:
            return self._max_entries
        return settings.rate_limit_max_entries

    @property
    def sweep_interval(self) -> float:
        if self._sweep_interval is not None:
            return self._sweep_interval
        return settings.rate_limit_sweep_interval_seconds

    def __len__(self) -> int:
        return len(self._windows)

    def reset(self) -> None:
        self._windows.clear()
        self._last_sweep = time.monotonic()

    async def hit(self, key: str, limit: int) -> RateLimitDecision:
        """Count one request for ``key`` and report whether it is allowed."""
        now = time.monotonic()
        async with self._lock:
            if now - self._last_sweep >= self.sweep_interval:
                self._sweep(now)

            window = self._windows.get(key)
            if window is None or now > window.reset_at:
                if window is None and len(self._windows) >= self.max_entries:
                    self._sweep(now)
                    self._evict_one()
                window = _Window(count=1, reset_at=now + self.window_seconds)
                self._windows[key] = window
                return self._decision(True, limit, limit - 1, window, now)

            if window.count >= limit:
                return self._decision(False, limit, 0, window, now)

            window.count += 1
            return self._decision(True, limit, limit - window.count, window, now)

    def _sweep(self, now: float) -> None:
        expired = [key for key, window in self._windows.items() if now > window.reset_at]
        for key in expired:
            del self._windows[key]
        self._last_sweep = now

    def _evict_one(self) -> None:
        if len(self._windows) < self.max_entries:
            return
        oldest = min(self._windows, key=lambda k: self._windows[k].reset_at)
        del self._windows[oldest]

    @staticmethod
    def _decision(allowed: bool, limit: int, remaining: int, window: _Window, now: float) -> RateLimitDecision:
        seconds_left = max(0.0, window.reset_at - now)
        return RateLimitDecision(
            allowed=allowed,
            limit=limit,
            remaining=max(0, remaining),
            retry_after=0 if allowed else max(1, math.ceil(seconds_left)),
            reset_epoch=int(time.time() + seconds_left),
        )


api_rate_limiter = FixedWindowRateLimiter()
