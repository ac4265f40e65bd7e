"""Fixed-window rate limiting per caller."""

import math
import time
from typing import Callable, Optional

from majitask.utils.config import SyncConfig
from majitask.utils.errors import RateLimitedError
from majitask.utils.logging import get_structured_logger

logger = get_structured_logger(__name__)


class RateLimiter:
    """Allows ``max_calls`` per caller in each ``window_seconds`` window."""

    def __init__(self, max_calls: int, window_seconds: int, name: str = "standard", clock: Optional[Callable[[], float]] = None):
        self.max_calls = max_calls
        self.window_seconds = window_seconds
        self.name = name
        self.clock = clock or time.monotonic
        self._windows: dict[str, tuple[float, int]] = {}
        self._pruned_at = self.clock()

    def hit(self, key: str) -> int:
        """
        Count one call for ``key``.

        Returns the calls left in the current window; raises RateLimitedError
        with the seconds until the window resets once the quota is spent.
        """
        now = self.clock()
        if now - self._pruned_at >= self.window_seconds:
            self._prune(now)
        started, count = self._windows.get(key, (now, 0))
        if now - started >= self.window_seconds:
            started, count = now, 0

        if count >= self.max_calls:
            retry_after = max(1, math.ceil(self.window_seconds - (now - started)))
            logger.warning("Rate limit exceeded", limiter=self.name, retry_after=retry_after)
            raise RateLimitedError(
                "Too many requests, please try again later",
                retry_after=retry_after,
            )

        self._windows[key] = (started, count + 1)
        return self.max_calls - count - 1

    def _prune(self, now: float) -> None:
        """Drop callers whose window has ended; they start fresh on their next call."""
        expired = [k for k, (started, _) in self._windows.items() if now - started >= self.window_seconds]
        for key in expired:
            del self._windows[key]
        self._pruned_at = now

    def reset(self, key: Optional[str] = None) -> None:
        if key is None:
            self._windows.clear()
        else:
            self._windows.pop(key, None)


_standard: Optional[RateLimiter] = None
_bulk: Optional[RateLimiter] = None


def get_standard_limiter() -> RateLimiter:
    """Limiter for ordinary mutations (100 calls / 10 minutes by default)."""
    global _standard
    if _standard is None:
        _standard = RateLimiter(SyncConfig.RATE_LIMIT_MAX, SyncConfig.RATE_LIMIT_WINDOW_SECONDS, "standard")
    return _standard


def get_bulk_limiter() -> RateLimiter:
    """Limiter for bulk sync and migration imports (5 calls / hour by default)."""
    global _bulk
    if _bulk is None:
        _bulk = RateLimiter(SyncConfig.BULK_LIMIT_MAX, SyncConfig.BULK_LIMIT_WINDOW_SECONDS, "bulk")
    return _bulk
