"""In-memory per-identity rate limiter.

Each identity (social user id) owns one window: ``{count, reset_at}``. The
window is created lazily on the first request and *replaced* (not
incremented) once ``now > reset_at``. Window (re)creation always admits the
request, so a burst landing exactly on the reset boundary is never throttled.

Usage pattern:
    from musixbot.utils.ratelimiter import RateLimiter
    limiter = RateLimiter(max_requests_per_hour=10)
    if not limiter.check_limit(author_id):
        wait = limiter.get_time_until_reset(author_id)

Return semantics:
    check_limit -> bool
        True while the count before this request is below the ceiling; the
        ceiling-th request is admitted, the (ceiling+1)-th is denied. Denied
        requests do not increment the count, so it never exceeds the ceiling.

Concurrency: all callers share one event loop and no method awaits, so a
lookup-then-increment cannot interleave. A threaded deployment must wrap
``check_limit`` in a lock.
"""
from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Dict, Optional

from musixbot.config import RATE_LIMIT_SETTINGS
from musixbot.utils.logger import StructuredLogger, get_logger
from musixbot.utils.time import Clock


@dataclass(slots=True)
class RateWindow:
    identity: str
    count: int
    reset_at: float


class RateLimiter:
    def __init__(
        self,
        max_requests_per_hour: Optional[int] = None,
        *,
        window_seconds: Optional[float] = None,
        clock: Clock = time.time,
        logger: Optional[StructuredLogger] = None,
    ):
        self.max_requests = int(
            max_requests_per_hour if max_requests_per_hour is not None else RATE_LIMIT_SETTINGS["max_requests_per_hour"]
        )
        self.window_seconds = float(window_seconds if window_seconds is not None else RATE_LIMIT_SETTINGS["window_seconds"])
        self._clock = clock
        self._windows: Dict[str, RateWindow] = {}
        self.logger = logger or get_logger(__name__)

    def check_limit(self, identity: str) -> bool:
        now = self._clock()
        window = self._windows.get(identity)

        if window is None or now > window.reset_at:
            self._windows[identity] = RateWindow(
                identity=identity,
                count=1,
                reset_at=now + self.window_seconds,
            )
            return True

        if window.count >= self.max_requests:
            self.logger.warning("Rate limit exceeded", identity=identity, count=window.count)
            return False

        window.count += 1
        return True

    def get_time_until_reset(self, identity: str) -> float:
        """Seconds until the identity's window resets (0 when unknown or expired)."""
        window = self._windows.get(identity)
        if window is None:
            return 0.0
        return max(0.0, window.reset_at - self._clock())

    def cleanup(self) -> int:
        """Drop expired windows; active windows are never touched."""
        now = self._clock()
        expired = [identity for identity, window in self._windows.items() if now > window.reset_at]
        for identity in expired:
            del self._windows[identity]
        if expired:
            self.logger.debug("Rate limit windows cleaned", removed=len(expired))
        return len(expired)

    def get_window(self, identity: str) -> Optional[RateWindow]:
        return self._windows.get(identity)

    def snapshot(self) -> dict:
        return {"identities": len(self._windows), "ceiling": self.max_requests}


__all__ = ["RateLimiter", "RateWindow"]
