"""Retry delay helpers (exponential with optional cap and jitter)."""
from __future__ import annotations

import random
from typing import Optional

from musixbot.config import RETRY_POLICY


def compute_backoff_seconds(
    attempt: int,
    *,
    delay: Optional[float] = None,
    backoff: Optional[bool] = None,
    max_seconds: Optional[float] = None,
    jitter_pct: Optional[float] = None,
) -> float:
    """Delay to wait after failed attempt ``attempt`` (1-based).

    With backoff the wait is ``delay * 2 ** (attempt - 1)``, so the pause before
    attempt k (k >= 2) is ``delay * 2 ** (k - 2)``. Without backoff it is flat.
    """
    if attempt < 1:
        attempt = 1
    delay = float(delay if delay is not None else RETRY_POLICY["delay_seconds"])
    backoff = bool(backoff if backoff is not None else RETRY_POLICY["backoff"])
    max_seconds = float(max_seconds if max_seconds is not None else RETRY_POLICY["max_seconds"])
    jitter_pct = float(jitter_pct if jitter_pct is not None else RETRY_POLICY["jitter_pct"])

    wait = delay * (2 ** (attempt - 1)) if backoff else delay
    if max_seconds > 0:
        wait = min(wait, max_seconds)
    if jitter_pct > 0:
        jitter_amount = wait * jitter_pct
        wait = random.uniform(wait - jitter_amount, wait + jitter_amount)
    return max(wait, 0.0)


__all__ = ["compute_backoff_seconds"]
