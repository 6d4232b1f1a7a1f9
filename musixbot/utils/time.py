"""Time utilities (injectable clock, epoch conversions, elapsed formatting)."""
from __future__ import annotations
from typing import Callable

Clock = Callable[[], float]


def epoch_ms(ts: float) -> int:
    return int(ts * 1000)


def format_elapsed(seconds: float) -> str:
    ms = int(seconds * 1000)
    if ms < 1000:
        return f"{ms}ms"
    if ms < 60_000:
        return f"{ms/1000:.2f}s"
    return f"{seconds/60:.2f}m"

__all__ = ["Clock", "epoch_ms", "format_elapsed"]
