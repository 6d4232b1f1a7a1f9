"""Pure amount math helpers used by payment verification."""
from __future__ import annotations

from decimal import Decimal


def relative_diff(observed: float | Decimal, expected: float | Decimal) -> float:
    """Relative difference of observed vs expected (1.0 when expected is zero)."""
    observed_f = float(observed)
    expected_f = float(expected)
    if expected_f == 0 and observed_f == 0:
        return 0.0
    if expected_f == 0:
        return 1.0
    return abs(observed_f - expected_f) / abs(expected_f)


def within_tolerance(observed: float | Decimal, expected: float | Decimal, tolerance_pct: float) -> bool:
    """True when observed matches expected within the relative tolerance."""
    return relative_diff(observed, expected) <= tolerance_pct


def usd_to_native(amount_usd: float | Decimal, price_usd: float) -> float:
    if price_usd <= 0:
        raise ValueError("price_usd must be positive")
    return float(amount_usd) / float(price_usd)


__all__ = ["relative_diff", "within_tolerance", "usd_to_native"]
