"""
Shared statistics primitives for the report: average, nearest-rank percentile, and bucket rounding.
"""

import math
import time
from typing import Sequence

from configuration import MS_PER_SECOND


def now_ms() -> float:
    """Wall-clock time in milliseconds since the epoch."""
    return time.time() * MS_PER_SECOND


def average(values: Sequence[float]) -> float:
    """
    Arithmetic mean of the values.

    Args:
        values: Observed samples

    Returns:
        The mean, or 0.0 for an empty sequence
    """
    if len(values) == 0:
        return 0.0
    return sum(values) / len(values)


def percentile(values: Sequence[float], rank: float) -> float:
    """
    Nearest-rank percentile without interpolation.

    The samples are sorted ascending and the value at index ``floor(len * rank)``
    is returned. The input is not modified.

    Args:
        values: Observed samples
        rank: Percentile as a fraction in [0, 1)

    Returns:
        The sample at the requested rank, or 0.0 for an empty sequence
    """
    if len(values) == 0:
        return 0.0
    ordered = sorted(values)
    nth = int(round_down(len(ordered) * rank, 1))
    return ordered[min(nth, len(ordered) - 1)]


def round_down(value: float, base: float) -> float:
    """Floor ``value`` to a multiple of ``base``."""
    return math.floor(value / base) * base


def round_up(value: float, base: float) -> float:
    """
    Next multiple of ``base`` strictly above ``round_down(value, base)``.

    A value already on a boundary is still moved up one full period, so a
    bucket span built from ``round_down(min)`` and ``round_up(max)`` always
    contains ``max``.
    """
    return round_down(value, base) + base


def calculate_tps(count: int, period_ms: float) -> float:
    """Completed operations per second for ``count`` events in one bucket."""
    if period_ms <= 0:
        return 0.0
    return count / period_ms * MS_PER_SECOND
