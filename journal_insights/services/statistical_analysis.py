"""
Statistical Analysis Utilities

Descriptive statistics and correlation helpers shared by the baseline
manager, pattern detector and miners.

Functions here are pure and never touch storage.
"""

import logging
import math
from typing import Iterable, List, Optional, Sequence, Tuple

from journal_insights.models.baseline import MetricStats, Percentiles

logger = logging.getLogger(__name__)

# Minimum paired observations before a correlation is reported
MIN_CORRELATION_POINTS = 5

# Window used for the recent-vs-earliest trend
TREND_WINDOW = 7


def clean_values(values: Optional[Iterable]) -> List[float]:
    """
    Drop None, non-numeric and NaN values.

    Booleans are rejected even though bool subclasses int.
    """
    if not values:
        return []

    cleaned = []
    for v in values:
        if v is None or isinstance(v, bool):
            continue
        try:
            f = float(v)
        except (TypeError, ValueError):
            continue
        if math.isnan(f) or math.isinf(f):
            continue
        cleaned.append(f)
    return cleaned


def mean(values: Sequence[float]) -> Optional[float]:
    if not values:
        return None
    return sum(values) / len(values)


def population_std_dev(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    m = sum(values) / len(values)
    return math.sqrt(sum((v - m) ** 2 for v in values) / len(values))


def calculate_stats(values: Optional[Iterable]) -> Optional[MetricStats]:
    """
    Calculate descriptive statistics for a metric series.

    Values are taken in chronological order; the trend compares the mean of
    the most recent 7 values to the mean of the earliest (up to) 7 values
    and expresses the difference per day.

    Args:
        values: Raw metric values (non-numeric and NaN values are dropped)

    Returns:
        MetricStats, or None if nothing numeric remains

    Example:
        >>> stats = calculate_stats([60, 62, 61, 59, 63])
        >>> stats.mean
        61.0
    """
    filtered = clean_values(values)
    if not filtered:
        return None

    n = len(filtered)
    ordered = sorted(filtered)
    avg = sum(filtered) / n

    trend = 0.0
    if n >= TREND_WINDOW:
        recent = filtered[-TREND_WINDOW:]
        earliest = filtered[:min(TREND_WINDOW, n)]
        trend = (sum(recent) / len(recent) - sum(earliest) / len(earliest)) / TREND_WINDOW

    # Float summation can land a hair outside [min, max]
    avg = min(max(avg, ordered[0]), ordered[-1])

    return MetricStats(
        mean=avg,
        std_dev=population_std_dev(filtered),
        min=ordered[0],
        max=ordered[-1],
        percentiles=Percentiles(
            p25=ordered[int(math.floor(n * 0.25))],
            p50=ordered[int(math.floor(n * 0.5))],
            p75=ordered[int(math.floor(n * 0.75))],
        ),
        trend=trend,
        sample_size=n,
    )


def pearson_correlation(x: Sequence[float], y: Sequence[float]) -> float:
    """
    Calculate the Pearson correlation coefficient.

    Args:
        x: First variable values
        y: Second variable values (must be same length as x)

    Returns:
        r between -1 and 1; 0.0 when either variable has no variation

    Raises:
        ValueError: If x and y have different lengths or fewer than 2 points
    """
    if len(x) != len(y):
        raise ValueError(f"x and y must have same length (x={len(x)}, y={len(y)})")

    if len(x) < 2:
        raise ValueError(f"Need at least 2 data points for correlation (got {len(x)})")

    n = len(x)
    sum_x = sum(x)
    sum_y = sum(y)
    sum_xy = sum(xi * yi for xi, yi in zip(x, y))
    sum_x2 = sum(xi * xi for xi in x)
    sum_y2 = sum(yi * yi for yi in y)

    numerator = n * sum_xy - sum_x * sum_y
    denominator_sq = (n * sum_x2 - sum_x ** 2) * (n * sum_y2 - sum_y ** 2)

    if denominator_sq <= 0:
        return 0.0

    r = numerator / math.sqrt(denominator_sq)

    # Handle floating point drift
    return max(-1.0, min(1.0, r))


def correlation_or_none(
    x: Sequence[float],
    y: Sequence[float],
    min_points: int = MIN_CORRELATION_POINTS
) -> Optional[float]:
    """Pearson r, or None when the series are mismatched or too short"""
    if len(x) != len(y) or len(x) < min_points:
        return None
    return pearson_correlation(x, y)


def presence_correlation(points: Sequence[Tuple[bool, float]]) -> Optional[float]:
    """
    Correlate binary pattern presence with a continuous series.

    Args:
        points: (pattern_present, value) pairs

    Returns:
        Pearson r, or None with fewer than 5 points
    """
    if len(points) < MIN_CORRELATION_POINTS:
        return None

    presence = [1.0 if present else 0.0 for present, _ in points]
    values = [float(v) for _, v in points]
    return pearson_correlation(presence, values)
