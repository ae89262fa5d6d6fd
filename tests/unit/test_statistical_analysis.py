"""
Unit tests for statistical_analysis module

Tests descriptive statistics and correlation helpers.
"""

import math
import pytest

from journal_insights.services.statistical_analysis import (
    calculate_stats,
    clean_values,
    correlation_or_none,
    pearson_correlation,
    presence_correlation,
)


class TestCleanValues:
    """Tests for clean_values()"""

    def test_drops_non_numeric(self):
        assert clean_values([1, None, "x", True, float("nan"), float("inf"), "2.5"]) == [1.0, 2.5]

    def test_empty(self):
        assert clean_values(None) == []
        assert clean_values([]) == []


class TestCalculateStats:
    """Tests for calculate_stats()"""

    def test_basic_stats(self):
        stats = calculate_stats([60, 62, 61, 59, 63])

        assert stats.mean == pytest.approx(61.0)
        assert stats.min == 59
        assert stats.max == 63
        assert stats.sample_size == 5
        assert stats.std_dev == pytest.approx(math.sqrt(2.0))
        assert stats.percentiles.p50 == 61

    def test_empty_returns_none(self):
        assert calculate_stats([]) is None
        assert calculate_stats([None, "x"]) is None

    def test_trend_needs_seven_values(self):
        assert calculate_stats([1, 2, 3, 4, 5, 6]).trend == 0.0

    def test_trend_direction(self):
        rising = calculate_stats(list(range(14)))
        assert rising.trend == pytest.approx(1.0)

        falling = calculate_stats(list(range(14, 0, -1)))
        assert falling.trend < 0

    def test_mean_within_range(self):
        """Mean never leaves [min, max], even with repeated floats"""
        for values in ([0.1] * 10, [0.3, 0.3, 0.3], [1e-9, 1e-9], [72.3] * 31):
            stats = calculate_stats(values)
            assert stats.min <= stats.mean <= stats.max


class TestPearsonCorrelation:
    """Tests for pearson_correlation()"""

    def test_perfect_positive(self):
        assert pearson_correlation([1, 2, 3, 4], [2, 4, 6, 8]) == pytest.approx(1.0)

    def test_perfect_negative(self):
        assert pearson_correlation([1, 2, 3, 4], [8, 6, 4, 2]) == pytest.approx(-1.0)

    def test_no_variance_returns_zero(self):
        assert pearson_correlation([1, 1, 1], [1, 2, 3]) == 0.0

    def test_mismatched_lengths_raise(self):
        with pytest.raises(ValueError, match="same length"):
            pearson_correlation([1, 2], [1])

    def test_too_few_points_raise(self):
        with pytest.raises(ValueError, match="at least 2"):
            pearson_correlation([1], [1])


class TestCorrelationHelpers:
    """Tests for thresholded correlation wrappers"""

    def test_correlation_or_none_requires_five_points(self):
        assert correlation_or_none([1, 2, 3, 4], [1, 2, 3, 4]) is None
        assert correlation_or_none([1, 2, 3, 4, 5], [1, 2, 3, 4, 5]) == pytest.approx(1.0)
        assert correlation_or_none([1, 2, 3, 4, 5], [1, 2]) is None

    def test_presence_correlation(self):
        points = [(True, 0.9), (True, 0.8), (False, 0.2), (False, 0.3), (True, 0.85), (False, 0.25)]
        assert presence_correlation(points) > 0.9
        assert presence_correlation(points[:4]) is None
