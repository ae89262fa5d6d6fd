"""
Unit tests for pattern_detection module

Tests catalog scoring, per-entry detection and period aggregation.
"""

from datetime import timedelta

import pytest

from journal_insights.exceptions import ComputationError
from journal_insights.models.entry import BiometricDay, EnvironmentSnapshot, HealthSnapshot
from journal_insights.services.pattern_detection import (
    ENVIRONMENT_PATTERNS,
    HEALTH_PATTERNS,
    KeywordPattern,
    ThresholdPattern,
    build_readings,
    correlate_pattern_with_metric,
    detect_in_entry,
    detect_in_period,
    score_pattern,
)
from tests.helpers import NOW, make_entry


def _pattern(catalog, pattern_id):
    return next(p for p in catalog if p.id == pattern_id)


class TestScorePattern:
    """Tests for score_pattern()"""

    def test_keyword_confidence_grows_with_matches(self):
        pattern = KeywordPattern("demo", "test", ("alpha", "beta", "gamma", "delta"))

        assert score_pattern(pattern, "alpha", {}) == (["alpha"], pytest.approx(0.65))
        assert score_pattern(pattern, "alpha beta", {})[1] == pytest.approx(0.8)
        assert score_pattern(pattern, "alpha beta gamma delta", {})[1] == pytest.approx(0.95)
        assert score_pattern(pattern, "nothing here", {}) is None

    def test_threshold_pattern(self):
        short_sleep = _pattern(HEALTH_PATTERNS, "short_sleep")

        assert score_pattern(short_sleep, "", {"sleep_hours": 5.0}) == (["sleep_hours"], 0.9)
        assert score_pattern(short_sleep, "", {"sleep_hours": 7.0}) is None

    def test_missing_reading_does_not_match(self):
        assert score_pattern(_pattern(HEALTH_PATTERNS, "short_sleep"), "", {}) is None

    def test_malformed_reading_raises_computation_error(self):
        gloomy = _pattern(ENVIRONMENT_PATTERNS, "gloomy_weather")

        with pytest.raises(ComputationError) as exc_info:
            score_pattern(gloomy, "", {"weather": 12})

        assert exc_info.value.item == "gloomy_weather"


class TestDetectInEntry:
    """Tests for detect_in_entry()"""

    def test_keyword_detection(self):
        entry = make_entry("a", text="Had a job interview today and I'm so nervous.")
        ids = {o.pattern_id for o in detect_in_entry(entry)}

        assert "career_anticipation" in ids
        assert "anxiety_signal" in ids

    def test_combined_pattern(self):
        entry = make_entry(
            "a",
            text="",
            health=HealthSnapshot(sleep_hours=5.0),
            environment=EnvironmentSnapshot(is_low_sunshine=True),
        )
        found = {o.pattern_id: o for o in detect_in_entry(entry)}

        assert found["sleep_deprived_low_light"].confidence == pytest.approx(0.95)
        assert "short_sleep" in found
        assert "low_sunshine" in found

    def test_biometrics_fill_missing_readings(self):
        entry = make_entry("a", text="")
        day = BiometricDay(date=NOW.date(), recovery_score=20, sleep_hours=8)

        ids = {o.pattern_id for o in detect_in_entry(entry, day)}
        assert {"low_recovery", "well_rested"} <= ids

    def test_entry_snapshot_wins_over_biometrics(self):
        entry = make_entry("a", text="", health=HealthSnapshot(sleep_hours=5.0))
        readings = build_readings(entry, BiometricDay(date=NOW.date(), sleep_hours=8))
        assert readings["sleep_hours"] == 5.0

    def test_broken_pattern_is_skipped(self):
        """A predicate that blows up drops only that pattern"""
        def explode(readings):
            raise TypeError("bad reading")

        catalog = (
            ThresholdPattern("broken", "test", "broken", ("sleep_hours",), explode),
            _pattern(HEALTH_PATTERNS, "short_sleep"),
        )
        entry = make_entry("a", text="", health=HealthSnapshot(sleep_hours=4.0))

        assert [o.pattern_id for o in detect_in_entry(entry, catalog=catalog)] == ["short_sleep"]


class TestDetectInPeriod:
    """Tests for detect_in_period() aggregation"""

    def test_aggregates_occurrences_and_moods(self):
        entries = [
            make_entry("a", text="Great yoga class", mood=0.8, days_ago=0),
            make_entry("b", text="Yoga again, felt calm", mood=0.6, days_ago=1),
            make_entry("c", text="Nothing to report", mood=0.4, days_ago=2),
        ]
        analysis = detect_in_period(entries)
        exercise = analysis.aggregated["exercise_completion"]

        assert analysis.total_entries == 3
        assert exercise.occurrences == 2
        assert exercise.mood_mean == pytest.approx(0.7)
        assert exercise.mood_min == pytest.approx(0.6)
        assert exercise.mood_max == pytest.approx(0.8)
        assert exercise.biometrics is None
        assert analysis.category_counts["health"] == 2
        assert analysis.top_patterns(1)[0].pattern_id == "exercise_completion"

    def test_biometric_deltas(self):
        entries = [
            make_entry("a", text="yoga", days_ago=0),
            make_entry("b", text="quiet", days_ago=1),
        ]
        history = [
            BiometricDay(date=NOW.date(), hrv=80),
            BiometricDay(date=(NOW - timedelta(days=1)).date(), hrv=60),
        ]
        exercise = detect_in_period(entries, history).aggregated["exercise_completion"]

        assert exercise.biometrics["hrv"] == pytest.approx(80)
        assert exercise.biometric_deltas["hrv"] == pytest.approx(10)

    def test_correlate_pattern_with_metric(self):
        entries = []
        history = []
        for i in range(6):
            day = NOW - timedelta(days=i)
            entries.append(make_entry(f"e{i}", text="yoga" if i % 2 == 0 else "quiet", days_ago=i))
            history.append(BiometricDay(date=day.date(), hrv=80 if i % 2 == 0 else 50))

        analysis = detect_in_period(entries, history)
        r = correlate_pattern_with_metric(analysis, entries, history, "exercise_completion", "hrv")
        assert r == pytest.approx(1.0)

        assert correlate_pattern_with_metric(analysis, entries[:3], history, "exercise_completion", "hrv") is None
