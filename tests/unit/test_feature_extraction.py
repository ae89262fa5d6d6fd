"""
Unit tests for feature_extraction module

Covers temporal, entity, linguistic and sequential feature buckets.
"""

import pytest
from datetime import datetime, timezone

from journal_insights.models.entry import Entry, EnvironmentSnapshot, HealthSnapshot
from journal_insights.services.feature_extraction import (
    categorize_sleep,
    day_of_week,
    extract_all_features,
    extract_entities_by_type,
    extract_features,
    get_season,
    is_holiday_period,
)
from tests.helpers import make_entry


class TestTemporalHelpers:
    """Tests for date bucketing helpers"""

    def test_day_of_week_starts_on_sunday(self):
        """Sunday maps to 0 and Saturday to 6"""
        assert day_of_week(datetime(2024, 3, 17, tzinfo=timezone.utc)) == 0
        assert day_of_week(datetime(2024, 3, 16, tzinfo=timezone.utc)) == 6
        assert day_of_week(datetime(2024, 3, 15, tzinfo=timezone.utc)) == 5

    @pytest.mark.parametrize("month,season", [
        (1, "winter"), (3, "spring"), (5, "spring"), (6, "summer"),
        (9, "fall"), (11, "fall"), (12, "winter"),
    ])
    def test_get_season(self, month, season):
        """Northern hemisphere seasons by month"""
        assert get_season(datetime(2024, month, 10)) == season

    def test_holiday_windows(self):
        """Fixed holidays match within three days, Nov/Dec windows match whole ranges"""
        assert is_holiday_period(datetime(2024, 12, 24))
        assert is_holiday_period(datetime(2024, 11, 25))
        assert is_holiday_period(datetime(2024, 7, 2))
        assert is_holiday_period(datetime(2024, 1, 3))
        assert not is_holiday_period(datetime(2024, 7, 10))
        assert not is_holiday_period(datetime(2024, 3, 15))

    def test_temporal_features_use_writer_local_time(self):
        """A Friday-night entry written at UTC-5 stays on Friday at 21h"""
        entry = Entry(id="late", created_at="2024-03-15T21:30:00-05:00")
        assert entry.utc_offset_minutes == -300

        temporal = extract_features(entry).temporal
        assert temporal.hour_of_day == 21
        assert temporal.day_of_week == 5
        assert temporal.is_weekend is False

        # Same instant read back from UTC storage with the offset column
        stored = Entry(id="late", created_at=datetime(2024, 3, 16, 2, 30, tzinfo=timezone.utc), utc_offset_minutes=-300)
        assert extract_features(stored).temporal.hour_of_day == 21

    def test_unknown_offset_falls_back_to_utc(self):
        entry = Entry(id="utc", created_at=datetime(2024, 3, 16, 2, 30))
        assert entry.utc_offset_minutes is None
        assert extract_features(entry).temporal.hour_of_day == 2


class TestEntityExtraction:
    """Tests for tag-prefixed entity extraction"""

    def test_extract_by_prefix_replaces_underscores(self):
        tags = ["@person:sam_lee", "@topic:work", "@person:alex"]
        assert extract_entities_by_type(tags, "@person:") == ["sam lee", "alex"]

    def test_extract_handles_missing_tags(self):
        assert extract_entities_by_type(None, "@place:") == []
        assert extract_entities_by_type([], "@place:") == []

    def test_new_person_and_alone_flags(self):
        """First mention of a person is flagged; an entry without people is alone"""
        earlier = make_entry("a", days_ago=2, tags=["@person:sam"])
        repeat = make_entry("b", days_ago=1, tags=["@person:sam"])
        fresh = make_entry("c", days_ago=0, tags=["@person:jordan", "@place:park"])

        corpus = [earlier, repeat, fresh]
        assert extract_features(repeat, corpus).entities.is_new_person is False
        fresh_features = extract_features(fresh, corpus)
        assert fresh_features.entities.is_new_person is True
        assert fresh_features.entities.is_new_place is True
        assert fresh_features.entities.is_alone is False
        assert extract_features(make_entry("d"), corpus).entities.is_alone is True


class TestLinguisticFeatures:
    """Tests for lexicon counts"""

    def test_counts_lexicon_words(self):
        entry = make_entry(
            "x",
            text="I feel great and happy! But I should call mom. Maybe tomorrow?"
        )
        ling = extract_features(entry).linguistic

        assert ling.positive_words == 2
        assert ling.obligation_words == 1
        assert ling.uncertainty_words == 1
        assert ling.question_count == 1
        assert ling.exclamation_count == 1
        assert ling.self_reference_count == 2
        assert ling.sentence_count == 3

    def test_empty_text(self):
        ling = extract_features(make_entry("x", text="")).linguistic
        assert ling.word_count == 0
        assert ling.avg_sentence_length == 0.0


class TestSequentialFeatures:
    """Tests for features relative to earlier entries"""

    def test_mood_delta_and_shift(self):
        first = make_entry("a", mood=0.3, days_ago=2)
        second = make_entry("b", mood=0.8, days_ago=0)

        seq = extract_features(second, [first, second]).sequential

        assert seq.previous_entry_mood == pytest.approx(0.3)
        assert seq.mood_delta_from_previous == pytest.approx(0.5)
        assert seq.is_mood_shift is True
        assert seq.days_since_last_entry == pytest.approx(2.0)
        assert seq.avg_mood_last_3_days == pytest.approx(0.3)

    def test_first_entry_has_no_history(self):
        seq = extract_features(make_entry("a")).sequential
        assert seq.days_since_last_entry is None
        assert seq.mood_delta_from_previous == 0.0
        assert seq.is_mood_shift is False

    def test_previous_day_activities(self):
        yesterday = make_entry("a", days_ago=1, tags=["@activity:yoga", "@activity:yoga"])
        today = make_entry("b", days_ago=0)
        seq = extract_features(today, [yesterday, today]).sequential
        assert seq.previous_day_activities == ["yoga"]


class TestContextFeatures:
    """Tests for snapshot and fallback context"""

    def test_snapshot_values_win(self):
        entry = make_entry(
            "x",
            health=HealthSnapshot(sleep_hours=6.5, has_workout=True),
            environment=EnvironmentSnapshot(weather="rain", temperature=8.0),
        )
        ctx = extract_features(entry, context={"weather": "sunny"}).context
        assert ctx.weather == "rain"
        assert ctx.sleep_hours == 6.5
        assert ctx.had_workout is True

    def test_context_fallback(self):
        ctx = extract_features(make_entry("x"), context={"weather": "sunny", "temperature": 21}).context
        assert ctx.weather == "sunny"
        assert ctx.temperature == 21

    def test_extract_all_features(self):
        entries = [make_entry("a", days_ago=1), make_entry("b")]
        records = extract_all_features(entries)
        assert [r.entry_id for r in records] == ["a", "b"]
        assert records[0].temporal.season == "spring"


@pytest.mark.parametrize("hours,bucket", [
    (None, "unknown"), (4.5, "poor"), (6, "fair"), (7, "good"), (9, "good"), (10, "excessive"),
])
def test_categorize_sleep(hours, bucket):
    """Sleep hour buckets"""
    assert categorize_sleep(hours) == bucket
