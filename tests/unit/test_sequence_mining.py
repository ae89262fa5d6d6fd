"""
Unit tests for sequence_mining module

Tests mood events, decline sequence clustering and recovery signatures.
"""

import pytest

from journal_insights.services.sequence_mining import (
    analyze_recovery_patterns,
    extract_coping_mentions,
    extract_topics,
    find_low_periods,
    find_mood_events,
    format_recovery_as_insight,
    format_sequences_as_insights,
    mine_sequence_patterns,
)
from tests.helpers import make_entry


def _series(moods, texts=None, tags=None):
    """One entry per day, oldest first"""
    texts = texts or {}
    tags = tags or {}
    last = len(moods) - 1
    return [
        make_entry(
            f"e{i}",
            text=texts.get(i, "Quiet day, nothing much happened."),
            mood=mood,
            days_ago=last - i,
            tags=tags.get(i),
        )
        for i, mood in enumerate(moods)
    ]


# high at 3 and 9, low at 6 and 12, tagged entries between each high and low
DECLINE_MOODS = [0.5, 0.5, 0.5, 0.9, 0.5, 0.5, 0.1, 0.5, 0.5, 0.9, 0.5, 0.5, 0.1, 0.5, 0.5, 0.5]
DECLINE_TAGS = {
    4: ["@topic:deadlines"], 5: ["@topic:overtime"],
    10: ["@topic:deadlines"], 11: ["@topic:overtime"],
}


class TestMoodEvents:
    """Tests for find_mood_events()"""

    def test_single_low(self):
        events = find_mood_events(_series([0.5, 0.5, 0.5, 0.1, 0.5, 0.5, 0.5]))

        assert len(events) == 1
        assert events[0].entry_id == "e3"
        assert events[0].kind == "low"
        assert events[0].magnitude == pytest.approx(0.4)

    def test_edges_are_never_events(self):
        assert find_mood_events(_series([0.1, 0.5, 0.5, 0.5, 0.5, 0.5, 0.9])) == []

    def test_too_few_entries(self):
        assert find_mood_events(_series([0.5, 0.1, 0.5, 0.5])) == []

    def test_alternating_extrema(self):
        kinds = [(e.entry_id, e.kind) for e in find_mood_events(_series(DECLINE_MOODS))]
        assert kinds == [("e3", "high"), ("e6", "low"), ("e9", "high"), ("e12", "low")]


class TestSequencePatterns:
    """Tests for mine_sequence_patterns()"""

    def test_recurring_decline_cluster(self):
        clusters = mine_sequence_patterns(_series(DECLINE_MOODS, tags=DECLINE_TAGS))

        assert len(clusters) == 1
        cluster = clusters[0]
        assert cluster.pattern == ["deadlines", "overtime"]
        assert cluster.occurrences == 2
        assert cluster.avg_mood_drop == pytest.approx(0.8)
        assert cluster.avg_days_to_decline == pytest.approx(3.0)
        assert cluster.validation_state == "pending_validation"
        assert cluster.confidence == 0.6

    def test_cluster_insight(self):
        clusters = mine_sequence_patterns(_series(DECLINE_MOODS, tags=DECLINE_TAGS))
        insight = format_sequences_as_insights(clusters)[0]

        assert insight.type == "sequence"
        assert insight.priority == 3
        assert insight.summary.endswith("Does this resonate?")
        assert len(insight.evidence) == 2

    def test_unrelated_topics_do_not_cluster(self):
        tags = {4: ["@topic:deadlines"], 5: ["@topic:overtime"], 10: ["@topic:travel"], 11: ["@topic:family"]}
        assert mine_sequence_patterns(_series(DECLINE_MOODS, tags=tags)) == []

    def test_needs_ten_entries(self):
        assert mine_sequence_patterns(_series([0.5, 0.5, 0.5, 0.1, 0.5, 0.5, 0.5])) == []


class TestRecovery:
    """Tests for low periods and recovery signatures"""

    def test_find_low_periods(self):
        periods = find_low_periods(_series([0.2, 0.2, 0.5, 0.1, 0.6]))

        assert len(periods) == 1
        assert [e.id for e in periods[0].entries] == ["e0", "e1"]

    def test_recovery_signature(self):
        entries = _series(
            [0.6, 0.2, 0.2, 0.4, 0.7],
            texts={3: "Went for a walk around the block.", 4: "Called my sister and laughed a lot."},
        )
        signature = analyze_recovery_patterns(entries)

        assert signature.total_recoveries == 1
        assert signature.validation_state == "pending_validation"
        assert {f.factor for f in signature.common_factors} == {"walking", "social_support"}
        assert signature.avg_recovery_days == pytest.approx(2.0)
        assert signature.episodes[0].recovered is True

        insight = format_recovery_as_insight(signature)
        assert insight.id == "insight_recovery_signature"
        assert insight.priority == 3

    def test_no_low_periods(self):
        signature = analyze_recovery_patterns(_series([0.6, 0.7, 0.5]))

        assert signature.total_recoveries == 0
        assert signature.validation_state == "hidden"
        assert format_recovery_as_insight(signature) is None


class TestTextHelpers:
    """Tests for coping and topic extraction"""

    def test_coping_mentions(self):
        mentions = extract_coping_mentions("Made some tea, took a walk in the park and called a friend")
        assert mentions == ["walking", "social_support", "nourishment", "nature"]

    def test_extract_topics_order(self):
        tags = ["@person:sam", "@activity:yoga", "@topic:work", "@topic:work"]
        assert extract_topics(tags) == ["work", "yoga", "sam"]
