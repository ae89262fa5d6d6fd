"""
Unit tests for insight_dedup module

Tests similarity signals and batch deduplication against stored insights.
"""

from journal_insights.models.insight import Insight
from journal_insights.services.insight_dedup import (
    deduplicate_insights,
    detect_themes,
    is_duplicate,
    jaccard,
    tokenize,
)


def _insight(insight_id, title, summary="", priority=2, dismissed=False):
    return Insight(id=insight_id, type="pattern_alert", title=title, summary=summary,
                   priority=priority, dismissed=dismissed)


class TestSimilarity:
    """Tests for tokenize/jaccard/themes"""

    def test_tokenize_drops_stopwords(self):
        assert tokenize("Your mood is higher on yoga days") == {"mood", "higher", "yoga", "days"}
        assert tokenize(None) == set()

    def test_jaccard(self):
        assert jaccard({"a", "b"}, {"b", "c"}) == 1 / 3
        assert jaccard(set(), set()) == 0.0

    def test_detect_themes_needs_two_hits(self):
        assert detect_themes(_insight("a", "Sleep and rest", "You slept poorly")) == {"sleep"}
        assert detect_themes(_insight("b", "Sleep matters")) == set()


class TestIsDuplicate:
    """Tests for is_duplicate()"""

    def test_same_id_is_not_duplicate(self):
        insight = _insight("a", "Your mood is higher on yoga days")
        assert is_duplicate(insight, insight) is False

    def test_title_overlap(self):
        assert is_duplicate(
            _insight("a", "Your mood is higher on yoga days"),
            _insight("b", "Mood is higher on yoga days"),
        )

    def test_shared_theme(self):
        assert is_duplicate(
            _insight("a", "Sleep and rest", "You slept badly before big meetings"),
            _insight("b", "Tired after short sleep", "Energy dips when you are tired"),
        )

    def test_distinct_insights(self):
        assert not is_duplicate(
            _insight("a", "Your mood is higher on yoga days"),
            _insight("b", "Mondays feel heavier after weekends with family"),
        )


class TestDeduplicateInsights:
    """Tests for deduplicate_insights()"""

    def test_higher_priority_survives_in_batch(self):
        low = _insight("low", "Your mood is higher on yoga days", priority=3)
        high = _insight("high", "Mood is higher on yoga days", priority=1)

        result = deduplicate_insights([low, high])

        assert [i.id for i in result.accepted] == ["high"]
        assert [i.id for i in result.rejected] == ["low"]

    def test_adopts_stored_id(self):
        stored = _insight("stored", "Your mood is higher on yoga days")
        candidate = _insight("fresh", "Mood is higher on yoga days")

        result = deduplicate_insights([candidate], [stored])

        assert [i.id for i in result.accepted] == ["stored"]

    def test_same_id_as_stored_is_kept(self):
        stored = _insight("same", "Your mood is higher on yoga days")
        result = deduplicate_insights([_insight("same", "Your mood is higher on yoga days")], [stored])
        assert [i.id for i in result.accepted] == ["same"]

    def test_dismissed_never_resurfaces(self):
        dismissed = _insight("old", "Your mood is higher on yoga days", dismissed=True)

        near_copy = deduplicate_insights([_insight("new", "Mood is higher on yoga days")], [dismissed])
        same_id = deduplicate_insights([_insight("old", "Your mood is higher on yoga days")], [dismissed])

        assert near_copy.accepted == []
        assert same_id.accepted == []
