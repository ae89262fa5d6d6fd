"""
Unit tests for insight_rotation module

Tests scoring, cooldown penalties and the capped recently-shown list.
"""

from datetime import timedelta

import pytest

from journal_insights.models.insight import Insight
from journal_insights.services.insight_rotation import (
    InsightRotation,
    RotationRecord,
    RotationState,
    rotation_key,
    score_insight,
)
from tests.helpers import NOW, TEST_USER


class FixedRng:
    """Jitter source that always returns the midpoint"""

    def uniform(self, low, high):
        return (low + high) / 2


def _insight(insight_id, insight_type="pattern_alert", **fields):
    return Insight(id=insight_id, type=insight_type, title=f"Insight {insight_id}", **fields)


class TestScoreInsight:
    """Tests for score_insight()"""

    def test_base_score(self):
        assert score_insight(_insight("a"), RotationState.empty(), NOW, FixedRng()) == 105.0

    def test_boosts(self):
        insight = _insight(
            "a", "association_rule",
            mood_delta_percent=-45.0, entry_count=4, last_mentioned=NOW - timedelta(days=2),
        )
        # 100 + 30 (delta cap) + 8 (entries) + 15 (recent) + 25 (type) + 5 (jitter)
        assert score_insight(insight, RotationState.empty(), NOW, FixedRng()) == 183.0

    def test_cooldown_penalty_an_hour_after_showing(self):
        insight = _insight("a")
        shown = RotationState(recently_shown=[RotationRecord(key="a", shown_at=NOW)])
        later = NOW + timedelta(hours=1)

        fresh_score = score_insight(insight, RotationState.empty(), later, FixedRng())
        shown_score = score_insight(insight, shown, later, FixedRng())

        assert fresh_score - shown_score >= 80

    def test_smaller_penalty_after_cooldown(self):
        shown = RotationState(recently_shown=[RotationRecord(key="a", shown_at=NOW)])
        score = score_insight(_insight("a"), shown, NOW + timedelta(hours=30), FixedRng())
        assert score == 85.0


class TestInsightRotation:
    """Tests for InsightRotation persistence"""

    async def test_record_shown_caps_at_five(self, key_value_store):
        rotation = InsightRotation(key_value_store, rng=FixedRng())
        for i in range(7):
            await rotation.record_shown(TEST_USER, f"i{i}", now=NOW + timedelta(minutes=i))

        state = await rotation.get_state(TEST_USER)
        assert [r.key for r in state.recently_shown] == ["i6", "i5", "i4", "i3", "i2"]
        assert state.view_count == 7

    async def test_record_shown_is_idempotent_per_key(self, key_value_store):
        rotation = InsightRotation(key_value_store, rng=FixedRng())
        await rotation.record_shown(TEST_USER, "a", now=NOW)
        await rotation.record_shown(TEST_USER, "a", now=NOW + timedelta(minutes=5))

        state = await rotation.get_state(TEST_USER)
        assert len(state.recently_shown) == 1
        assert state.recently_shown[0].shown_at == NOW + timedelta(minutes=5)

    async def test_select_next_skips_recently_shown(self, key_value_store):
        rotation = InsightRotation(key_value_store, rng=FixedRng())
        insights = [_insight("a", "synthesis"), _insight("b", "synthesis")]

        first = await rotation.select_next(TEST_USER, insights, now=NOW)
        await rotation.record_shown(TEST_USER, first.id, now=NOW)
        second = await rotation.select_next(TEST_USER, insights, now=NOW + timedelta(hours=1))

        assert second.id != first.id

    async def test_dismissed_excluded(self, key_value_store):
        rotation = InsightRotation(key_value_store, rng=FixedRng())
        assert await rotation.select_next(TEST_USER, [_insight("a", dismissed=True)], now=NOW) is None

    async def test_categories_are_separate(self, key_value_store):
        rotation = InsightRotation(key_value_store, rng=FixedRng())
        await rotation.record_shown(TEST_USER, "a", category="work", now=NOW)

        assert (await rotation.get_state(TEST_USER, "personal")).recently_shown == []
        assert await key_value_store.get(rotation_key(TEST_USER, "work")) is not None

    async def test_unreadable_state_resets(self, key_value_store):
        await key_value_store.set(rotation_key(TEST_USER, "personal"), {"recently_shown": [{"key": "a"}]})
        state = await InsightRotation(key_value_store).get_state(TEST_USER)
        assert state.recently_shown == []

    async def test_get_rotated_limit(self, rotation):
        insights = [_insight(f"i{i}") for i in range(12)]
        assert len(await rotation.get_rotated(TEST_USER, insights, limit=10, now=NOW)) == 10
