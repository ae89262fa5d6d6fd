"""
Integration tests for InsightOrchestrator

Runs full generation passes over in-memory stores.
"""

import asyncio
from datetime import timedelta

import psycopg
import pytest

from journal_insights.db.document_store import (
    BASELINES,
    INSIGHTS,
    INSIGHTS_STAGING,
    INTERVENTIONS,
    RULES,
    SETTINGS,
    InMemoryDocumentStore,
)
from journal_insights.models.insight import Insight
from journal_insights.services import orchestrator as orchestrator_module
from journal_insights.services.association_rules import rule_id
from journal_insights.services.insight_store import InsightStore
from journal_insights.services.synthesis import TextSynthesisPort
from tests.helpers import NOW, TEST_USER, make_biometric_days, make_workout_history


class FailingInsightsStore(InMemoryDocumentStore):
    """Every write to the insights document fails"""

    async def merge(self, user_id, name, data):
        if name == INSIGHTS:
            raise RuntimeError("insights table locked")
        return await super().merge(user_id, name, data)


class StagingReadFailureStore(InMemoryDocumentStore):
    """Reading back the staged batch drops the connection"""

    async def get(self, user_id, name):
        if name == INSIGHTS_STAGING:
            raise psycopg.OperationalError("server closed the connection unexpectedly")
        return await super().get(user_id, name)


class HangingSynthesis(TextSynthesisPort):
    async def synthesize(self, context):
        await asyncio.sleep(3600)


def _boom(*args, **kwargs):
    raise RuntimeError("producer exploded")


# ============================================================================
# Generation
# ============================================================================

async def test_generation_end_to_end(orchestrator_factory, document_store):
    orchestrator = orchestrator_factory(entries=make_workout_history())

    result = await orchestrator.generate_insights(TEST_USER, now=NOW)

    assert result.success
    assert result.data_status.entries == 20
    assert result.data_status.connected is False
    assert result.data_status.is_calibrating is False
    assert result.data_status.has_baselines is True
    assert "System Learning" in [i.title for i in result.insights]
    assert [i.priority for i in result.insights] == sorted(i.priority for i in result.insights)

    rules = await document_store.get(TEST_USER, RULES)
    workout = next(r for r in rules["rules"] if r["antecedent"] == ["activity:workout"])
    assert workout["confidence"] == pytest.approx(0.3)
    assert workout["validation_state"] == "hidden"

    cached = await orchestrator.get_cached_insights(TEST_USER)
    assert [i.id for i in cached.active] == [i.id for i in result.insights]
    assert cached.stale is False
    assert cached.expires_at == NOW + timedelta(hours=24)


async def test_calibrating_user_gets_calibration_first(orchestrator_factory):
    orchestrator = orchestrator_factory(
        entries=make_workout_history(),
        biometric_days=make_biometric_days(3),
    )

    result = await orchestrator.generate_insights(TEST_USER, now=NOW)

    assert result.data_status.is_calibrating is True
    assert result.data_status.biometric_days == 3
    assert result.insights[0].type == "calibration"
    assert result.insights[0].summary == "11 days until full biometric insights"


async def test_missing_user_id(orchestrator_factory):
    assert await orchestrator_factory().generate_insights("") is None


async def test_every_producer_failing_keeps_cache(orchestrator_factory, document_store, monkeypatch):
    orchestrator = orchestrator_factory(
        entries=make_workout_history(),
        biometric_days=make_biometric_days(3),
    )
    previous = Insight(id="kept", type="pattern_alert", title="Earlier insight")
    await InsightStore(document_store).save_insights(TEST_USER, [previous], now=NOW - timedelta(hours=2))

    for name in (
        "calibration_insight",
        "synthesize_with_fallback",
        "mine_patterns",
        "baseline_deviation_insights",
        "top_pattern_insight",
        "detect_meta_patterns",
    ):
        monkeypatch.setattr(orchestrator_module, name, _boom)

    result = await orchestrator.generate_insights(TEST_USER, now=NOW)

    assert result.success is False
    assert len(result.errors) == 8
    document = await InsightStore(document_store).get_document(TEST_USER)
    assert [i.id for i in document.active] == ["kept"]
    assert document.generated_at == NOW - timedelta(hours=2)


async def test_one_producer_failing_is_isolated(orchestrator_factory, monkeypatch):
    orchestrator = orchestrator_factory(entries=make_workout_history())
    monkeypatch.setattr(orchestrator_module, "mine_patterns", _boom)

    result = await orchestrator.generate_insights(TEST_USER, now=NOW)

    assert result.success is True
    assert any(e.startswith("association_rules:") for e in result.errors)
    assert "System Learning" in [i.title for i in result.insights]


async def test_persistence_failure_still_returns_insights(orchestrator_factory):
    documents = FailingInsightsStore()
    orchestrator = orchestrator_factory(entries=make_workout_history(), documents=documents)

    result = await orchestrator.generate_insights(TEST_USER, now=NOW)

    assert result.success is True
    assert result.insights
    assert any(e.startswith("persistence:") for e in result.errors)
    assert await documents.get(TEST_USER, INSIGHTS) is None


async def test_staging_read_failure_reports_persistence_error(orchestrator_factory):
    documents = StagingReadFailureStore()
    orchestrator = orchestrator_factory(entries=make_workout_history(), documents=documents)

    result = await orchestrator.generate_insights(TEST_USER, now=NOW)

    assert result.success is True
    assert any(e.startswith("persistence: Failed to stage insight batch") for e in result.errors)
    assert await documents.get(TEST_USER, INSIGHTS) is None


async def test_hung_synthesis_falls_back_within_timeout(orchestrator_factory):
    orchestrator = orchestrator_factory(
        entries=make_workout_history(),
        synthesis=HangingSynthesis(),
        synthesis_timeout=0.05,
    )

    result = await asyncio.wait_for(orchestrator.generate_insights(TEST_USER, now=NOW), timeout=5)

    assert result.success is True
    assert "System Learning" in [i.title for i in result.insights]


async def test_user_locks_are_released(orchestrator_factory):
    orchestrator = orchestrator_factory(entries=make_workout_history())

    await orchestrator.generate_insights(TEST_USER, now=NOW)
    assert orchestrator._locks == {}

    first, second = await asyncio.gather(
        orchestrator.generate_insights(TEST_USER, now=NOW),
        orchestrator.generate_insights(TEST_USER, now=NOW + timedelta(minutes=1)),
    )
    assert first.success and second.success
    assert orchestrator._locks == {}


async def test_connected_user_gets_no_keyword_pattern_insight(orchestrator_factory):
    orchestrator = orchestrator_factory(
        entries=make_workout_history(),
        biometric_days=make_biometric_days(20),
    )

    result = await orchestrator.generate_insights(TEST_USER, now=NOW)

    assert result.data_status.connected is True
    assert result.data_status.is_calibrating is False
    assert "pattern_detection" not in [i.source for i in result.insights]
    assert not any(e.startswith("top_pattern") for e in result.errors)


async def test_recommendation_from_tracked_interventions(orchestrator_factory, document_store):
    await document_store.merge(TEST_USER, SETTINGS, {
        "association_rules": {"enabled": False},
        "sequence_mining": {"enabled": False},
    })
    orchestrator = orchestrator_factory(entries=make_workout_history())

    result = await orchestrator.generate_insights(TEST_USER, now=NOW)

    tracked = await document_store.get(TEST_USER, INTERVENTIONS)
    gym = tracked["interventions"]["gym"]
    assert gym["total_occurrences"] == 8
    assert gym["effectiveness"]["mood_delta"]["mean"] == pytest.approx(14.9)
    assert gym["effectiveness"]["score"] == pytest.approx(0.75, abs=0.01)

    recommendation = next(i for i in result.insights if i.type == "recommendation")
    assert recommendation.entity == "gym"
    assert recommendation.title == "Try gym today"
    assert "15 points higher" in recommendation.summary


async def test_recommendations_can_be_switched_off(orchestrator_factory, document_store):
    await document_store.merge(TEST_USER, SETTINGS, {"recommendations": {"enabled": False}})
    orchestrator = orchestrator_factory(entries=make_workout_history())

    result = await orchestrator.generate_insights(TEST_USER, now=NOW)

    assert "recommendation" not in [i.type for i in result.insights]
    assert await document_store.get(TEST_USER, INTERVENTIONS) is None


# ============================================================================
# Staleness
# ============================================================================

async def test_new_entry_marks_stale_then_regenerates(orchestrator_factory):
    orchestrator = orchestrator_factory(entries=make_workout_history())
    await orchestrator.generate_insights(TEST_USER, now=NOW)

    association = await orchestrator.update_for_new_entry(
        TEST_USER, "e-new", "Long talk with my manager about the promotion timeline.",
        sentiment=0.4, now=NOW + timedelta(hours=1)
    )
    assert association.success
    assert association.action == "fallback"

    cached = await orchestrator.get_cached_insights(TEST_USER)
    assert cached.stale is True
    assert orchestrator.needs_regeneration(cached, NOW + timedelta(hours=1))

    refreshed = await orchestrator.get_insights(TEST_USER, now=NOW + timedelta(hours=2))
    assert refreshed.stale is False
    assert refreshed.generated_at == NOW + timedelta(hours=2)


async def test_fresh_cache_is_served(orchestrator_factory):
    orchestrator = orchestrator_factory(entries=make_workout_history())
    await orchestrator.generate_insights(TEST_USER, now=NOW)

    cached = await orchestrator.get_insights(TEST_USER, now=NOW + timedelta(hours=1))
    assert cached.generated_at == NOW


async def test_edit_marks_stale(orchestrator_factory):
    entries = make_workout_history()
    orchestrator = orchestrator_factory(entries=entries)
    await orchestrator.generate_insights(TEST_USER, now=NOW)

    edited = entries[0].model_copy(update={"text": "Skipped the gym, felt flat."})
    await orchestrator.update_entry(edited, now=NOW)

    assert (await orchestrator.get_cached_insights(TEST_USER)).stale is True


# ============================================================================
# User actions
# ============================================================================

async def test_rule_feedback_survives_regeneration(orchestrator_factory, document_store):
    orchestrator = orchestrator_factory(entries=make_workout_history())
    await orchestrator.generate_insights(TEST_USER, now=NOW)
    workout_id = rule_id(["activity:workout"])

    updated = await orchestrator.record_rule_feedback(TEST_USER, workout_id, "confirmed", now=NOW)
    assert updated.validation_state == "confirmed"
    assert updated.confidence == pytest.approx(0.4)
    assert (await orchestrator.get_cached_insights(TEST_USER)).stale is True

    await orchestrator.generate_insights(TEST_USER, now=NOW + timedelta(hours=1))
    rules = await document_store.get(TEST_USER, RULES)
    workout = next(r for r in rules["rules"] if r["id"] == workout_id)
    assert workout["validation_state"] == "confirmed"

    assert await orchestrator.record_rule_feedback(TEST_USER, "unknown", "confirmed") is None


async def test_rotation_and_dismiss(orchestrator_factory):
    orchestrator = orchestrator_factory(
        entries=make_workout_history(),
        biometric_days=make_biometric_days(3),
    )
    result = await orchestrator.generate_insights(TEST_USER, now=NOW)
    assert len(result.insights) >= 2

    first = await orchestrator.get_next_insight(TEST_USER, now=NOW)
    assert await orchestrator.mark_insight_shown(TEST_USER, first.id, now=NOW) is True
    second = await orchestrator.get_next_insight(TEST_USER, now=NOW + timedelta(minutes=5))
    assert second.id != first.id

    assert await orchestrator.dismiss_insight(TEST_USER, first.id) is True
    cached = await orchestrator.get_cached_insights(TEST_USER)
    assert first.id not in [i.id for i in cached.active]
    assert await orchestrator.dismiss_insight(TEST_USER, "missing") is False


async def test_next_insight_without_cache(orchestrator_factory):
    assert await orchestrator_factory().get_next_insight(TEST_USER) is None


# ============================================================================
# Reassessment
# ============================================================================

async def test_reassess_runs_every_stage(orchestrator_factory, document_store):
    orchestrator = orchestrator_factory(entries=make_workout_history())

    result = await orchestrator.reassess(TEST_USER, now=NOW)

    assert result.completed_steps == ["baselines", "patterns", "rules", "insights"]
    assert result.cancelled is False
    assert result.baselines_recalculated is True
    assert result.rules_mined >= 1
    assert result.generation.success is True


async def test_reassess_cancelled_before_start(orchestrator_factory, document_store):
    orchestrator = orchestrator_factory(entries=make_workout_history())
    cancel = asyncio.Event()
    cancel.set()

    result = await orchestrator.reassess(TEST_USER, cancel_event=cancel, now=NOW)

    assert result.cancelled is True
    assert result.completed_steps == []
    assert await document_store.get(TEST_USER, BASELINES) is None


async def test_reassess_cancelled_between_stages(orchestrator_factory, document_store, monkeypatch):
    orchestrator = orchestrator_factory(entries=make_workout_history())
    cancel = asyncio.Event()
    real_detect = orchestrator_module.detect_in_period

    def detect_then_cancel(*args, **kwargs):
        cancel.set()
        return real_detect(*args, **kwargs)

    monkeypatch.setattr(orchestrator_module, "detect_in_period", detect_then_cancel)

    result = await orchestrator.reassess(TEST_USER, cancel_event=cancel, now=NOW)

    assert result.cancelled is True
    assert result.completed_steps == ["baselines", "patterns"]
    assert await document_store.get(TEST_USER, BASELINES) is not None
    assert await document_store.get(TEST_USER, RULES) is None
    assert result.generation is None
