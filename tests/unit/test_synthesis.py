"""Unit tests for causal synthesis and its local fallback"""
import asyncio
from unittest.mock import AsyncMock

import pytest

from journal_insights.exceptions import SynthesisError
from journal_insights.models.baseline import BaselineDocument, MetricStats, Percentiles
from journal_insights.models.entry import BiometricDay
from journal_insights.models.interventions import (
    InterventionDocument,
    InterventionEffectiveness,
    InterventionRecord,
    MetricStats as EffectStats,
)
from journal_insights.models.state import StateDetection
from journal_insights.services.synthesis import (
    OpenAISynthesisAdapter,
    SynthesisContext,
    SynthesisResult,
    TextSynthesisPort,
    build_fallback_insight,
    build_synthesis_prompt,
    parse_synthesis_response,
    synthesize_with_fallback,
)
from tests.helpers import NOW, TEST_USER, make_entry


class HangingSynthesis(TextSynthesisPort):
    """Collaborator that never answers"""

    async def synthesize(self, context):
        await asyncio.sleep(3600)


def _baselines(rhr_mean=60.0):
    stats = MetricStats(
        mean=rhr_mean, std_dev=2.0, min=rhr_mean - 5, max=rhr_mean + 5,
        percentiles=Percentiles(p25=rhr_mean - 2, p50=rhr_mean, p75=rhr_mean + 2),
        trend=0.0, sample_size=20,
    )
    return BaselineDocument(calculated_at=NOW, data_window_days=30, entry_count=20, global_metrics={"rhr": stats})


def _stress_context():
    return SynthesisContext(
        user_id=TEST_USER,
        state=StateDetection(primary="career_waiting", confidence=0.7),
        baselines=_baselines(60.0),
        biometrics_today=BiometricDay(date=NOW.date(), resting_heart_rate=70),
    )


class TestParseSynthesisResponse:

    def test_valid(self):
        result = parse_synthesis_response('{"title": "Sunday Dread", "confidence": 0.7}')
        assert result.title == "Sunday Dread"
        assert result.confidence == 0.7

    def test_fenced(self):
        result = parse_synthesis_response('```json\n{"title": "Fenced"}\n```')
        assert result.title == "Fenced"

    def test_nested_insight_key(self):
        result = parse_synthesis_response('{"insight": {"title": "Nested", "summary": "s"}}')
        assert result.title == "Nested"
        assert result.summary == "s"

    @pytest.mark.parametrize("content", [None, "", "   ", "not json", '{"summary": "no title"}', '{"title": ""}'])
    def test_malformed(self, content):
        with pytest.raises(SynthesisError):
            parse_synthesis_response(content)


def test_prompt_includes_entries_and_state():
    context = SynthesisContext(
        user_id=TEST_USER,
        entries=[make_entry("e1", text="Waiting to hear back from the interview panel.")],
        state=StateDetection(primary="career_waiting", confidence=0.7),
    )
    prompt = build_synthesis_prompt(context)

    assert "Waiting to hear back from the interview panel." in prompt
    assert "career_waiting (70% confidence)" in prompt
    assert "Biometric data unavailable" in prompt
    assert "Not enough history yet" in prompt


def test_prompt_lists_effective_interventions():
    record = InterventionRecord(
        name="dog_walk", kind="narrative", category="relational", total_occurrences=6,
        effectiveness=InterventionEffectiveness(mood_delta=EffectStats(mean=12.0, std_dev=3.0), score=0.9, sample_size=6),
    )
    context = SynthesisContext(user_id=TEST_USER, interventions=InterventionDocument(interventions={"dog_walk": record}))

    prompt = build_synthesis_prompt(context)

    assert "- dog walk (relational): 6 times, effectiveness 90%, mood +12 points vs surrounding week" in prompt


class TestFallbackInsight:

    def test_stress_signal(self):
        insight = build_fallback_insight(_stress_context())
        assert insight.title == "Stress Signal"
        assert "10 bpm" in insight.body
        assert insight.source == "fallback"

    def test_small_rhr_delta_is_system_learning(self):
        context = _stress_context()
        context.biometrics_today = BiometricDay(date=NOW.date(), resting_heart_rate=62)
        assert build_fallback_insight(context).title == "System Learning"

    def test_calm_state_is_system_learning(self):
        context = _stress_context()
        context.state = StateDetection(primary="stable", confidence=0.5)
        insight = build_fallback_insight(context)
        assert insight.title == "System Learning"
        assert insight.confidence == 0.3


class TestSynthesizeWithFallback:

    async def test_no_port(self):
        insight = await synthesize_with_fallback(None, SynthesisContext(user_id=TEST_USER))
        assert insight.title == "System Learning"

    async def test_port_success(self):
        port = AsyncMock(spec=TextSynthesisPort)
        port.synthesize.return_value = SynthesisResult(
            title="The Waiting Tax",
            mechanism="Uncertainty keeps the stress response switched on",
            evidence=["RHR up 8%"],
            confidence=0.8,
        )

        insight = await synthesize_with_fallback(port, SynthesisContext(user_id=TEST_USER))

        assert insight.type == "synthesis"
        assert insight.priority == 1
        assert insight.evidence[0] == "Uncertainty keeps the stress response switched on"
        assert insight.source == "synthesis"

    async def test_port_failure_uses_local_rules(self):
        port = AsyncMock(spec=TextSynthesisPort)
        port.synthesize.side_effect = SynthesisError(message="timed out")

        insight = await synthesize_with_fallback(port, SynthesisContext(user_id=TEST_USER))

        assert insight.title == "System Learning"
        assert insight.source == "fallback"

    async def test_hung_port_times_out_to_local_rules(self):
        insight = await asyncio.wait_for(
            synthesize_with_fallback(HangingSynthesis(), _stress_context(), timeout_seconds=0.05),
            timeout=5,
        )

        assert insight.title == "Stress Signal"
        assert insight.source == "fallback"


class TestOpenAISynthesisAdapter:

    async def test_parses_completion(self):
        adapter = OpenAISynthesisAdapter(api_key="test")
        adapter._complete = AsyncMock(return_value='{"title": "Morning Momentum", "confidence": 0.6}')

        result = await adapter.synthesize(SynthesisContext(user_id=TEST_USER))

        assert result.title == "Morning Momentum"
        adapter._complete.assert_awaited_once()

    async def test_request_failure_wrapped(self):
        adapter = OpenAISynthesisAdapter(api_key="test")
        adapter._complete = AsyncMock(side_effect=RuntimeError("connection reset"))

        with pytest.raises(SynthesisError) as exc_info:
            await adapter.synthesize(SynthesisContext(user_id=TEST_USER))
        assert isinstance(exc_info.value.cause, RuntimeError)
