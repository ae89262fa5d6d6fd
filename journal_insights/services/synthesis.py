"""
Causal synthesis

The synthesis collaborator turns the assembled context (recent entries,
active threads, life state, baselines, today's biometrics) into one
narrative insight. It sits behind TextSynthesisPort; the OpenAI adapter is
the production implementation. When it times out, fails or returns
malformed output a local rule-based insight is substituted.
"""

import asyncio
import json
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import List, Optional

import httpx
from openai import AsyncOpenAI
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError

from journal_insights.config import OPENAI_API_KEY, SYNTHESIS_MODEL, SYNTHESIS_TIMEOUT_SECONDS
from journal_insights.exceptions import SynthesisError
from journal_insights.models.baseline import BaselineDocument
from journal_insights.models.entry import BiometricDay, Entry
from journal_insights.models.interventions import InterventionDocument
from journal_insights.models.insight import PRIORITY_SYNTHESIS, Insight, stable_insight_id
from journal_insights.models.state import StateDetection
from journal_insights.models.thread import Thread
from journal_insights.resilience.circuit_breaker import SYNTHESIS_BREAKER, with_circuit_breaker
from journal_insights.resilience.fallback import FallbackStrategy, execute_with_fallbacks
from journal_insights.resilience.metrics import record_api_call
from journal_insights.resilience.retry import with_retry
from journal_insights.services.baseline_manager import compare_to_baseline

logger = logging.getLogger(__name__)

MAX_PROMPT_ENTRIES = 5
MAX_PROMPT_THREADS = 5
MAX_PROMPT_INTERVENTIONS = 5
ENTRY_EXCERPT_CHARS = 300

# States where an elevated resting heart rate reads as a stress signal
STRESS_STATES = frozenset({"career_waiting", "career_active", "relationship_strain", "burnout_risk"})
RHR_STRESS_DELTA = 3.0


@dataclass
class SynthesisContext:
    user_id: str
    entries: List[Entry] = field(default_factory=list)
    threads: List[Thread] = field(default_factory=list)
    state: Optional[StateDetection] = None
    baselines: Optional[BaselineDocument] = None
    biometrics_today: Optional[BiometricDay] = None
    interventions: Optional[InterventionDocument] = None


class SynthesisResult(BaseModel):
    """Parsed collaborator output"""
    title: str = Field(min_length=1)
    summary: str = ""
    body: str = ""
    mechanism: Optional[str] = None
    evidence: list[str] = Field(default_factory=list)
    recommendation: Optional[str] = None
    confidence: Optional[float] = Field(None, ge=0, le=1)
    urgency: str = "low"


class TextSynthesisPort(ABC):
    """Narrative synthesis capability"""

    @abstractmethod
    async def synthesize(self, context: SynthesisContext) -> SynthesisResult:
        """Raises SynthesisError on timeout, failure or malformed output"""


# ================================================================
# Prompt
# ================================================================

def _format_entries(entries: List[Entry]) -> str:
    recent = sorted(entries, key=lambda e: e.effective_date)[-MAX_PROMPT_ENTRIES:]
    lines = []
    for entry in recent:
        mood = f"{round(entry.mood_score * 100)}%" if entry.mood_score is not None else "unknown"
        lines.append(f"[{entry.local_time.date().isoformat()}] Mood: {mood} - \"{entry.text[:ENTRY_EXCERPT_CHARS]}\"")
    return "\n".join(lines)


def _format_threads(threads: List[Thread]) -> str:
    return "\n".join(
        f"- {t.display_name} ({t.category}): {t.entry_count} entries, "
        f"trajectory: {t.trajectory}, baseline: {round(t.sentiment_baseline * 100)}%"
        for t in threads[:MAX_PROMPT_THREADS]
    )


def _format_biometrics(context: SynthesisContext) -> str:
    today = context.biometrics_today
    if today is None or context.baselines is None:
        return ""

    lines = []
    for metric, value in (("rhr", today.resting_heart_rate), ("hrv", today.hrv), ("recovery", today.recovery_score)):
        if value is None:
            continue
        comparison = compare_to_baseline(value, context.baselines.global_metrics, metric)
        if comparison:
            lines.append(f"{metric.upper()}: {value} ({comparison.status}, {comparison.percent_difference:+.0f}% from baseline)")
    return "\n".join(lines)


def _format_interventions(document: Optional[InterventionDocument]) -> str:
    if document is None:
        return ""
    ranked = sorted(document.interventions.values(), key=lambda r: r.effectiveness.score, reverse=True)
    lines = []
    for record in ranked[:MAX_PROMPT_INTERVENTIONS]:
        mood = record.effectiveness.mood_delta
        effect = f", mood {mood.mean:+.0f} points vs surrounding week" if mood else ""
        lines.append(
            f"- {record.name.replace('_', ' ')} ({record.category}): {record.total_occurrences} times, "
            f"effectiveness {round(record.effectiveness.score * 100)}%{effect}"
        )
    return "\n".join(lines)


def build_synthesis_prompt(context: SynthesisContext) -> str:
    state = context.state
    state_info = (
        f"Current life state: {state.primary} ({round(state.confidence * 100)}% confidence)\n"
        f"Secondary states: {', '.join(state.secondary) or 'none'}"
        if state else "Current life state: unknown"
    )

    return f"""You are a behavioral psychologist analyzing a user's journal and biometric data.
Generate ONE insight that reveals a non-obvious pattern and its psychological mechanism.

## Recent journal entries
{_format_entries(context.entries) or 'No recent entries available'}

## Active life threads
{_format_threads(context.threads) or 'No active threads'}

## {state_info}

## Today's biometrics vs personal baseline
{_format_biometrics(context) or 'Biometric data unavailable'}

## What has helped before
{_format_interventions(context.interventions) or 'Not enough history yet'}

The insight must:
1. Identify a pattern the user likely hasn't noticed
2. Explain the mechanism behind it
3. Connect what they write with what their body is doing, when biometrics exist
4. End with one specific, actionable recommendation
Avoid generic advice. Quantify when possible.

Return valid JSON only:
{{
  "title": "Short memorable title",
  "summary": "One sentence hook",
  "body": "2-3 paragraphs with explanation, mechanism and evidence",
  "mechanism": "The mechanism in one sentence",
  "evidence": ["Specific quote, metric or pattern"],
  "recommendation": "Specific action and when to do it",
  "confidence": 0.0-1.0,
  "urgency": "low|medium|high"
}}"""


def parse_synthesis_response(content: Optional[str]) -> SynthesisResult:
    """Parse the collaborator's JSON; raises SynthesisError when malformed"""
    if not content or not content.strip():
        raise SynthesisError(message="Empty synthesis response", operation="parse_synthesis")

    text = content.strip()
    if text.startswith("```"):
        text = text.strip("`")
        if text.startswith("json"):
            text = text[4:]
        text = text.strip()

    try:
        data = json.loads(text)
        if isinstance(data, dict) and isinstance(data.get("insight"), dict):
            data = {**data["insight"], **{k: v for k, v in data.items() if k != "insight"}}
        return SynthesisResult.model_validate(data)
    except (json.JSONDecodeError, PydanticValidationError) as e:
        raise SynthesisError(
            message=f"Malformed synthesis response: {e}",
            operation="parse_synthesis",
            cause=e
        )


# ================================================================
# OpenAI adapter
# ================================================================

class OpenAISynthesisAdapter(TextSynthesisPort):
    def __init__(
        self,
        api_key: str = OPENAI_API_KEY,
        model: str = SYNTHESIS_MODEL,
        timeout_seconds: float = SYNTHESIS_TIMEOUT_SECONDS
    ):
        self.model = model
        self.timeout_seconds = timeout_seconds
        self.client = AsyncOpenAI(
            api_key=api_key,
            timeout=httpx.Timeout(timeout_seconds, connect=5.0)
        )

    @with_circuit_breaker(SYNTHESIS_BREAKER)
    @with_retry()
    async def _complete(self, prompt: str) -> Optional[str]:
        response = await self.client.chat.completions.create(
            model=self.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0.7,
            max_tokens=1200,
            response_format={"type": "json_object"}
        )
        return response.choices[0].message.content

    async def synthesize(self, context: SynthesisContext) -> SynthesisResult:
        start = time.time()
        prompt = build_synthesis_prompt(context)
        try:
            content = await asyncio.wait_for(self._complete(prompt), timeout=self.timeout_seconds)
        except asyncio.TimeoutError as e:
            record_api_call("synthesis", success=False, duration=time.time() - start)
            raise SynthesisError(
                message=f"Synthesis timed out after {self.timeout_seconds}s",
                user_id=context.user_id,
                operation="synthesize",
                cause=e
            )
        except Exception as e:
            record_api_call("synthesis", success=False, duration=time.time() - start)
            raise SynthesisError(
                message=f"Synthesis request failed: {type(e).__name__}: {e}",
                user_id=context.user_id,
                operation="synthesize",
                cause=e
            )

        record_api_call("synthesis", success=True, duration=time.time() - start)
        return parse_synthesis_response(content)


# ================================================================
# Insights
# ================================================================

def synthesis_to_insight(result: SynthesisResult) -> Insight:
    evidence = list(result.evidence)
    if result.mechanism:
        evidence.insert(0, result.mechanism)
    return Insight(
        id=stable_insight_id("synthesis", result.title),
        type="synthesis",
        title=result.title,
        summary=result.summary,
        body=result.body,
        evidence=evidence,
        recommendation=result.recommendation,
        priority=PRIORITY_SYNTHESIS,
        confidence=result.confidence,
        source="synthesis",
    )


def build_fallback_insight(context: SynthesisContext) -> Insight:
    """Rule-based substitute used when synthesis is unavailable"""
    state = context.state
    today = context.biometrics_today
    rhr_stats = context.baselines.global_metrics.get("rhr") if context.baselines else None

    if state and state.primary in STRESS_STATES and today and today.resting_heart_rate is not None and rhr_stats:
        delta = today.resting_heart_rate - rhr_stats.mean
        if delta > RHR_STRESS_DELTA:
            return Insight(
                id=stable_insight_id("pattern_alert", "stress_signal", state.primary),
                type="pattern_alert",
                title="Stress Signal",
                summary="Your body is showing signs of stress during this period.",
                body=(
                    f"Your resting heart rate is {round(delta)} bpm above your baseline. "
                    f"This is a common physiological response to uncertainty."
                ),
                recommendation="Take a 10-minute walk or do a breathing exercise within the next hour",
                priority=PRIORITY_SYNTHESIS,
                confidence=0.6,
                source="fallback",
            )

    return Insight(
        id=stable_insight_id("pattern_alert", "system_learning"),
        type="pattern_alert",
        title="System Learning",
        summary="Continue logging to unlock deeper insights.",
        body="The more you write, the more personal and specific your insights become.",
        priority=PRIORITY_SYNTHESIS,
        confidence=0.3,
        source="fallback",
    )


async def synthesize_with_fallback(
    port: Optional[TextSynthesisPort],
    context: SynthesisContext,
    timeout_seconds: float = SYNTHESIS_TIMEOUT_SECONDS
) -> Insight:
    """Synthesis insight, or the local fallback if the collaborator fails or hangs"""

    if port is None:
        return build_fallback_insight(context)

    async def primary() -> Insight:
        try:
            result = await asyncio.wait_for(port.synthesize(context), timeout=timeout_seconds)
        except asyncio.TimeoutError as e:
            logger.warning(f"[Synthesis] Collaborator exceeded {timeout_seconds}s for {context.user_id}")
            raise SynthesisError(
                f"Synthesis timed out after {timeout_seconds}s",
                user_id=context.user_id,
                operation="synthesize",
                cause=e
            )
        return synthesis_to_insight(result)

    async def local() -> Insight:
        return build_fallback_insight(context)

    return await execute_with_fallbacks(
        [
            FallbackStrategy(name="synthesis", handler=primary, priority=1),
            FallbackStrategy(name="local_rules", handler=local, priority=2),
        ]
    )
