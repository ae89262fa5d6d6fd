"""
Insight Orchestrator

The only entry point the rest of the application uses. One generation pass:

1. Fan out the independent fetches (entries, threads, baselines, biometric
   history, today's biometrics, state, settings, rules, stored insights)
2. Pattern detection over the entry window
3. Life-state detection
4. Baseline freshness check (recompute when stale and enough entries)
5. Rule, sequence, recovery and intervention mining in a worker thread,
   concurrently with persisting the detected state
6. Synthesis (or its local fallback), mined-pattern insights, baseline
   deviations and intervention recommendations
7. Every producer's insights are deduplicated, then persisted through the
   staging flow

Each producer runs in its own failure boundary. A pass only fails when the
entries cannot be fetched or every producer fails; the stored insight
document is left untouched in both cases.
"""

import asyncio
import logging
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Sequence

from journal_insights.config import (
    BIOMETRIC_HISTORY_DAYS,
    DEDUP_SIMILARITY_THRESHOLD,
    ENTRY_WINDOW_LIMIT,
    MIN_ENTRIES_FOR_BASELINES,
    SYNTHESIS_TIMEOUT_SECONDS,
)
from journal_insights.db.document_store import INTERVENTIONS, RULES, SETTINGS, DocumentStore
from journal_insights.db.entry_store import BiometricProvider, EntryStore
from journal_insights.exceptions import InsightEngineError
from journal_insights.models.baseline import BaselineDocument
from journal_insights.models.entry import BiometricDay, Entry
from journal_insights.models.interventions import InterventionDocument
from journal_insights.models.insight import (
    PRIORITY_CALIBRATION,
    PRIORITY_CORRELATIONAL,
    PRIORITY_PATTERN,
    CachedInsights,
    DataStatus,
    EngineSettings,
    GenerationResult,
    Insight,
    InsightDocument,
    ReassessmentResult,
    stable_insight_id,
    utc_now,
)
from journal_insights.models.patterns import (
    AssociationRule,
    RecoverySignature,
    RuleDocument,
    RuleFeedback,
    SequenceCluster,
)
from journal_insights.models.thread import Thread, ThreadAssociation, ThreadProposal
from journal_insights.resilience.metrics import (
    record_generation_run,
    record_insights_produced,
    record_producer_failure,
)
from journal_insights.services.association_rules import (
    carry_over_feedback,
    format_rules_as_insights,
    mine_association_rules,
    update_rule_with_feedback,
)
from journal_insights.services.baseline_manager import (
    BIOMETRIC_FIELDS,
    METRIC_NAMES,
    BaselineManager,
    compare_to_baseline,
)
from journal_insights.services.insight_dedup import deduplicate_insights
from journal_insights.services.insight_rotation import InsightRotation
from journal_insights.services.insight_store import InsightStore
from journal_insights.services.interventions import (
    RecommendationContext,
    generate_recommendations,
    recent_mood_points,
    recommendation_insight,
    time_of_day,
    track_interventions,
)
from journal_insights.services.meta_patterns import detect_meta_patterns, meta_pattern_insight
from journal_insights.services.pattern_detection import PeriodPatternAnalysis, detect_in_period
from journal_insights.services.sequence_mining import (
    analyze_recovery_patterns,
    format_recovery_as_insight,
    format_sequences_as_insights,
    mine_sequence_patterns,
)
from journal_insights.services.state_detection import StateDetector, detect_current_state
from journal_insights.services.synthesis import (
    SynthesisContext,
    TextSynthesisPort,
    synthesize_with_fallback,
)
from journal_insights.services.thread_manager import EmbeddingPort, ThreadManager

logger = logging.getLogger(__name__)

CALIBRATION_DAYS = 14
MIN_ENTRIES_FOR_SYNTHESIS = 10
MIN_CALIBRATING_ENTRIES_FOR_SYNTHESIS = 20
MIN_ENTRIES_FOR_PATTERN_INSIGHT = 5
MIN_PATTERN_OCCURRENCES = 3
REGENERATION_AGE_HOURS = 24
MAX_RULE_INSIGHTS = 3
DEVIATION_STATUSES = ("significantly_elevated", "significantly_depressed")


def needs_regeneration(cached: Optional[CachedInsights], now: Optional[datetime] = None) -> bool:
    """True when there is no cache, or it is stale, expired, or older than 24h"""
    if cached is None or cached.stale:
        return True
    now = now or utc_now()
    if cached.expires_at and now > cached.expires_at:
        return True
    if cached.generated_at and now - cached.generated_at > timedelta(hours=REGENERATION_AGE_HOURS):
        return True
    return False


@dataclass
class GenerationInputs:
    entries: List[Entry]
    threads: List[Thread]
    baselines: Optional[BaselineDocument]
    biometric_history: Optional[List[BiometricDay]]  # None when no wearable is connected
    biometrics_today: Optional[BiometricDay]
    settings: EngineSettings
    rules: RuleDocument
    insights: Optional[InsightDocument]

    @property
    def connected(self) -> bool:
        return self.biometric_history is not None

    @property
    def biometric_days(self) -> int:
        return len(self.biometric_history or [])


@dataclass
class UserLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    holders: int = 0  # current holder plus waiters


@dataclass
class MiningOutput:
    rules: List[AssociationRule] = field(default_factory=list)
    sequences: List[SequenceCluster] = field(default_factory=list)
    recovery: Optional[RecoverySignature] = None
    interventions: Optional[InterventionDocument] = None


# ================================================================
# Producers
# ================================================================

def calibration_insight(biometric_days: int) -> Insight:
    remaining = max(CALIBRATION_DAYS - biometric_days, 0)
    return Insight(
        id="calibration",
        type="calibration",
        title="Learning Your Baseline",
        summary=f"{remaining} days until full biometric insights",
        body=(
            "Your wearable is teaching me what normal looks like for you. "
            "Keep logging to unlock deeper mind-body insights."
        ),
        priority=PRIORITY_CALIBRATION,
        source="calibration",
    )


def baseline_deviation_insights(
    baselines: Optional[BaselineDocument],
    today: Optional[BiometricDay],
    now: Optional[datetime] = None
) -> List[Insight]:
    """Insights for today's wearable readings more than 2 standard deviations from baseline"""
    if baselines is None or today is None:
        return []

    insights = []
    for metric, field_name in BIOMETRIC_FIELDS.items():
        value = getattr(today, field_name)
        if value is None:
            continue
        comparison = compare_to_baseline(value, baselines.global_metrics, metric)
        if comparison is None or comparison.status not in DEVIATION_STATUSES:
            continue

        direction = "high" if comparison.status == "significantly_elevated" else "low"
        name = METRIC_NAMES.get(metric, metric)
        insights.append(Insight(
            id=stable_insight_id("baseline_deviation", metric, direction),
            type="baseline_deviation",
            title=f"Your {name} is unusually {direction} today",
            summary=comparison.interpretation,
            body=(
                f"Today's {name} is {value:g}, against a personal baseline of "
                f"{comparison.baseline_mean:.1f} ({comparison.percent_difference:+.0f}%)."
            ),
            evidence=[f"z-score {comparison.z_score}"],
            priority=PRIORITY_PATTERN,
            entity=metric,
            last_mentioned=now,
            source="baselines",
        ))
    return insights


def top_pattern_insight(patterns: PeriodPatternAnalysis, entry_count: int) -> Optional[Insight]:
    """The recurring keyword pattern whose mood sits furthest from neutral"""
    if entry_count < MIN_ENTRIES_FOR_PATTERN_INSIGHT:
        return None

    candidates = [
        p for p in patterns.aggregated.values()
        if p.mood_mean is not None and p.occurrences >= MIN_PATTERN_OCCURRENCES
    ]
    if not candidates:
        return None

    top = max(candidates, key=lambda p: abs(p.mood_mean - 0.5))
    return Insight(
        id=f"pattern_{top.pattern_id}",
        type="pattern_alert",
        title=f"{top.category.replace('_', ' ').title()} Pattern",
        summary=f"Detected in {top.occurrences} entries",
        body=(
            f"This pattern appears frequently in your entries with an average mood of "
            f"{round(top.mood_mean * 100)}%."
        ),
        priority=PRIORITY_CORRELATIONAL,
        mood_delta_percent=round((top.mood_mean - 0.5) * 100, 1),
        entry_count=top.occurrences,
        entity=top.pattern_id,
        source="pattern_detection",
    )


def mine_patterns(
    entries: Sequence[Entry],
    previous: RuleDocument,
    settings: EngineSettings,
    biometric_history: Optional[Sequence[BiometricDay]] = None,
    now: Optional[datetime] = None
) -> MiningOutput:
    """CPU-bound mining; runs in a worker thread"""
    output = MiningOutput()
    if settings.recommendations.enabled:
        output.interventions = track_interventions(entries, biometric_history, now)
    if settings.association_rules.enabled:
        output.rules = carry_over_feedback(mine_association_rules(entries), previous.rules)
    if settings.sequence_mining.enabled:
        output.sequences = mine_sequence_patterns(entries)
        output.recovery = analyze_recovery_patterns(entries)
    return output


# ================================================================
# Orchestrator
# ================================================================

class InsightOrchestrator:
    """Coordinates detection, mining, synthesis and persistence per user"""

    def __init__(
        self,
        entry_store: EntryStore,
        documents: DocumentStore,
        rotation: InsightRotation,
        biometrics: Optional[BiometricProvider] = None,
        synthesis: Optional[TextSynthesisPort] = None,
        embeddings: Optional[EmbeddingPort] = None,
        dedup_threshold: float = DEDUP_SIMILARITY_THRESHOLD,
        synthesis_timeout: float = SYNTHESIS_TIMEOUT_SECONDS
    ):
        self.entry_store = entry_store
        self.documents = documents
        self.rotation = rotation
        self.biometrics = biometrics
        self.synthesis = synthesis
        self.dedup_threshold = dedup_threshold
        self.synthesis_timeout = synthesis_timeout

        self.threads = ThreadManager(documents, embeddings)
        self.baselines = BaselineManager(documents)
        self.states = StateDetector(documents)
        self.insights = InsightStore(documents)

        self._locks: Dict[str, UserLock] = {}

    @asynccontextmanager
    async def _user_lock(self, user_id: str) -> AsyncIterator[None]:
        """Serialize passes per user; the entry is dropped once nobody holds or waits on it"""
        entry = self._locks.setdefault(user_id, UserLock())
        entry.holders += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.holders -= 1
            if entry.holders == 0:
                del self._locks[user_id]

    # ------------------------------------------------------------
    # Fetching
    # ------------------------------------------------------------

    async def _safe(self, awaitable: Awaitable[Any], default: Any, label: str) -> Any:
        try:
            return await awaitable
        except Exception as e:
            logger.warning(f"[Orchestrator] {label} unavailable: {type(e).__name__}: {e}")
            return default

    async def _biometric_history(self, user_id: str, days: int) -> Optional[List[BiometricDay]]:
        if self.biometrics is None:
            return None
        return await self.biometrics.get_history(user_id, days)

    async def _biometrics_today(self, user_id: str) -> Optional[BiometricDay]:
        if self.biometrics is None:
            return None
        return await self.biometrics.get_today(user_id)

    async def get_settings(self, user_id: str) -> EngineSettings:
        raw = await self.documents.get(user_id, SETTINGS)
        return EngineSettings.model_validate(raw or {})

    async def get_rule_document(self, user_id: str) -> RuleDocument:
        raw = await self.documents.get(user_id, RULES)
        return RuleDocument.model_validate(raw) if raw else RuleDocument()

    async def _fetch_inputs(self, user_id: str) -> GenerationInputs:
        """Concurrent fetch; only an entry fetch failure propagates"""
        (
            entries,
            threads,
            baselines,
            history,
            today,
            settings,
            rules,
            insights,
        ) = await asyncio.gather(
            self.entry_store.fetch_recent_entries(user_id, ENTRY_WINDOW_LIMIT),
            self._safe(self.threads.get_active_threads(user_id), [], "threads"),
            self._safe(self.baselines.get_baselines(user_id), None, "baselines"),
            self._safe(self._biometric_history(user_id, BIOMETRIC_HISTORY_DAYS), None, "biometric history"),
            self._safe(self._biometrics_today(user_id), None, "today's biometrics"),
            self._safe(self.get_settings(user_id), EngineSettings(), "settings"),
            self._safe(self.get_rule_document(user_id), RuleDocument(), "rules"),
            self._safe(self.insights.get_document(user_id), None, "stored insights"),
        )
        return GenerationInputs(
            entries=entries,
            threads=threads,
            baselines=baselines,
            biometric_history=history,
            biometrics_today=today,
            settings=settings,
            rules=rules,
            insights=insights,
        )

    # ------------------------------------------------------------
    # Generation
    # ------------------------------------------------------------

    async def generate_insights(self, user_id: str, now: Optional[datetime] = None) -> Optional[GenerationResult]:
        """Run the full pipeline; None for a missing user id"""
        if not user_id:
            return None
        async with self._user_lock(user_id):
            return await self._generate(user_id, now or utc_now())

    async def _generate(self, user_id: str, now: datetime) -> GenerationResult:
        start = time.time()
        logger.info(f"[Orchestrator] Starting insight generation for user {user_id}")

        try:
            inputs = await self._fetch_inputs(user_id)
        except Exception as e:
            logger.error(f"[Orchestrator] Failed to fetch entries for user {user_id}: {e}", exc_info=True)
            record_generation_run("failed", time.time() - start)
            return GenerationResult(success=False, generated_at=now, errors=[f"Failed to fetch entries: {e}"])

        entries = inputs.entries
        data_status = DataStatus(
            entries=len(entries),
            threads=len(inputs.threads),
            biometric_days=inputs.biometric_days,
            connected=inputs.connected,
            has_baselines=inputs.baselines is not None,
            is_calibrating=inputs.connected and inputs.biometric_days < CALIBRATION_DAYS,
        )
        logger.info(f"[Orchestrator] Data status: {data_status.model_dump()}")

        errors: List[str] = []
        candidates: List[Insight] = []
        attempted = 0
        failed = 0

        async def produce(
            name: str,
            producer: Callable[[], Awaitable[List[Insight]]],
            applies: bool = True
        ) -> None:
            nonlocal attempted, failed
            if not applies:
                return
            attempted += 1
            try:
                candidates.extend(await producer())
            except Exception as e:
                failed += 1
                errors.append(f"{name}: {e}")
                record_producer_failure(name)
                logger.error(f"[Orchestrator] Producer '{name}' failed: {e}", exc_info=True)

        # Pattern detection
        patterns = detect_in_period(entries, inputs.biometric_history)

        # State detection
        detection = detect_current_state(entries, inputs.biometrics_today, inputs.threads)

        # Baseline freshness
        baselines = await self._safe(
            self.baselines.ensure_fresh(user_id, entries, inputs.biometric_history, inputs.baselines, now),
            None,
            "baseline refresh",
        )
        data_status.has_baselines = baselines is not None

        # Mining, concurrently with state persistence
        state_result, mining = await asyncio.gather(
            self.states.update_current_state(user_id, detection, now),
            asyncio.to_thread(mine_patterns, entries, inputs.rules, inputs.settings, inputs.biometric_history, now),
            return_exceptions=True,
        )
        if isinstance(state_result, Exception):
            logger.warning(f"[Orchestrator] Failed to persist state for user {user_id}: {state_result}")

        mining_error = mining if isinstance(mining, Exception) else None
        if mining_error is None:
            await self._safe(self._save_mining(user_id, mining, now), None, "rule persistence")

        def mined(select: Callable[[MiningOutput], List[Insight]]) -> Callable[[], Awaitable[List[Insight]]]:
            async def producer() -> List[Insight]:
                if mining_error is not None:
                    raise mining_error
                return select(mining)
            return producer

        async def calibration() -> List[Insight]:
            return [calibration_insight(inputs.biometric_days)]

        async def synthesis() -> List[Insight]:
            if not inputs.settings.synthesis.enabled or len(entries) < MIN_ENTRIES_FOR_SYNTHESIS:
                return []
            if data_status.is_calibrating and len(entries) < MIN_CALIBRATING_ENTRIES_FOR_SYNTHESIS:
                return []
            context = SynthesisContext(
                user_id=user_id,
                entries=entries,
                threads=inputs.threads,
                state=detection,
                baselines=baselines,
                biometrics_today=inputs.biometrics_today,
                interventions=None if mining_error else mining.interventions,
            )
            return [await synthesize_with_fallback(self.synthesis, context, self.synthesis_timeout)]

        async def deviations() -> List[Insight]:
            return baseline_deviation_insights(baselines, inputs.biometrics_today, now)

        async def top_pattern() -> List[Insight]:
            insight = top_pattern_insight(patterns, len(entries))
            return [insight] if insight else []

        def recommend(m: MiningOutput) -> List[Insight]:
            latest = max(entries, key=lambda e: e.effective_date, default=None)
            context = RecommendationContext(
                state=detection,
                recovery_today=inputs.biometrics_today.recovery_score if inputs.biometrics_today else None,
                recent_mood=recent_mood_points(entries),
                time_of_day=time_of_day(now.astimezone(latest.local_time.tzinfo) if latest else now),
            )
            insight = recommendation_insight(generate_recommendations(m.interventions, context))
            return [insight] if insight else []

        async def meta() -> List[Insight]:
            if not inputs.settings.meta_patterns.enabled:
                return []
            found = (meta_pattern_insight(d, inputs.threads) for d in detect_meta_patterns(inputs.threads, entries))
            return [i for i in found if i is not None][:1]

        await produce("calibration", calibration, applies=data_status.is_calibrating)
        await produce("synthesis", synthesis)
        await produce("association_rules", mined(lambda m: format_rules_as_insights(m.rules, MAX_RULE_INSIGHTS)))
        await produce("sequences", mined(lambda m: format_sequences_as_insights(m.sequences)))
        await produce("recovery", mined(lambda m: [i for i in [format_recovery_as_insight(m.recovery)] if i]))
        await produce("baseline_deviations", deviations)
        # Keyword-mood patterns stand in for biometric insights until a wearable is connected
        await produce("top_pattern", top_pattern, applies=not data_status.connected)
        await produce("meta_patterns", meta)
        await produce("recommendations", mined(recommend))

        if attempted and failed == attempted:
            logger.error(f"[Orchestrator] Every producer failed for user {user_id}; keeping cached insights")
            record_generation_run("failed", time.time() - start)
            return GenerationResult(success=False, data_status=data_status, generated_at=now, errors=errors)

        existing = (inputs.insights.active + inputs.insights.history) if inputs.insights else []
        deduped = deduplicate_insights(candidates, existing, self.dedup_threshold)
        insights = sorted(deduped.accepted, key=lambda i: i.priority)

        status = "success"
        try:
            document = await self.insights.save_insights(user_id, insights, now)
            insights = document.active
        except InsightEngineError as e:
            errors.append(f"persistence: {e.message}")
            status = "persist_failed"

        duration = time.time() - start
        record_generation_run(status, duration)
        record_insights_produced([i.type for i in insights])
        logger.info(f"[Orchestrator] Generated {len(insights)} insights for user {user_id} in {duration:.2f}s")

        return GenerationResult(
            success=True,
            insights=insights,
            data_status=data_status,
            generated_at=now,
            errors=errors,
        )

    async def _save_mining(self, user_id: str, mining: MiningOutput, now: datetime) -> None:
        document = RuleDocument(
            rules=mining.rules,
            sequences=mining.sequences,
            recovery=mining.recovery,
            mined_at=now,
        )
        await self.documents.merge(user_id, RULES, document.model_dump(mode="json"))
        if mining.interventions is not None:
            await self.documents.merge(user_id, INTERVENTIONS, mining.interventions.model_dump(mode="json"))

    # ------------------------------------------------------------
    # Cache
    # ------------------------------------------------------------

    async def get_cached_insights(self, user_id: str) -> Optional[CachedInsights]:
        if not user_id:
            return None
        try:
            document = await self.insights.get_document(user_id)
        except Exception as e:
            logger.error(f"[Orchestrator] Failed to read cached insights for user {user_id}: {e}")
            return None
        if document is None:
            return None
        return CachedInsights(
            active=[i for i in document.active if not i.dismissed],
            history=document.history,
            stale=document.stale,
            expires_at=document.expires_at,
            generated_at=document.generated_at,
        )

    def needs_regeneration(self, cached: Optional[CachedInsights], now: Optional[datetime] = None) -> bool:
        return needs_regeneration(cached, now)

    async def get_insights(self, user_id: str, now: Optional[datetime] = None) -> Optional[CachedInsights]:
        """Cached insights, regenerating first when they are missing or out of date"""
        cached = await self.get_cached_insights(user_id)
        if not self.needs_regeneration(cached, now):
            return cached
        result = await self.generate_insights(user_id, now)
        if result is None or not result.success:
            return cached
        return await self.get_cached_insights(user_id)

    # ------------------------------------------------------------
    # User actions
    # ------------------------------------------------------------

    async def record_rule_feedback(
        self,
        user_id: str,
        rule_id: str,
        feedback: RuleFeedback,
        now: Optional[datetime] = None
    ) -> Optional[AssociationRule]:
        """Apply confirm/dismiss feedback to a mined rule; None if the rule is unknown"""
        document = await self.get_rule_document(user_id)
        rule = next((r for r in document.rules if r.id == rule_id), None)
        if rule is None:
            return None

        updated = update_rule_with_feedback(rule, feedback, now)
        rules = [updated if r.id == rule_id else r for r in document.rules]
        await self.documents.merge(user_id, RULES, {"rules": [r.model_dump(mode="json") for r in rules]})
        await self.insights.mark_stale(user_id, "rule_feedback", now)
        logger.info(f"[Orchestrator] Rule {rule_id} {feedback} by user {user_id}")
        return updated

    async def dismiss_insight(self, user_id: str, insight_id: str) -> bool:
        return await self.insights.dismiss(user_id, insight_id)

    async def mark_insight_shown(
        self,
        user_id: str,
        insight_id: str,
        category: str = "personal",
        now: Optional[datetime] = None
    ) -> bool:
        found = await self.insights.mark_shown(user_id, insight_id, now)
        if found:
            await self.rotation.record_shown(user_id, insight_id, category, now)
        return found

    async def get_next_insight(
        self,
        user_id: str,
        category: str = "personal",
        now: Optional[datetime] = None
    ) -> Optional[Insight]:
        cached = await self.get_cached_insights(user_id)
        if cached is None:
            return None
        return await self.rotation.select_next(user_id, cached.active, category, now)

    async def update_for_new_entry(
        self,
        user_id: str,
        entry_id: str,
        text: str,
        sentiment: Optional[float] = None,
        proposal: Optional[ThreadProposal] = None,
        now: Optional[datetime] = None
    ) -> ThreadAssociation:
        """Lightweight update after a new entry: thread association, then stale marking"""
        try:
            association = await self.threads.identify_thread_association(
                user_id, entry_id, text, sentiment, proposal, now
            )
        except InsightEngineError as e:
            return ThreadAssociation(success=False, error=e.message)

        if user_id:
            await self.insights.mark_stale(user_id, "new_entry", now)
        return association

    async def update_entry(self, entry: Entry, now: Optional[datetime] = None) -> None:
        """Corrective edit; cached insights are marked stale"""
        await self.entry_store.update_entry(entry)
        if entry.user_id:
            await self.insights.mark_stale(entry.user_id, "entry_edited", now)

    # ------------------------------------------------------------
    # Reassessment
    # ------------------------------------------------------------

    async def reassess(
        self,
        user_id: str,
        cancel_event: Optional[asyncio.Event] = None,
        now: Optional[datetime] = None
    ) -> ReassessmentResult:
        """
        Recompute everything after a data backfill.

        Stages: baselines, patterns, rules, insights. The cancel event is
        checked between stages; completed stages stay persisted.
        """
        now = now or utc_now()
        result = ReassessmentResult(started_at=now)

        def cancelled() -> bool:
            if cancel_event is not None and cancel_event.is_set():
                result.cancelled = True
                logger.info(f"[Reassessment] Cancelled for user {user_id} after {result.completed_steps}")
                return True
            return False

        entries = await self.entry_store.fetch_recent_entries(user_id, ENTRY_WINDOW_LIMIT)
        history = await self._safe(
            self._biometric_history(user_id, BIOMETRIC_HISTORY_DAYS), None, "biometric history"
        )
        logger.info(f"[Reassessment] Loaded {len(entries)} entries for user {user_id}")
        if cancelled():
            return result

        if len(entries) >= MIN_ENTRIES_FOR_BASELINES:
            result.baselines_recalculated = (
                await self.baselines.calculate_and_save(user_id, entries, history, now)
            ) is not None
        result.completed_steps.append("baselines")
        if cancelled():
            return result

        patterns = detect_in_period(entries, history)
        result.patterns_detected = patterns.total_patterns_detected
        result.completed_steps.append("patterns")
        if cancelled():
            return result

        settings, previous = await asyncio.gather(self.get_settings(user_id), self.get_rule_document(user_id))
        mining = await asyncio.to_thread(mine_patterns, entries, previous, settings, history, now)
        await self._save_mining(user_id, mining, now)
        result.rules_mined = len(mining.rules)
        result.completed_steps.append("rules")
        if cancelled():
            return result

        result.generation = await self.generate_insights(user_id, now)
        result.completed_steps.append("insights")
        result.completed_at = utc_now()
        logger.info(f"[Reassessment] Complete for user {user_id}: {result.completed_steps}")
        return result
