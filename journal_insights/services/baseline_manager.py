"""
Baseline Manager

Personal baselines for every metric the engine tracks, plus context-sliced
baselines (by life state, entity, activity and day of week) and a z-score
comparison of a current value against them.

Baselines are recomputed at most once per staleness window and only when
enough entries exist. A missing or stale baseline is "unknown", never zero.
"""

import logging
import re
from collections import defaultdict
from datetime import date, datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional, Sequence, Set

from journal_insights.config import BASELINE_STALE_HOURS, MIN_ENTRIES_FOR_BASELINES
from journal_insights.db.document_store import BASELINES, DocumentStore
from journal_insights.models.baseline import (
    BaselineComparison,
    BaselineDocument,
    ContextBaseline,
    MetricStats,
)
from journal_insights.models.entry import BiometricDay, Entry
from journal_insights.services.statistical_analysis import calculate_stats, correlation_or_none

logger = logging.getLogger(__name__)

DEFAULT_WINDOW_DAYS = 30
MIN_STATE_DAYS = 7
MIN_ENTITY_DAYS = 3
MIN_ACTIVITY_DAYS = 3
MIN_WEEKDAY_SAMPLES = 2
MIN_ALIGNED_DAYS = 7

METRIC_NAMES = {
    "rhr": "resting heart rate",
    "hrv": "heart rate variability",
    "strain": "strain",
    "recovery": "recovery score",
    "sleep": "sleep",
    "mood": "mood",
}

# BiometricDay field for each wearable metric
BIOMETRIC_FIELDS = {
    "rhr": "resting_heart_rate",
    "hrv": "hrv",
    "strain": "strain",
    "recovery": "recovery_score",
    "sleep": "sleep_hours",
}

STATE_PATTERNS = {
    "career_waiting": re.compile(r"waiting|haven't heard|following up|pending", re.IGNORECASE),
}

ENTITY_PATTERNS = {
    "partner": re.compile(r"\b(?:partner|spouse|husband|wife|girlfriend|boyfriend)\b", re.IGNORECASE),
    "family": re.compile(r"\b(?:family|mom|dad|parents?|siblings?|brother|sister)\b", re.IGNORECASE),
    "friends": re.compile(r"\b(?:friends?|buddy|buddies)\b", re.IGNORECASE),
    "pet": re.compile(r"\b(?:dog|cat|puppy|pets?)\b|walked the dog", re.IGNORECASE),
    "coworkers": re.compile(r"\b(?:coworkers?|colleagues?|manager|team)\b", re.IGNORECASE),
}

ACTIVITY_PATTERNS = {
    "yoga": re.compile(r"yoga|vinyasa|flow class", re.IGNORECASE),
    "gym": re.compile(r"\bgym\b|\blift(?:ed|ing)?\b|workout", re.IGNORECASE),
    "running": re.compile(r"\b(?:ran|run|running|jog|jogging)\b", re.IGNORECASE),
    "walking": re.compile(r"\bwalk(?:ed|ing)?\b|\bhik(?:e|ing)\b", re.IGNORECASE),
    "meditation": re.compile(r"meditat|mindful", re.IGNORECASE),
}

DAY_NAMES = ["sunday", "monday", "tuesday", "wednesday", "thursday", "friday", "saturday"]


def _chronological(entries: Iterable[Entry]) -> List[Entry]:
    return sorted(entries, key=lambda e: e.effective_date)


def _entry_day(entry: Entry) -> date:
    return entry.local_time.date()


def _mood_values(entries: Iterable[Entry]) -> List[float]:
    # Mood is stored on a 0-100 scale to sit alongside the wearable metrics
    return [e.mood_score * 100 for e in entries if e.has_mood]


# ================================================================
# Global baselines
# ================================================================

def calculate_global_baselines(
    biometrics: Sequence[BiometricDay],
    entries: Sequence[Entry]
) -> Dict[str, Optional[MetricStats]]:
    """
    Baselines for resting heart rate, HRV, strain, recovery, sleep and mood.

    Falsy wearable readings (0 / None) are treated as missing.
    """
    days = sorted(biometrics, key=lambda d: d.date)
    baselines: Dict[str, Optional[MetricStats]] = {}

    for metric, field_name in BIOMETRIC_FIELDS.items():
        baselines[metric] = calculate_stats([getattr(d, field_name) for d in days if getattr(d, field_name)])

    baselines["mood"] = calculate_stats(_mood_values(_chronological(entries)))
    return baselines


# ================================================================
# Contextual baselines
# ================================================================

def _metrics_for_days(
    by_date: Dict[date, BiometricDay],
    entries: Sequence[Entry],
    days: Set[date]
) -> Dict[str, List[float]]:
    metrics: Dict[str, List[float]] = defaultdict(list)

    for day in sorted(days):
        biometric = by_date.get(day)
        if biometric:
            for metric, field_name in BIOMETRIC_FIELDS.items():
                value = getattr(biometric, field_name)
                if value:
                    metrics[metric].append(value)

        metrics["mood"].extend(_mood_values(e for e in entries if _entry_day(e) == day))

    return metrics


def _matching_days(entries: Sequence[Entry], pattern: re.Pattern) -> Set[date]:
    return {_entry_day(e) for e in entries if pattern.search(e.text or "")}


def calculate_contextual_baselines(
    biometrics: Sequence[BiometricDay],
    entries: Sequence[Entry]
) -> Dict[str, ContextBaseline]:
    """
    Context-sliced baselines.

    Scopes:
    - state:X     days whose entries match a life-state keyword set (>= 7 days)
    - entity:X    days mentioning a person/pet group (>= 3 days)
    - activity:X  days mentioning an activity (>= 3 days), with same-day
                  mood/strain and next-day recovery/HRV to capture lagged effects
    - day:X       day-of-week slices (>= 2 mood samples)
    """
    entries = _chronological(entries)
    by_date = {d.date: d for d in biometrics}
    contextual: Dict[str, ContextBaseline] = {}

    for state, pattern in STATE_PATTERNS.items():
        days = _matching_days(entries, pattern)
        if len(days) >= MIN_STATE_DAYS:
            metrics = _metrics_for_days(by_date, entries, days)
            contextual[f"state:{state}"] = ContextBaseline(
                scope=f"state:{state}",
                sample_days=len(days),
                metrics={m: calculate_stats(metrics[m]) for m in ("rhr", "hrv", "mood", "strain")},
            )

    for entity, pattern in ENTITY_PATTERNS.items():
        days = _matching_days(entries, pattern)
        if len(days) >= MIN_ENTITY_DAYS:
            metrics = _metrics_for_days(by_date, entries, days)
            contextual[f"entity:{entity}"] = ContextBaseline(
                scope=f"entity:{entity}",
                sample_days=len(days),
                metrics={m: calculate_stats(metrics[m]) for m in ("mood", "hrv", "rhr")},
            )

    for activity, pattern in ACTIVITY_PATTERNS.items():
        days = _matching_days(entries, pattern)
        if len(days) >= MIN_ACTIVITY_DAYS:
            same_day = _metrics_for_days(by_date, entries, days)
            next_day = _metrics_for_days(by_date, entries, {d + timedelta(days=1) for d in days})
            contextual[f"activity:{activity}"] = ContextBaseline(
                scope=f"activity:{activity}",
                sample_days=len(days),
                metrics={m: calculate_stats(same_day[m]) for m in ("mood", "strain")},
                next_day_metrics={m: calculate_stats(next_day[m]) for m in ("recovery", "hrv")},
            )

    weekday_values: Dict[int, Dict[str, List[float]]] = defaultdict(lambda: defaultdict(list))
    for entry in entries:
        day = _entry_day(entry)
        dow = (day.weekday() + 1) % 7
        if entry.has_mood:
            weekday_values[dow]["mood"].append(entry.mood_score * 100)
        biometric = by_date.get(day)
        if biometric:
            for metric in ("strain", "recovery"):
                value = getattr(biometric, BIOMETRIC_FIELDS[metric])
                if value:
                    weekday_values[dow][metric].append(value)

    for dow, values in weekday_values.items():
        if len(values["mood"]) >= MIN_WEEKDAY_SAMPLES:
            scope = f"day:{DAY_NAMES[dow]}"
            contextual[scope] = ContextBaseline(
                scope=scope,
                sample_days=len(values["mood"]),
                metrics={m: calculate_stats(values[m]) for m in ("mood", "strain", "recovery")},
            )

    return contextual


def calculate_metric_correlations(
    biometrics: Sequence[BiometricDay],
    entries: Sequence[Entry]
) -> Dict[str, float]:
    """Pairwise Pearson r between mood and wearable metrics on days with both"""
    by_date = {d.date: d for d in biometrics}
    aligned: List[Dict[str, Optional[float]]] = []

    for entry in _chronological(entries):
        biometric = by_date.get(_entry_day(entry))
        if biometric is None or not entry.has_mood:
            continue
        row = {"mood": entry.mood_score * 100}
        for metric, field_name in BIOMETRIC_FIELDS.items():
            row[metric] = getattr(biometric, field_name)
        aligned.append(row)

    if len(aligned) < MIN_ALIGNED_DAYS:
        return {}

    names = ["mood", "rhr", "hrv", "strain", "recovery", "sleep"]
    correlations: Dict[str, float] = {}
    for i, first in enumerate(names):
        for second in names[i + 1:]:
            pairs = [(r[first], r[second]) for r in aligned if r[first] is not None and r[second] is not None]
            if len(pairs) < MIN_ALIGNED_DAYS:
                continue
            r = correlation_or_none([p[0] for p in pairs], [p[1] for p in pairs])
            if r is not None:
                correlations[f"{first}_{second}"] = round(r, 2)

    return correlations


# ================================================================
# Comparison
# ================================================================

def _interpretation(metric: str, delta: float, z_score: float) -> str:
    direction = "higher" if delta > 0 else "lower"
    if abs(z_score) > 2:
        magnitude = "significantly"
    elif abs(z_score) > 1:
        magnitude = "noticeably"
    else:
        magnitude = "slightly"
    return f"Your {METRIC_NAMES.get(metric, metric)} is {magnitude} {direction} than your baseline"


def compare_to_baseline(
    current: float,
    baseline: Optional[Dict[str, Optional[MetricStats]]],
    metric: str
) -> Optional[BaselineComparison]:
    """
    Compare a current value to a personal baseline.

    z = (current - mean) / max(std_dev, mean * 0.1); |z| > 2 is significant,
    |z| > 1 is elevated/depressed.

    Args:
        current: Today's value (mood on the 0-100 scale)
        baseline: Metric -> stats map (global or one contextual slice)
        metric: Metric key (rhr, hrv, strain, recovery, sleep, mood)

    Returns:
        BaselineComparison, or None if the metric has no baseline

    Example:
        >>> result = compare_to_baseline(68, doc.global_metrics, "rhr")
        >>> result.interpretation
        'Your resting heart rate is noticeably higher than your baseline'
    """
    stats = (baseline or {}).get(metric)
    if stats is None:
        return None

    delta = current - stats.mean
    spread = max(stats.std_dev, stats.mean * 0.1)
    z_score = delta / spread if spread > 0 else 0.0

    if z_score > 2:
        status = "significantly_elevated"
    elif z_score > 1:
        status = "elevated"
    elif z_score < -2:
        status = "significantly_depressed"
    elif z_score < -1:
        status = "depressed"
    else:
        status = "normal"

    return BaselineComparison(
        metric=metric,
        current=current,
        baseline_mean=stats.mean,
        z_score=round(z_score, 2),
        status=status,
        percent_difference=round(delta / stats.mean * 100) if stats.mean else 0.0,
        interpretation=_interpretation(metric, delta, z_score),
    )


# ================================================================
# Persistence
# ================================================================

def calculate_baselines(
    entries: Sequence[Entry],
    biometrics: Optional[Sequence[BiometricDay]] = None,
    now: Optional[datetime] = None
) -> BaselineDocument:
    biometrics = list(biometrics or [])
    return BaselineDocument(
        calculated_at=now or datetime.now(timezone.utc),
        data_window_days=DEFAULT_WINDOW_DAYS,
        entry_count=len(entries),
        biometric_days=len(biometrics),
        global_metrics=calculate_global_baselines(biometrics, entries),
        contextual=calculate_contextual_baselines(biometrics, entries),
        correlations=calculate_metric_correlations(biometrics, entries),
    )


def is_stale(
    document: Optional[BaselineDocument],
    now: Optional[datetime] = None,
    stale_hours: int = BASELINE_STALE_HOURS
) -> bool:
    if document is None:
        return True
    now = now or datetime.now(timezone.utc)
    return now - document.calculated_at > timedelta(hours=stale_hours)


class BaselineManager:
    """Loads, refreshes and persists a user's baseline document"""

    def __init__(
        self,
        store: DocumentStore,
        min_entries: int = MIN_ENTRIES_FOR_BASELINES,
        stale_hours: int = BASELINE_STALE_HOURS
    ):
        self.store = store
        self.min_entries = min_entries
        self.stale_hours = stale_hours

    async def get_baselines(self, user_id: str) -> Optional[BaselineDocument]:
        if not user_id:
            return None
        raw = await self.store.get(user_id, BASELINES)
        if not raw:
            return None
        return BaselineDocument.model_validate(raw)

    async def calculate_and_save(
        self,
        user_id: str,
        entries: Sequence[Entry],
        biometrics: Optional[Sequence[BiometricDay]] = None,
        now: Optional[datetime] = None
    ) -> Optional[BaselineDocument]:
        """Recompute baselines; returns None below the minimum sample size"""
        if len(entries) < self.min_entries:
            logger.info(
                f"[BaselineManager] Not enough entries for baselines "
                f"(have {len(entries)}, need {self.min_entries})"
            )
            return None

        document = calculate_baselines(entries, biometrics, now)
        await self.store.merge(user_id, BASELINES, document.model_dump(mode="json"))
        logger.info(
            f"[BaselineManager] Saved baselines for user {user_id}: "
            f"{len(document.contextual)} contextual slices"
        )
        return document

    async def ensure_fresh(
        self,
        user_id: str,
        entries: Sequence[Entry],
        biometrics: Optional[Sequence[BiometricDay]] = None,
        current: Optional[BaselineDocument] = None,
        now: Optional[datetime] = None
    ) -> Optional[BaselineDocument]:
        """
        Return usable baselines, recomputing when missing or stale.

        When recomputation is not possible (too few entries) a stale
        document is discarded rather than returned.
        """
        now = now or datetime.now(timezone.utc)
        if current is None:
            current = await self.get_baselines(user_id)

        if not is_stale(current, now, self.stale_hours):
            return current

        refreshed = await self.calculate_and_save(user_id, entries, biometrics, now)
        if refreshed is None and current is not None:
            logger.info(f"[BaselineManager] Baselines for user {user_id} are stale and cannot be refreshed")
        return refreshed
