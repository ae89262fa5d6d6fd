"""
Pattern Detection Service

Matches journal entries against fixed pattern catalogs:

1. Narrative keyword patterns (trigger phrases in the entry text)
2. Health/environment threshold patterns (numeric predicates on snapshots)
3. Combined health + environment conditions

Catalogs are plain data. A single scorer, score_pattern(), understands every
pattern kind, so catalogs can be extended and tested on their own.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Callable, Dict, List, Literal, Mapping, Optional, Sequence, Tuple, Union

from journal_insights.exceptions import ComputationError
from journal_insights.models.entry import BiometricDay, Entry
from journal_insights.services.statistical_analysis import mean, presence_correlation

logger = logging.getLogger(__name__)

KEYWORD_BASE_CONFIDENCE = 0.5
KEYWORD_STEP = 0.15
KEYWORD_MAX_CONFIDENCE = 0.95
THRESHOLD_CONFIDENCE = 0.9
COMBINED_CONFIDENCE = 0.95

Readings = Mapping[str, Any]
Predicate = Callable[[Readings], bool]


# ================================================================
# Pattern records
# ================================================================

@dataclass(frozen=True)
class KeywordPattern:
    """Narrative pattern triggered by phrases in the entry text"""
    id: str
    category: str
    triggers: Tuple[str, ...]
    signature: Dict[str, str] = field(default_factory=dict)
    kind: Literal["keyword"] = "keyword"


@dataclass(frozen=True)
class ThresholdPattern:
    """Pattern triggered by a numeric predicate over one snapshot"""
    id: str
    category: str
    description: str
    requires: Tuple[str, ...]
    predicate: Predicate
    kind: Literal["threshold"] = "threshold"


@dataclass(frozen=True)
class CombinedPattern:
    """Health and environment predicates that must both hold"""
    id: str
    category: str
    description: str
    requires: Tuple[str, ...]
    health_predicate: Predicate
    environment_predicate: Predicate
    kind: Literal["combined"] = "combined"


PatternDefinition = Union[KeywordPattern, ThresholdPattern, CombinedPattern]


@dataclass
class PatternOccurrence:
    """One pattern matched in one entry"""
    pattern_id: str
    category: str
    triggers: List[str]
    confidence: float
    entry_id: str
    date: datetime
    mood: Optional[float]
    biometrics: Optional[Dict[str, Optional[float]]] = None


@dataclass
class PatternAggregate:
    """All occurrences of one pattern over a period"""
    pattern_id: str
    category: str
    occurrences: int
    mood_mean: Optional[float]
    mood_min: Optional[float]
    mood_max: Optional[float]
    biometrics: Optional[Dict[str, Optional[float]]] = None
    biometric_deltas: Optional[Dict[str, Optional[float]]] = None


@dataclass
class PeriodPatternAnalysis:
    raw_patterns: List[PatternOccurrence]
    aggregated: Dict[str, PatternAggregate]
    total_entries: int
    total_patterns_detected: int
    category_counts: Dict[str, int]

    def top_patterns(self, limit: int = 3) -> List[PatternAggregate]:
        """Most frequent patterns first"""
        ranked = sorted(self.aggregated.values(), key=lambda p: p.occurrences, reverse=True)
        return ranked[:limit]


# ================================================================
# Catalogs
# ================================================================

NARRATIVE_PATTERNS: Tuple[KeywordPattern, ...] = (
    # Career & work
    KeywordPattern("career_anticipation", "career",
                   ("interview", "offer", "application", "recruiter", "hiring"),
                   {"rhr": "elevated", "hrv": "depressed"}),
    KeywordPattern("career_waiting", "career",
                   ("waiting", "haven't heard", "no response", "following up"),
                   {"rhr": "elevated", "hrv": "depressed", "strain": "normal"}),
    KeywordPattern("career_outcome_positive", "career",
                   ("got the job", "offer accepted", "moving forward", "next round"),
                   {"mood": "elevated", "hrv": "improved"}),
    KeywordPattern("career_outcome_negative", "career",
                   ("rejected", "didn't get", "passed on", "not moving forward"),
                   {"mood": "depressed", "rhr": "elevated", "sleep": "disrupted"}),
    # Relationships
    KeywordPattern("relationship_connection", "relationship",
                   ("partner", "together", "cuddled", "talked", "connected"),
                   {"hrv": "improved", "mood": "stabilized"}),
    KeywordPattern("relationship_strain", "relationship",
                   ("argued", "frustrated with", "annoyed", "tension between"),
                   {"rhr": "elevated", "hrv": "depressed", "mood": "volatile"}),
    KeywordPattern("caregiving_stress", "relationship",
                   ("caregiving", "hospital", "worried about", "checking on"),
                   {"rhr": "elevated", "mood": "anxious"}),
    # Physical activity
    KeywordPattern("exercise_completion", "health",
                   ("workout", "yoga", "pilates", "gym", "lifted", "ran"),
                   {"strain": "elevated", "next_day_recovery": "variable"}),
    KeywordPattern("exercise_avoidance", "health",
                   ("skipped", "didn't go", "too tired", "took a rest"),
                   {"strain": "low", "mood": "variable"}),
    # Somatic
    KeywordPattern("physical_discomfort", "somatic",
                   ("pain", "sore", "hurt", "ache", "tight", "injury"),
                   {"strain": "elevated", "sleep": "disrupted"}),
    KeywordPattern("fatigue", "somatic",
                   ("tired", "exhausted", "drained", "no energy", "groggy"),
                   {"recovery": "low", "hrv": "depressed"}),
    # Emotional states
    KeywordPattern("anxiety_signal", "emotional",
                   ("anxious", "worried", "nervous", "stressed", "overwhelmed"),
                   {"rhr": "elevated", "hrv": "depressed", "sleep": "disrupted"}),
    KeywordPattern("positive_momentum", "emotional",
                   ("happy", "excited", "great", "amazing", "fantastic", "proud"),
                   {"hrv": "improved", "recovery": "elevated"}),
    # Stabilizers
    KeywordPattern("pet_interaction", "stabilizer",
                   ("dog", "cat", "walked", "pet", "grooming"),
                   {"hrv": "recovery", "mood": "stabilized"}),
    KeywordPattern("creative_activity", "stabilizer",
                   ("painting", "built", "created", "working on", "side project"),
                   {"mood": "improved", "hrv": "stable"}),
    KeywordPattern("social_connection", "stabilizer",
                   ("dinner with", "hung out", "met up", "friends", "called"),
                   {"mood": "improved", "hrv": "improved"}),
)

_GLOOMY_WEATHER = {"rain", "rainy", "cloudy", "overcast", "snow", "storm", "drizzle", "fog"}
_BRIGHT_WEATHER = {"sunny", "clear"}

HEALTH_PATTERNS: Tuple[ThresholdPattern, ...] = (
    ThresholdPattern("short_sleep", "sleep", "Slept under 6 hours",
                     ("sleep_hours",), lambda r: r["sleep_hours"] < 6),
    ThresholdPattern("well_rested", "sleep", "Slept 7.5 hours or more",
                     ("sleep_hours",), lambda r: r["sleep_hours"] >= 7.5),
    ThresholdPattern("low_recovery", "recovery", "Recovery score in the red zone",
                     ("recovery_score",), lambda r: r["recovery_score"] < 34),
    ThresholdPattern("high_recovery", "recovery", "Recovery score in the green zone",
                     ("recovery_score",), lambda r: r["recovery_score"] >= 67),
    ThresholdPattern("high_strain", "activity", "Day strain of 15 or more",
                     ("strain",), lambda r: r["strain"] >= 15),
    ThresholdPattern("sedentary_day", "activity", "Fewer than 3,000 steps",
                     ("steps",), lambda r: r["steps"] < 3000),
    ThresholdPattern("active_day", "activity", "10,000 steps or more",
                     ("steps",), lambda r: r["steps"] >= 10000),
)

ENVIRONMENT_PATTERNS: Tuple[ThresholdPattern, ...] = (
    ThresholdPattern("low_sunshine", "environment", "Little sunshine today",
                     ("is_low_sunshine",), lambda r: bool(r["is_low_sunshine"])),
    ThresholdPattern("short_daylight", "environment", "Under 10 hours of daylight",
                     ("daylight_hours",), lambda r: r["daylight_hours"] < 10),
    ThresholdPattern("gloomy_weather", "environment", "Grey or wet weather",
                     ("weather",), lambda r: r["weather"].lower() in _GLOOMY_WEATHER),
    ThresholdPattern("heat_stress", "environment", "Temperature of 32C or more",
                     ("temperature",), lambda r: r["temperature"] >= 32),
)

COMBINED_PATTERNS: Tuple[CombinedPattern, ...] = (
    CombinedPattern("sleep_deprived_low_light", "combined",
                    "Short sleep on a low-sunshine day",
                    ("sleep_hours", "is_low_sunshine"),
                    lambda r: r["sleep_hours"] < 6,
                    lambda r: bool(r["is_low_sunshine"])),
    CombinedPattern("low_recovery_short_daylight", "combined",
                    "Low recovery on a short-daylight day",
                    ("recovery_score", "daylight_hours"),
                    lambda r: r["recovery_score"] < 34,
                    lambda r: r["daylight_hours"] < 10),
    CombinedPattern("active_bright_day", "combined",
                    "Worked out on a bright day",
                    ("has_workout", "weather"),
                    lambda r: bool(r["has_workout"]),
                    lambda r: r["weather"].lower() in _BRIGHT_WEATHER),
)

ALL_PATTERNS: Tuple[PatternDefinition, ...] = (
    NARRATIVE_PATTERNS + HEALTH_PATTERNS + ENVIRONMENT_PATTERNS + COMBINED_PATTERNS
)

_CATEGORY_BY_ID = {p.id: p.category for p in ALL_PATTERNS}


# ================================================================
# Scoring
# ================================================================

def build_readings(entry: Entry, biometrics: Optional[BiometricDay] = None) -> Dict[str, Any]:
    """
    Flatten an entry's health/environment snapshots into one readings map.

    Entry snapshot values win; the biometric day fills the gaps.
    """
    readings: Dict[str, Any] = {}

    if biometrics is not None:
        for key in ("resting_heart_rate", "hrv", "strain", "recovery_score", "sleep_hours"):
            value = getattr(biometrics, key)
            if value is not None:
                readings[key] = value

    if entry.health is not None:
        readings.update(entry.health.model_dump(exclude_none=True))
    if entry.environment is not None:
        readings.update(entry.environment.model_dump(exclude_none=True))

    return readings


def score_pattern(
    pattern: PatternDefinition,
    text: str,
    readings: Readings
) -> Optional[Tuple[List[str], float]]:
    """
    Score one pattern against lower-cased text and a readings map.

    Returns:
        (matched triggers, confidence), or None if the pattern does not match

    Raises:
        ComputationError: a reading has the wrong type for the predicate;
            callers skip that pattern
    """
    if pattern.kind == "keyword":
        matches = [t for t in pattern.triggers if t in text]
        if not matches:
            return None
        confidence = min(KEYWORD_BASE_CONFIDENCE + KEYWORD_STEP * len(matches), KEYWORD_MAX_CONFIDENCE)
        return matches, confidence

    if any(readings.get(key) is None for key in pattern.requires):
        return None

    try:
        if pattern.kind == "threshold":
            matched = pattern.predicate(readings)
            confidence = THRESHOLD_CONFIDENCE
        else:
            matched = pattern.health_predicate(readings) and pattern.environment_predicate(readings)
            confidence = COMBINED_CONFIDENCE
    except (TypeError, ValueError, KeyError, AttributeError) as e:
        raise ComputationError(
            message=f"Pattern {pattern.id} could not be evaluated: {type(e).__name__}: {e}",
            item=pattern.id,
            operation="score_pattern",
            cause=e
        )

    return (list(pattern.requires), confidence) if matched else None


def _biometric_snapshot(biometrics: Optional[BiometricDay]) -> Optional[Dict[str, Optional[float]]]:
    if biometrics is None:
        return None
    return {
        "rhr": biometrics.resting_heart_rate,
        "hrv": biometrics.hrv,
        "strain": biometrics.strain,
        "recovery": biometrics.recovery_score,
        "sleep": biometrics.sleep_hours,
    }


def detect_in_entry(
    entry: Entry,
    biometrics: Optional[BiometricDay] = None,
    catalog: Sequence[PatternDefinition] = ALL_PATTERNS
) -> List[PatternOccurrence]:
    """
    Detect every catalog pattern present in one entry.

    Args:
        entry: Journal entry
        biometrics: Same-day wearable data, if any
        catalog: Patterns to evaluate

    Returns:
        List of PatternOccurrence (empty if nothing matched)

    Example:
        >>> occurrences = detect_in_entry(entry)
        >>> [o.pattern_id for o in occurrences]
        ['career_anticipation', 'anxiety_signal']
    """
    text = (entry.text or "").lower()
    readings = build_readings(entry, biometrics)
    snapshot = _biometric_snapshot(biometrics)
    detected: List[PatternOccurrence] = []

    for pattern in catalog:
        try:
            result = score_pattern(pattern, text, readings)
        except ComputationError:
            logger.warning(f"[PatternDetector] Skipping pattern {pattern.id} for entry {entry.id}")
            continue

        if result is None:
            continue

        triggers, confidence = result
        detected.append(PatternOccurrence(
            pattern_id=pattern.id,
            category=pattern.category,
            triggers=triggers,
            confidence=confidence,
            entry_id=entry.id,
            date=entry.effective_date,
            mood=entry.mood_score,
            biometrics=snapshot,
        ))

    return detected


def index_biometrics(history: Optional[Sequence[BiometricDay]]) -> Dict[date, BiometricDay]:
    """Key biometric days by calendar date"""
    return {day.date: day for day in (history or [])}


def _average_field(snapshots: List[Dict[str, Optional[float]]], key: str) -> Optional[float]:
    return mean([s[key] for s in snapshots if s.get(key)])


def detect_in_period(
    entries: Sequence[Entry],
    biometric_history: Optional[Sequence[BiometricDay]] = None
) -> PeriodPatternAnalysis:
    """
    Detect and aggregate patterns across a set of entries.

    Each pattern gets an occurrence count, mood mean/min/max and, where
    wearable data exists, average biometrics plus their difference from the
    period-wide averages.
    """
    by_date = index_biometrics(biometric_history)
    occurrences: List[PatternOccurrence] = []

    for entry in entries:
        occurrences.extend(detect_in_entry(entry, by_date.get(entry.local_time.date())))

    moods: Dict[str, List[float]] = defaultdict(list)
    snapshots: Dict[str, List[Dict[str, Optional[float]]]] = defaultdict(list)
    counts: Dict[str, int] = defaultdict(int)
    category_counts: Dict[str, int] = defaultdict(int)

    for occ in occurrences:
        counts[occ.pattern_id] += 1
        category_counts[occ.category] += 1
        if occ.mood is not None:
            moods[occ.pattern_id].append(occ.mood)
        if occ.biometrics:
            snapshots[occ.pattern_id].append(occ.biometrics)

    overall = [_biometric_snapshot(day) for day in by_date.values()]
    overall_avg = {k: _average_field(overall, k) for k in ("rhr", "hrv", "strain", "recovery")}

    aggregated: Dict[str, PatternAggregate] = {}
    for pattern_id, count in counts.items():
        pattern_moods = moods[pattern_id]
        biometrics = None
        deltas = None
        if snapshots[pattern_id]:
            biometrics = {k: _average_field(snapshots[pattern_id], k) for k in ("rhr", "hrv", "strain", "recovery")}
            deltas = {
                k: (biometrics[k] - overall_avg[k]) if biometrics[k] is not None and overall_avg[k] is not None else None
                for k in biometrics
            }

        aggregated[pattern_id] = PatternAggregate(
            pattern_id=pattern_id,
            category=_CATEGORY_BY_ID.get(pattern_id, "unknown"),
            occurrences=count,
            mood_mean=mean(pattern_moods),
            mood_min=min(pattern_moods) if pattern_moods else None,
            mood_max=max(pattern_moods) if pattern_moods else None,
            biometrics=biometrics,
            biometric_deltas=deltas,
        )

    return PeriodPatternAnalysis(
        raw_patterns=occurrences,
        aggregated=aggregated,
        total_entries=len(entries),
        total_patterns_detected=len(occurrences),
        category_counts=dict(category_counts),
    )


def correlate_pattern_with_metric(
    analysis: PeriodPatternAnalysis,
    entries: Sequence[Entry],
    biometric_history: Optional[Sequence[BiometricDay]],
    pattern_id: str,
    metric: str
) -> Optional[float]:
    """
    Pearson correlation between a pattern's daily presence and a biometric.

    Args:
        metric: BiometricDay field name (e.g. "hrv", "resting_heart_rate")

    Returns:
        r, or None with fewer than 5 days that have the metric
    """
    by_date = index_biometrics(biometric_history)
    entry_dates = {e.id: e.effective_date.date() for e in entries}
    present_dates = {
        entry_dates[o.entry_id] for o in analysis.raw_patterns
        if o.pattern_id == pattern_id and o.entry_id in entry_dates
    }

    points = []
    for day in sorted(set(entry_dates.values())):
        biometric = by_date.get(day)
        value = getattr(biometric, metric, None) if biometric else None
        if value is not None:
            points.append((day in present_dates, value))

    return presence_correlation(points)
