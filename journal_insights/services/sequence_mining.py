"""
Sequence & Recovery Mining

Uses mood events (local highs and lows) as window boundaries instead of
fixed time windows:
- decline sequences: the entries between a high and the next low,
  clustered by shared topics
- recovery signature: what shows up in entries while mood climbs back
  out of a low period
"""

import hashlib
import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from journal_insights.models.entry import Entry
from journal_insights.models.insight import PRIORITY_CORRELATIONAL, PRIORITY_PATTERN, Insight
from journal_insights.models.patterns import (
    MoodEvent,
    RecoveryEpisode,
    RecoveryFactor,
    RecoverySignature,
    SequenceCluster,
    SequenceExample,
)
from journal_insights.services.feature_extraction import (
    ACTIVITY_PREFIX,
    PERSON_PREFIX,
    TOPIC_PREFIX,
    extract_entities_by_type,
)

logger = logging.getLogger(__name__)

EVENT_WINDOW = 3
EVENT_MARGIN = 0.15
MIN_ENTRIES_FOR_EVENTS = 5
MIN_ENTRIES_FOR_SEQUENCES = 10
MIN_SEQUENCE_LENGTH = 2
MIN_CLUSTER_SIZE = 2
CONFIRMED_CLUSTER_SIZE = 3
CLUSTER_OVERLAP = 0.5

LOW_MOOD_THRESHOLD = 0.35
RECOVERED_MOOD = 0.6
RECOVERY_WINDOW_DAYS = 14
MIN_LOW_PERIOD_ENTRIES = 2
HELPFUL_IMPROVEMENT = 0.1
CONFIRMED_RECOVERIES = 3

COPING_PATTERNS: Dict[str, re.Pattern] = {
    "walking": re.compile(r"\b(?:went for a walk|took a walk|walking)\b", re.IGNORECASE),
    "exercise": re.compile(r"\b(?:exercise|workout|gym|ran|running)\b", re.IGNORECASE),
    "meditation": re.compile(r"\b(?:meditat|mindful)\w*", re.IGNORECASE),
    "journaling": re.compile(r"\b(?:journal|write|writing|wrote)\b", re.IGNORECASE),
    "social_support": re.compile(r"\b(?:talk(?:ed|ing)? to|called|messaged|texted)\b", re.IGNORECASE),
    "breathing": re.compile(r"\b(?:breathe|breathing|deep breath)\b", re.IGNORECASE),
    "rest": re.compile(r"\b(?:nap|sleep|rest)\b", re.IGNORECASE),
    "self_care": re.compile(r"\b(?:shower|bath)\b", re.IGNORECASE),
    "nourishment": re.compile(r"\b(?:tea|coffee|meal|eat)\b", re.IGNORECASE),
    "audio_comfort": re.compile(r"\b(?:music|listen|podcast|audio)\b", re.IGNORECASE),
    "nature": re.compile(r"\b(?:outside|outdoors|nature|park|garden)\b", re.IGNORECASE),
    "pet_comfort": re.compile(r"\b(?:pet|dog|cat)\b", re.IGNORECASE),
}

FACTOR_PHRASES = {
    "social_support": "connecting with others",
    "exercise": "physical activity",
    "walking": "going for walks",
    "rest": "getting rest",
    "nature": "spending time in nature",
}


def extract_coping_mentions(text: Optional[str]) -> List[str]:
    """Coping behaviours mentioned in the text, in lexicon order"""
    if not text:
        return []
    return [coping for coping, pattern in COPING_PATTERNS.items() if pattern.search(text)]


def extract_topics(tags: Optional[Sequence[str]]) -> List[str]:
    """Topics, activities and people from tags, as readable phrases"""
    topics: List[str] = []
    for prefix in (TOPIC_PREFIX, ACTIVITY_PREFIX, PERSON_PREFIX):
        for value in extract_entities_by_type(tags, prefix):
            if value not in topics:
                topics.append(value)
    return topics


def _mood_sorted(entries: Sequence[Entry]) -> List[Entry]:
    return sorted((e for e in entries if e.has_mood), key=lambda e: e.effective_date)


def _days_between(start: datetime, end: datetime) -> float:
    return abs((end - start).total_seconds()) / 86400


def _mean(values: Sequence[float]) -> float:
    return sum(values) / len(values) if values else 0.0


# ================================================================
# Mood events
# ================================================================

def find_mood_events(entries: Sequence[Entry]) -> List[MoodEvent]:
    """
    Local mood extrema.

    An entry (not among the first or last 3) is a low/high when its mood is
    at least 0.15 below/above the mean of both the 3 entries before and
    the 3 after it.
    """
    ordered = _mood_sorted(entries)
    if len(ordered) < MIN_ENTRIES_FOR_EVENTS:
        return []

    events = []
    for i in range(EVENT_WINDOW, len(ordered) - EVENT_WINDOW):
        mood = ordered[i].mood_score
        avg_prev = _mean([e.mood_score for e in ordered[i - EVENT_WINDOW:i]])
        avg_next = _mean([e.mood_score for e in ordered[i + 1:i + 1 + EVENT_WINDOW]])

        if mood <= avg_prev - EVENT_MARGIN and mood <= avg_next - EVENT_MARGIN:
            kind = "low"
            magnitude = min(avg_prev, avg_next) - mood
        elif mood >= avg_prev + EVENT_MARGIN and mood >= avg_next + EVENT_MARGIN:
            kind = "high"
            magnitude = mood - max(avg_prev, avg_next)
        else:
            continue

        events.append(MoodEvent(
            entry_id=ordered[i].id,
            date=ordered[i].effective_date,
            mood=mood,
            kind=kind,
            magnitude=magnitude,
        ))

    return events


# ================================================================
# Decline sequences
# ================================================================

@dataclass
class DeclineSequence:
    entries: List[Entry]
    start: MoodEvent
    end: MoodEvent
    topics: List[str] = field(default_factory=list)  # union, first-seen order

    @property
    def drop(self) -> float:
        return self.start.mood - self.end.mood


def _cluster_sequences(sequences: List[DeclineSequence]) -> List[List[DeclineSequence]]:
    """Greedy clustering: join the first cluster sharing more than half of this sequence's topics"""
    clusters: List[List[DeclineSequence]] = []

    for sequence in sequences:
        topics = set(sequence.topics)
        placed = False
        for cluster in clusters:
            cluster_topics = {t for member in cluster for t in member.topics}
            overlap = len(topics & cluster_topics) / max(len(topics), 1)
            if overlap > CLUSTER_OVERLAP:
                cluster.append(sequence)
                placed = True
                break
        if not placed:
            clusters.append([sequence])

    return [c for c in clusters if len(c) >= MIN_CLUSTER_SIZE]


def _common_pattern(cluster: List[DeclineSequence]) -> List[str]:
    """Topics present in at least half of the member sequences, most common first"""
    counts: Dict[str, int] = {}
    for sequence in cluster:
        for topic in set(sequence.topics):
            counts[topic] = counts.get(topic, 0) + 1

    threshold = len(cluster) * 0.5
    common = [(topic, count) for topic, count in counts.items() if count >= threshold]
    common.sort(key=lambda item: (-item[1], item[0]))
    return [topic for topic, _ in common]


def _sequence_explanation(pattern: List[str], avg_drop: float) -> str:
    if not pattern:
        return "A pattern of entries often precedes mood drops"
    return (
        f"When \"{' -> '.join(pattern[:3])}\" appears in sequence, "
        f"mood tends to drop by {round(avg_drop * 100)}%"
    )


def mine_sequence_patterns(entries: Sequence[Entry]) -> List[SequenceCluster]:
    """
    Cluster the entry sequences that lead into mood drops.

    Returns:
        Clusters of at least 2 sequences; empty with fewer than 10
        mood-bearing entries or fewer than 2 mood events
    """
    ordered = _mood_sorted(entries)
    if len(ordered) < MIN_ENTRIES_FOR_SEQUENCES:
        return []

    events = find_mood_events(ordered)
    if len(events) < 2:
        return []

    sequences: List[DeclineSequence] = []
    for previous, current in zip(events, events[1:]):
        if current.kind != "low" or previous.kind == "low":
            continue

        window = [e for e in ordered if previous.date < e.effective_date < current.date]
        if len(window) < MIN_SEQUENCE_LENGTH:
            continue

        topics: List[str] = []
        for entry in window:
            for topic in extract_topics(entry.tags):
                if topic not in topics:
                    topics.append(topic)
        sequences.append(DeclineSequence(entries=window, start=previous, end=current, topics=topics))

    clusters = []
    for cluster in _cluster_sequences(sequences):
        pattern = _common_pattern(cluster)
        avg_drop = _mean([s.drop for s in cluster])
        confirmed = len(cluster) >= CONFIRMED_CLUSTER_SIZE
        cluster_key = "|".join(pattern) or cluster[0].end.entry_id

        clusters.append(SequenceCluster(
            id=f"seq_{hashlib.sha1(cluster_key.encode('utf-8')).hexdigest()[:12]}",
            pattern=pattern,
            occurrences=len(cluster),
            avg_mood_drop=avg_drop,
            avg_days_to_decline=_mean([_days_between(s.start.date, s.end.date) for s in cluster]),
            confidence=0.8 if confirmed else 0.6,
            validation_state="confirmed" if confirmed else "pending_validation",
            explanation=_sequence_explanation(pattern, avg_drop),
            examples=[
                SequenceExample(
                    start_date=s.start.date,
                    end_date=s.end.date,
                    mood_drop=s.drop,
                    topics=s.topics[:4],
                )
                for s in cluster[:3]
            ],
        ))

    logger.info(f"[SequenceMining] {len(sequences)} decline sequences, {len(clusters)} clusters")
    return clusters


# ================================================================
# Recovery
# ================================================================

@dataclass
class LowPeriod:
    entries: List[Entry]

    @property
    def start(self) -> datetime:
        return self.entries[0].effective_date

    @property
    def end(self) -> datetime:
        return self.entries[-1].effective_date

    @property
    def lowest(self) -> float:
        return min(e.mood_score for e in self.entries)


def find_low_periods(entries: Sequence[Entry]) -> List[LowPeriod]:
    """Runs of at least 2 consecutive entries below 0.35"""
    periods: List[LowPeriod] = []
    current: List[Entry] = []

    for entry in _mood_sorted(entries):
        if entry.mood_score < LOW_MOOD_THRESHOLD:
            current.append(entry)
            continue
        if len(current) >= MIN_LOW_PERIOD_ENTRIES:
            periods.append(LowPeriod(current))
        current = []

    if len(current) >= MIN_LOW_PERIOD_ENTRIES:
        periods.append(LowPeriod(current))
    return periods


def find_recovery_entries(
    entries: Sequence[Entry],
    period: LowPeriod,
    max_days: int = RECOVERY_WINDOW_DAYS
) -> List[tuple[Entry, float]]:
    """
    Entries on the way back up after a low period, with each one's mood
    change from the entry before it.

    Stops at the first entry at or above 0.6 or after max_days.
    """
    cutoff = period.end + timedelta(days=max_days)
    previous_mood = period.entries[-1].mood_score
    recovering: List[tuple[Entry, float]] = []

    for entry in _mood_sorted(entries):
        when = entry.effective_date
        if when <= period.end:
            continue
        if when > cutoff:
            break

        mood = entry.mood_score
        delta = mood - previous_mood
        if not recovering or mood > previous_mood or mood >= 0.5:
            recovering.append((entry, delta))
        previous_mood = mood

        if mood >= RECOVERED_MOOD:
            break

    return recovering


def _helpful_factors(recovering: List[tuple[Entry, float]]) -> List[str]:
    """Top 5 factors mentioned in entries where mood rose by more than 0.1"""
    counts: Dict[str, int] = {}
    for entry, delta in recovering:
        if delta <= HELPFUL_IMPROVEMENT:
            continue
        factors = list(extract_entities_by_type(entry.tags, ACTIVITY_PREFIX))
        if extract_entities_by_type(entry.tags, PERSON_PREFIX):
            factors.append("social_support")
        factors.extend(extract_coping_mentions(entry.text))
        for factor in factors:
            counts[factor] = counts.get(factor, 0) + 1

    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    return [factor for factor, _ in ranked[:5]]


def _recovery_narrative(factors: List[RecoveryFactor]) -> str:
    if not factors:
        return "We're still learning about your recovery patterns."
    phrases = [FACTOR_PHRASES.get(f.factor, f.factor.replace("_", " ")) for f in factors[:3]]
    return f"Your recovery often involves {', '.join(phrases)}. These tend to help you bounce back."


def analyze_recovery_patterns(entries: Sequence[Entry]) -> RecoverySignature:
    """
    Characterize what precedes recovery from low-mood periods.

    Returns:
        RecoverySignature; total_recoveries=0 and validation_state "hidden"
        when no low period has been followed by any entries yet
    """
    episodes: List[RecoveryEpisode] = []

    for period in find_low_periods(entries):
        recovering = find_recovery_entries(entries, period)
        if not recovering:
            continue
        last_entry = recovering[-1][0]
        peak = max(e.mood_score for e, _ in recovering)
        episodes.append(RecoveryEpisode(
            low_start=period.start,
            low_end=period.end,
            low_mood=period.lowest,
            recovery_entries=len(recovering),
            recovery_days=_days_between(period.end, last_entry.effective_date),
            recovered=peak >= RECOVERED_MOOD,
            peak_mood=peak,
            factors=_helpful_factors(recovering),
        ))

    if not episodes:
        return RecoverySignature(
            total_recoveries=0,
            narrative="Not enough data to analyze recovery patterns yet.",
            insight="",
            validation_state="hidden",
        )

    counts: Dict[str, int] = {}
    for episode in episodes:
        for factor in episode.factors:
            counts[factor] = counts.get(factor, 0) + 1
    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))[:10]
    common = [
        RecoveryFactor(factor=factor, count=count, frequency=count / len(episodes))
        for factor, count in ranked
    ]

    avg_days = _mean([e.recovery_days for e in episodes if e.recovery_days is not None])
    insight = ""
    if common:
        names = ", ".join(f.factor.replace("_", " ") for f in common[:3])
        insight = f"When you're struggling, {names} tend to help you recover."

    return RecoverySignature(
        total_recoveries=len(episodes),
        avg_recovery_days=round(avg_days, 1) if avg_days > 0 else None,
        common_factors=common,
        narrative=_recovery_narrative(common),
        insight=insight,
        validation_state="confirmed" if len(episodes) >= CONFIRMED_RECOVERIES else "pending_validation",
        episodes=episodes,
    )


# ================================================================
# Insights
# ================================================================

def format_sequences_as_insights(clusters: Sequence[SequenceCluster], limit: int = 2) -> List[Insight]:
    """Confirmed clusters surface as patterns, pending ones as low-priority questions"""
    insights = []
    for cluster in sorted(clusters, key=lambda c: (-c.occurrences, -c.avg_mood_drop)):
        if cluster.validation_state not in ("confirmed", "pending_validation"):
            continue
        confirmed = cluster.validation_state == "confirmed"
        insights.append(Insight(
            id=f"insight_{cluster.id}",
            type="sequence",
            title="A recurring path into low moods",
            summary=cluster.explanation if confirmed else f"{cluster.explanation}. Does this resonate?",
            body=(
                f"This has happened {cluster.occurrences} times, with mood falling about "
                f"{round(cluster.avg_mood_drop * 100)}% over {round(cluster.avg_days_to_decline, 1)} days."
            ),
            evidence=[
                f"{ex.start_date.date().isoformat()} to {ex.end_date.date().isoformat()}: "
                f"-{round(ex.mood_drop * 100)}%"
                for ex in cluster.examples
            ],
            priority=PRIORITY_PATTERN if confirmed else PRIORITY_CORRELATIONAL,
            confidence=cluster.confidence,
            mood_delta_percent=-round(cluster.avg_mood_drop * 100, 1),
            entry_count=cluster.occurrences,
            last_mentioned=max((ex.end_date for ex in cluster.examples), default=None),
            source="sequence_mining",
        ))
        if len(insights) >= limit:
            break
    return insights


def format_recovery_as_insight(signature: Optional[RecoverySignature]) -> Optional[Insight]:
    if signature is None or signature.total_recoveries == 0 or not signature.insight:
        return None
    confirmed = signature.validation_state == "confirmed"
    evidence = [
        f"{f.factor.replace('_', ' ')}: {f.count} of {signature.total_recoveries} recoveries"
        for f in signature.common_factors[:3]
    ]
    return Insight(
        id="insight_recovery_signature",
        type="recovery",
        title="What helps you bounce back",
        summary=signature.insight,
        body=signature.narrative,
        evidence=evidence,
        priority=PRIORITY_PATTERN if confirmed else PRIORITY_CORRELATIONAL,
        confidence=0.8 if confirmed else 0.6,
        entry_count=signature.total_recoveries,
        last_mentioned=max((e.low_end for e in signature.episodes), default=None),
        source="sequence_mining",
    )
