"""
Cross-thread meta-patterns

Finds one underlying pattern (e.g. anxiety about things outside your
control) showing up across several otherwise separate threads.

Scoring per meta-pattern:
- 15 per narrative signal found in thread names and the last 20 entries
- 20 if at least 2 of its thread categories are active
- 10 per somatic signal seen on any thread
A score of 35 or more is a detection; confidence is score / 100, capped at 0.95.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from journal_insights.models.entry import Entry
from journal_insights.models.insight import PRIORITY_CORRELATIONAL, Insight, stable_insight_id
from journal_insights.models.thread import Thread

logger = logging.getLogger(__name__)

DETECTION_THRESHOLD = 35
MAX_CONFIDENCE = 0.95
RECENT_ENTRIES = 20
NARRATIVE_WEIGHT = 15
CATEGORY_WEIGHT = 20
SOMATIC_WEIGHT = 10


@dataclass(frozen=True)
class MetaPatternDefinition:
    id: str
    display_name: str
    description: str
    thread_categories: Tuple[str, ...]
    narrative_signals: Tuple[str, ...]
    somatic_signature: Tuple[str, ...] = ()


@dataclass
class MetaPatternDetection:
    pattern: MetaPatternDefinition
    score: int
    confidence: float
    narrative_matches: List[str] = field(default_factory=list)
    category_matches: List[str] = field(default_factory=list)
    somatic_matches: List[str] = field(default_factory=list)
    affected_threads: List[str] = field(default_factory=list)  # thread ids


META_PATTERNS: Tuple[MetaPatternDefinition, ...] = (
    MetaPatternDefinition(
        "control_anxiety", "Control Anxiety",
        "Anxiety triggered by situations outside your control",
        ("career", "relationship", "health"),
        ("can't control", "helpless", "waiting", "nothing i can do", "out of my hands"),
        ("tension", "sleep_disturbance", "digestive"),
    ),
    MetaPatternDefinition(
        "caretaker_burden", "Caretaker Burden",
        "Stress from caring for others at the expense of yourself",
        ("relationship", "health"),
        ("worried about", "taking care of", "helping", "supporting", "checking on"),
        ("fatigue", "tension"),
    ),
    MetaPatternDefinition(
        "identity_threat", "Identity Threat",
        "Perceived threats to your sense of self-worth",
        ("career", "relationship", "growth"),
        ("what does this say about me", "failure", "incompetent", "not good enough", "inadequate"),
        ("cardiovascular", "sleep_disturbance"),
    ),
    MetaPatternDefinition(
        "belonging_uncertainty", "Belonging Uncertainty",
        "Anxiety about your place in relationships or communities",
        ("relationship", "social", "career"),
        ("do they like me", "fitting in", "belong", "outsider", "alone"),
        ("tension", "cognitive"),
    ),
    MetaPatternDefinition(
        "momentum_seeking", "Momentum Seeking",
        "A need for progress and forward motion",
        ("career", "growth", "creative"),
        ("stuck", "stagnant", "making progress", "moving forward", "accomplishing"),
    ),
)


def detect_meta_patterns(
    threads: Sequence[Thread],
    entries: Sequence[Entry]
) -> List[MetaPatternDetection]:
    """Detections sorted by confidence, highest first"""
    recent = sorted(entries, key=lambda e: e.effective_date)[-RECENT_ENTRIES:]
    corpus = " ".join([t.display_name for t in threads] + [e.text for e in recent]).lower()
    categories = {t.category for t in threads}
    somatics = {s for t in threads for s in t.somatic_signals}

    detections = []
    for pattern in META_PATTERNS:
        narrative = [s for s in pattern.narrative_signals if s in corpus]
        matched_categories = [c for c in pattern.thread_categories if c in categories]
        somatic = [s for s in pattern.somatic_signature if s in somatics]

        score = len(narrative) * NARRATIVE_WEIGHT + len(somatic) * SOMATIC_WEIGHT
        if len(matched_categories) >= 2:
            score += CATEGORY_WEIGHT
        if score < DETECTION_THRESHOLD:
            continue

        detections.append(MetaPatternDetection(
            pattern=pattern,
            score=score,
            confidence=min(score / 100, MAX_CONFIDENCE),
            narrative_matches=narrative,
            category_matches=matched_categories,
            somatic_matches=somatic,
            affected_threads=[t.id for t in threads if t.category in matched_categories],
        ))

    detections.sort(key=lambda d: d.confidence, reverse=True)
    logger.debug(f"[MetaPatterns] Detected {len(detections)} meta-patterns")
    return detections


def meta_pattern_insight(detection: MetaPatternDetection, threads: Sequence[Thread]) -> Optional[Insight]:
    """Insight for a detection spanning at least two threads"""
    affected = [t for t in threads if t.id in detection.affected_threads]
    if len(affected) < 2:
        return None

    names = " and ".join(t.display_name for t in affected[:2])
    evidence = [f"Mentioned: {s}" for s in detection.narrative_matches]
    evidence += [f"Body signal: {s.replace('_', ' ')}" for s in detection.somatic_matches]
    return Insight(
        id=stable_insight_id("meta_pattern", detection.pattern.id),
        type="meta_pattern",
        title=f"{detection.pattern.display_name} across {names}",
        summary=detection.pattern.description,
        body=(
            f"The same pattern shows up in {len(affected)} areas of your life: "
            f"{', '.join(t.display_name for t in affected)}."
        ),
        evidence=evidence,
        priority=PRIORITY_CORRELATIONAL,
        confidence=detection.confidence,
        entity=detection.pattern.id,
        source="meta_patterns",
    )
