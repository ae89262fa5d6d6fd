"""
Insight deduplication

A candidate duplicates an existing insight (with a different id) when:
- title word overlap (Jaccard) exceeds 0.7, or
- combined title + summary word overlap exceeds the configured threshold, or
- both hit the same theme (at least 2 trigger words each)

A candidate that duplicates an earlier candidate in the same batch is
dropped. One that duplicates a stored insight takes over the stored id so
the history merge updates that record instead of adding a near copy; if
the stored insight was dismissed the candidate is dropped, as is any
candidate whose own id was dismissed before.
"""

import logging
import re
from dataclasses import dataclass, field
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence, Set

from journal_insights.config import DEDUP_SIMILARITY_THRESHOLD
from journal_insights.models.insight import Insight

logger = logging.getLogger(__name__)

TITLE_OVERLAP_THRESHOLD = 0.7
MIN_THEME_HITS = 2

_WORD_RE = re.compile(r"[a-z0-9']+")
_STOPWORDS = frozenset({
    "a", "an", "and", "are", "as", "at", "be", "by", "for", "from", "in", "is", "it",
    "of", "on", "or", "the", "to", "when", "with", "you", "your", "than", "this", "that",
})

THEMES: Dict[str, FrozenSet[str]] = {
    "sleep": frozenset({"sleep", "slept", "rest", "tired", "insomnia", "nap", "bedtime"}),
    "exercise": frozenset({"workout", "exercise", "gym", "running", "yoga", "active", "steps"}),
    "social": frozenset({"friends", "family", "partner", "alone", "others", "connecting", "social"}),
    "work": frozenset({"work", "job", "career", "meeting", "deadline", "interview", "boss"}),
    "stress": frozenset({"stress", "stressed", "anxious", "anxiety", "overwhelmed", "worry", "burnout"}),
    "recovery": frozenset({"recover", "recovery", "recovering", "bounce", "struggling", "low"}),
    "heart": frozenset({"heart", "hrv", "resting", "cardiovascular", "pulse"}),
}


def tokenize(text: Optional[str]) -> Set[str]:
    if not text:
        return set()
    return {w for w in _WORD_RE.findall(text.lower()) if w not in _STOPWORDS}


def jaccard(a: Set[str], b: Set[str]) -> float:
    if not a and not b:
        return 0.0
    return len(a & b) / len(a | b)


def title_similarity(a: Insight, b: Insight) -> float:
    return jaccard(tokenize(a.title), tokenize(b.title))


def content_similarity(a: Insight, b: Insight) -> float:
    return jaccard(tokenize(f"{a.title} {a.summary}"), tokenize(f"{b.title} {b.summary}"))


def detect_themes(insight: Insight) -> Set[str]:
    """Themes with at least 2 distinct trigger words in the title or summary"""
    words = tokenize(f"{insight.title} {insight.summary}")
    return {theme for theme, triggers in THEMES.items() if len(words & triggers) >= MIN_THEME_HITS}


def is_duplicate(
    candidate: Insight,
    existing: Insight,
    threshold: float = DEDUP_SIMILARITY_THRESHOLD
) -> bool:
    if candidate.id == existing.id:
        return False
    if title_similarity(candidate, existing) > TITLE_OVERLAP_THRESHOLD:
        return True
    if content_similarity(candidate, existing) > threshold:
        return True
    return bool(detect_themes(candidate) & detect_themes(existing))


def find_duplicate(
    candidate: Insight,
    pool: Iterable[Insight],
    threshold: float = DEDUP_SIMILARITY_THRESHOLD
) -> Optional[Insight]:
    for existing in pool:
        if is_duplicate(candidate, existing, threshold):
            return existing
    return None


@dataclass
class DedupResult:
    accepted: List[Insight] = field(default_factory=list)
    rejected: List[Insight] = field(default_factory=list)


def deduplicate_insights(
    candidates: Sequence[Insight],
    existing: Sequence[Insight] = (),
    threshold: float = DEDUP_SIMILARITY_THRESHOLD
) -> DedupResult:
    """
    Deduplicate a batch against itself and against stored insights.

    Candidates are considered in priority order, so when two collide the
    higher-priority (lower number) one survives.
    """
    result = DedupResult()
    accepted_ids: Set[str] = set()
    candidate_ids = {c.id for c in candidates}
    dismissed_ids = {e.id for e in existing if e.dismissed}
    stored = [e for e in existing if e.id not in candidate_ids]

    for candidate in sorted(candidates, key=lambda i: i.priority):
        if candidate.id in dismissed_ids or candidate.id in accepted_ids or find_duplicate(candidate, result.accepted, threshold):
            result.rejected.append(candidate)
            continue

        match = find_duplicate(candidate, stored, threshold)
        if match is not None:
            if match.dismissed or match.id in accepted_ids:
                result.rejected.append(candidate)
                continue
            logger.debug(f"[Dedup] '{candidate.title}' continues stored insight {match.id}")
            candidate = candidate.model_copy(update={"id": match.id})

        result.accepted.append(candidate)
        accepted_ids.add(candidate.id)

    if result.rejected:
        logger.info(f"[Dedup] Dropped {len(result.rejected)} duplicate insight(s)")
    return result
