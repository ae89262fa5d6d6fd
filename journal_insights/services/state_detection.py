"""
State Detection Service

Scores a fixed catalog of life states against the user's active threads,
most recent entries and today's wearable data, and keeps a bounded history
of state transitions.

Scoring weights per trigger kind:
- thread categories: 30 (15 per matching active category)
- keywords in the 5 most recent entries: up to 40 (10 each)
- recent sentiment bound: 20
- today's recovery score bound: 20 (only counted when wearable data exists)
- recent mood bound: 15

confidence = achieved / applicable. States at >= 0.4 are kept.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from journal_insights.db.document_store import STATE, DocumentStore
from journal_insights.models.entry import BiometricDay, Entry
from journal_insights.models.state import (
    CurrentState,
    StateDetection,
    StateDocument,
    StateHistoryItem,
    StateScore,
)
from journal_insights.models.thread import Thread

logger = logging.getLogger(__name__)

RECENT_ENTRY_WINDOW = 5
MIN_STATE_CONFIDENCE = 0.4
DEFAULT_CONFIDENCE = 0.5
MAX_STATE_HISTORY = 20
DEFAULT_STATE = "stable"

THREAD_WEIGHT = 30
THREAD_MATCH_POINTS = 15
KEYWORD_WEIGHT = 40
KEYWORD_MATCH_POINTS = 10
SENTIMENT_WEIGHT = 20
RECOVERY_WEIGHT = 20
MOOD_WEIGHT = 15


@dataclass(frozen=True)
class Bounds:
    """Inclusive lower and/or upper bound"""
    min: Optional[float] = None
    max: Optional[float] = None

    def satisfied_by(self, value: float) -> bool:
        if self.min is not None and value >= self.min:
            return True
        if self.max is not None and value <= self.max:
            return True
        return False


@dataclass(frozen=True)
class StateTriggers:
    thread_categories: Tuple[str, ...] = ()
    keywords: Tuple[str, ...] = ()
    sentiment: Optional[Bounds] = None  # 0-1 scale
    recovery: Optional[Bounds] = None  # wearable recovery score, 0-100
    mood: Optional[Bounds] = None  # 0-100 scale


@dataclass(frozen=True)
class LifeStateDefinition:
    id: str
    display_name: str
    description: str
    triggers: StateTriggers = field(default_factory=StateTriggers)
    possible_outcomes: Tuple[str, ...] = ()
    urgency: str = "normal"
    is_default: bool = False


LIFE_STATES: Tuple[LifeStateDefinition, ...] = (
    LifeStateDefinition(
        "career_waiting", "Career Waiting Period",
        "Awaiting response on job applications or interviews",
        StateTriggers(thread_categories=("career",),
                      keywords=("waiting", "haven't heard", "following up", "pending")),
        possible_outcomes=("career_success", "career_rejection"),
    ),
    LifeStateDefinition(
        "career_active", "Active Job Search",
        "Actively interviewing or applying for positions",
        StateTriggers(thread_categories=("career",),
                      keywords=("interview", "application", "recruiter", "applying")),
    ),
    LifeStateDefinition(
        "career_success", "Career Win",
        "Positive career outcome achieved",
        StateTriggers(keywords=("got the job", "offer", "accepted", "start date")),
    ),
    LifeStateDefinition(
        "career_rejection", "Processing Rejection",
        "Processing a career setback",
        StateTriggers(keywords=("rejected", "didn't get", "passed", "not moving forward")),
    ),
    LifeStateDefinition(
        "relationship_growth", "Relationship Growth",
        "Deepening connection with partner",
        StateTriggers(thread_categories=("relationship",),
                      keywords=("closer", "connected", "love", "future", "together"),
                      sentiment=Bounds(min=0.65)),
    ),
    LifeStateDefinition(
        "relationship_strain", "Relationship Tension",
        "Navigating relationship challenges",
        StateTriggers(thread_categories=("relationship",),
                      keywords=("argument", "frustrated", "annoyed", "tension", "worried about us"),
                      sentiment=Bounds(max=0.45)),
    ),
    LifeStateDefinition(
        "recovery_mode", "Recovery Mode",
        "Recovering from illness, injury, or overexertion",
        StateTriggers(thread_categories=("health", "somatic"),
                      keywords=("sick", "recovering", "rest", "injury", "taking it easy"),
                      recovery=Bounds(max=40)),
    ),
    LifeStateDefinition(
        "high_performance", "High Performance",
        "Peak physical and mental state",
        StateTriggers(keywords=("great workout", "feeling strong", "best", "crushed it"),
                      recovery=Bounds(min=70),
                      mood=Bounds(min=70)),
    ),
    LifeStateDefinition(
        "burnout_risk", "Burnout Risk",
        "Signs of approaching burnout",
        StateTriggers(keywords=("overwhelmed", "exhausted", "can't keep up", "too much"),
                      recovery=Bounds(max=35)),
        urgency="high",
    ),
    LifeStateDefinition(
        DEFAULT_STATE, "Stable",
        "No significant active state detected",
        is_default=True,
    ),
)

STATES_BY_ID: Dict[str, LifeStateDefinition] = {s.id: s for s in LIFE_STATES}


def score_state(
    state: LifeStateDefinition,
    recent_text: str,
    avg_mood: float,
    active_categories: Sequence[str],
    biometrics_today: Optional[BiometricDay]
) -> float:
    """
    Confidence for one state (achieved weight / applicable weight).

    Args:
        recent_text: Lower-cased text of the most recent entries
        avg_mood: Mean recent mood on the 0-100 scale
    """
    triggers = state.triggers
    score = 0.0
    max_score = 0.0

    if triggers.thread_categories:
        max_score += THREAD_WEIGHT
        matching = [c for c in triggers.thread_categories if c in active_categories]
        score += len(matching) * THREAD_MATCH_POINTS

    if triggers.keywords:
        max_score += KEYWORD_WEIGHT
        matching = [k for k in triggers.keywords if k in recent_text]
        score += min(len(matching) * KEYWORD_MATCH_POINTS, KEYWORD_WEIGHT)

    if triggers.sentiment:
        max_score += SENTIMENT_WEIGHT
        if triggers.sentiment.satisfied_by(avg_mood / 100):
            score += SENTIMENT_WEIGHT

    if triggers.recovery and biometrics_today is not None:
        max_score += RECOVERY_WEIGHT
        recovery = biometrics_today.recovery_score
        if recovery is not None and triggers.recovery.satisfied_by(recovery):
            score += RECOVERY_WEIGHT

    if triggers.mood:
        max_score += MOOD_WEIGHT
        if triggers.mood.satisfied_by(avg_mood):
            score += MOOD_WEIGHT

    return score / max_score if max_score > 0 else 0.0


def detect_current_state(
    entries: Sequence[Entry],
    biometrics_today: Optional[BiometricDay] = None,
    threads: Optional[Sequence[Thread]] = None
) -> StateDetection:
    """
    Detect the user's current life state(s).

    Args:
        entries: Recent entries (any order)
        biometrics_today: Today's wearable data, if connected
        threads: The user's threads (only active ones count)

    Returns:
        StateDetection with primary, up to two secondary states and the
        primary's confidence; "stable" at 0.5 when nothing qualifies
    """
    recent = sorted(entries, key=lambda e: e.effective_date, reverse=True)[:RECENT_ENTRY_WINDOW]
    recent_text = " ".join(e.text or "" for e in recent).lower()
    moods = [e.mood_score for e in recent if e.has_mood]
    avg_mood = (sum(moods) / len(moods)) * 100 if moods else 50.0

    active_categories = [t.category for t in (threads or []) if t.status == "active"]

    detected: List[StateScore] = []
    for state in LIFE_STATES:
        if state.is_default:
            continue
        confidence = score_state(state, recent_text, avg_mood, active_categories, biometrics_today)
        if confidence >= MIN_STATE_CONFIDENCE:
            detected.append(StateScore(state_id=state.id, name=state.display_name, confidence=confidence))

    detected.sort(key=lambda s: s.confidence, reverse=True)

    if not detected:
        return StateDetection(primary=DEFAULT_STATE, secondary=[], confidence=DEFAULT_CONFIDENCE)

    return StateDetection(
        primary=detected[0].state_id,
        secondary=[s.state_id for s in detected[1:3]],
        confidence=detected[0].confidence,
        all_detected=detected,
    )


class StateDetector:
    """Persists the current state and its transition history"""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_state_document(self, user_id: str) -> StateDocument:
        raw = await self.store.get(user_id, STATE)
        if not raw:
            return StateDocument()
        return StateDocument.model_validate(raw)

    async def update_current_state(
        self,
        user_id: str,
        detection: StateDetection,
        now: Optional[datetime] = None,
        existing: Optional[StateDocument] = None
    ) -> StateDocument:
        """
        Record a detection.

        On a primary change the outgoing state is archived with its duration
        and the incoming state as its outcome; otherwise the running duration
        is incremented.
        """
        now = now or datetime.now(timezone.utc)
        if existing is None:
            existing = await self.get_state_document(user_id)

        previous = existing.current
        changed = previous is None or previous.primary != detection.primary
        history = list(existing.history)

        if changed and previous is not None:
            history.append(StateHistoryItem(
                state=previous.primary,
                started_at=previous.started_at,
                ended_at=now,
                duration_days=round((now - previous.started_at).total_seconds() / 86400),
                outcome=detection.primary,
            ))
            history = history[-MAX_STATE_HISTORY:]
            logger.info(f"[StateDetector] User {user_id}: {previous.primary} -> {detection.primary}")

        current = CurrentState(
            primary=detection.primary,
            secondary=detection.secondary,
            confidence=detection.confidence,
            all_detected=detection.all_detected,
            started_at=now if changed else previous.started_at,
            duration_days=0 if changed else previous.duration_days + 1,
        )

        document = StateDocument(current=current, history=history, updated_at=now)
        await self.store.merge(user_id, STATE, document.model_dump(mode="json"))
        return document

    async def find_similar_past_states(self, user_id: str, state_id: str) -> List[StateHistoryItem]:
        """Past occurrences of a state, with their durations and outcomes"""
        document = await self.get_state_document(user_id)
        return [item for item in document.history if item.state == state_id]
