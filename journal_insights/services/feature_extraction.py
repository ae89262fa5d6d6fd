"""
Feature Extraction Service

Turns a journal entry (plus the rest of the user's recent entries) into a
structured feature record used by association-rule mining and the
sequence miner:

1. Temporal features (day, hour, week, season, holiday period)
2. Entity features (people, places, activities, topics from tags)
3. Contextual features (weather, sleep, workout from attached snapshots)
4. Linguistic features (counts against fixed lexicons)
5. Sequential features (relative to earlier entries)

Everything here is a pure function of its inputs.
"""

import logging
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from journal_insights.models.entry import Entry

logger = logging.getLogger(__name__)

# Tag prefixes
PERSON_PREFIX = "@person:"
PLACE_PREFIX = "@place:"
ACTIVITY_PREFIX = "@activity:"
TOPIC_PREFIX = "@topic:"

# ================================================================
# Lexicons
# ================================================================

NEGATIVE_WORDS = [
    "bad", "terrible", "awful", "horrible", "sad", "angry", "frustrated",
    "anxious", "worried", "stressed", "depressed", "lonely", "tired",
    "exhausted", "overwhelmed", "disappointed", "hurt", "upset", "scared",
    "afraid", "nervous", "irritated", "annoyed", "miserable", "hopeless",
    "helpless", "worthless", "guilty", "ashamed", "regret", "hate", "fail",
]

POSITIVE_WORDS = [
    "good", "great", "amazing", "wonderful", "happy", "joy", "excited",
    "grateful", "thankful", "blessed", "love", "peaceful", "calm", "relaxed",
    "confident", "proud", "accomplished", "satisfied", "content", "hopeful",
    "optimistic", "energized", "motivated", "inspired", "strong", "success",
    "achieve", "win", "celebrate", "enjoy", "fun", "beautiful", "nice",
]

OBLIGATION_WORDS = [
    "should", "must", "have to", "need to", "ought to", "supposed to",
    "got to", "obligated", "required", "expected",
]

UNCERTAINTY_WORDS = [
    "maybe", "perhaps", "might", "could", "possibly", "probably",
    "uncertain", "unsure", "don't know", "not sure", "wonder", "confused",
]

_SELF_REFERENCE_RE = re.compile(r"\b(?:i'm|i've|i'll|i|me|my|myself)\b", re.IGNORECASE)


def _lexicon_pattern(words: Sequence[str]) -> re.Pattern:
    alternatives = "|".join(re.escape(w) for w in sorted(words, key=len, reverse=True))
    return re.compile(rf"\b(?:{alternatives})\b", re.IGNORECASE)


_NEGATIVE_RE = _lexicon_pattern(NEGATIVE_WORDS)
_POSITIVE_RE = _lexicon_pattern(POSITIVE_WORDS)
_OBLIGATION_RE = _lexicon_pattern(OBLIGATION_WORDS)
_UNCERTAINTY_RE = _lexicon_pattern(UNCERTAINTY_WORDS)

# Fixed-date holidays (month, day) matched within +/- 3 days
_FIXED_HOLIDAYS = [(1, 1), (2, 14), (7, 4), (10, 31)]
# Whole windows (month, first day, last day)
_HOLIDAY_WINDOWS = [(11, 20, 30), (12, 20, 31)]


# ================================================================
# Feature record
# ================================================================

@dataclass
class TemporalFeatures:
    day_of_week: int  # 0 = Sunday
    hour_of_day: int
    is_weekend: bool
    week_of_year: int
    month: int  # 1-12
    day_of_month: int
    season: str
    is_holiday_period: bool


@dataclass
class EntityFeatures:
    people: List[str]
    places: List[str]
    activities: List[str]
    topics: List[str]
    person_count: int
    is_alone: bool
    is_new_place: bool
    is_new_person: bool


@dataclass
class ContextFeatures:
    weather: Optional[str] = None
    temperature: Optional[float] = None
    is_low_light: Optional[bool] = None
    sleep_hours: Optional[float] = None
    sleep_quality: Optional[str] = None
    had_workout: Optional[bool] = None
    stress_indicator: Optional[str] = None
    daylight_hours: Optional[float] = None


@dataclass
class LinguisticFeatures:
    word_count: int
    sentence_count: int
    avg_sentence_length: float
    question_count: int
    exclamation_count: int
    self_reference_count: int
    negative_words: int
    positive_words: int
    obligation_words: int
    uncertainty_words: int


@dataclass
class SequentialFeatures:
    days_since_last_entry: Optional[float]
    mood_delta_from_previous: float
    is_mood_shift: bool
    entries_this_week: int
    avg_mood_last_3_days: Optional[float]
    previous_entry_mood: Optional[float]
    previous_day_activities: List[str] = field(default_factory=list)


@dataclass
class FeatureRecord:
    """All feature buckets for one entry"""
    entry_id: str
    date: datetime
    category: str
    temporal: TemporalFeatures
    entities: EntityFeatures
    context: ContextFeatures
    linguistic: LinguisticFeatures
    sequential: SequentialFeatures
    mood_score: Optional[float]
    entry_type: Optional[str]


# ================================================================
# Temporal helpers
# ================================================================

def day_of_week(moment: datetime) -> int:
    """Day of week with Sunday = 0"""
    return (moment.weekday() + 1) % 7


def get_season(moment: datetime) -> str:
    """Season for a date (northern hemisphere)"""
    month = moment.month
    if 3 <= month <= 5:
        return "spring"
    if 6 <= month <= 8:
        return "summer"
    if 9 <= month <= 11:
        return "fall"
    return "winter"


def is_holiday_period(moment: datetime) -> bool:
    """True near a major holiday or inside the Thanksgiving/Christmas windows"""
    for month, start, end in _HOLIDAY_WINDOWS:
        if moment.month == month and start <= moment.day <= end:
            return True
    return any(
        moment.month == month and abs(moment.day - day) <= 3
        for month, day in _FIXED_HOLIDAYS
    )


# ================================================================
# Entity helpers
# ================================================================

def extract_entities_by_type(tags: Optional[Sequence[str]], prefix: str) -> List[str]:
    """
    Pull entity names with the given prefix out of an entry's tags.

    Example:
        >>> extract_entities_by_type(["@person:sam_lee", "@topic:work"], "@person:")
        ['sam lee']
    """
    if not tags:
        return []
    return [t[len(prefix):].replace("_", " ") for t in tags if t.startswith(prefix)]


def _is_first_mention(entry: Entry, prefix: str, earlier: Sequence[Entry]) -> bool:
    entry_tags = [t for t in entry.tags if t.startswith(prefix)]
    if not entry_tags:
        return False

    seen = {t for e in earlier for t in e.tags if t.startswith(prefix)}
    return any(t not in seen for t in entry_tags)


# ================================================================
# Linguistic helpers
# ================================================================

def count_lexicon_matches(text: Optional[str], pattern: re.Pattern) -> int:
    if not text:
        return 0
    return len(pattern.findall(text))


def count_self_references(text: Optional[str]) -> int:
    if not text:
        return 0
    return len(_SELF_REFERENCE_RE.findall(text))


def _linguistic_features(text: str) -> LinguisticFeatures:
    words = text.split()
    sentences = [s for s in re.split(r"[.!?]+", text) if s.strip()]
    word_count = len(words)

    return LinguisticFeatures(
        word_count=word_count,
        sentence_count=len(sentences),
        avg_sentence_length=word_count / max(1, len(sentences)) if text else 0.0,
        question_count=text.count("?"),
        exclamation_count=text.count("!"),
        self_reference_count=count_self_references(text),
        negative_words=count_lexicon_matches(text, _NEGATIVE_RE),
        positive_words=count_lexicon_matches(text, _POSITIVE_RE),
        obligation_words=count_lexicon_matches(text, _OBLIGATION_RE),
        uncertainty_words=count_lexicon_matches(text, _UNCERTAINTY_RE),
    )


# ================================================================
# Sequential helpers
# ================================================================

def _earlier_entries(entry: Entry, all_entries: Sequence[Entry]) -> List[Entry]:
    """Entries strictly before this one, newest first"""
    when = entry.effective_date
    earlier = [e for e in all_entries if e.id != entry.id and e.effective_date < when]
    earlier.sort(key=lambda e: e.effective_date, reverse=True)
    return earlier


def _sequential_features(entry: Entry, earlier: List[Entry]) -> SequentialFeatures:
    when = entry.effective_date

    days_since_last = None
    if earlier:
        days_since_last = (when - earlier[0].effective_date).total_seconds() / 86400

    earlier_with_mood = [e for e in earlier if e.has_mood]
    previous_mood = earlier_with_mood[0].mood_score if earlier_with_mood else None

    mood_delta = 0.0
    if entry.has_mood and previous_mood is not None:
        mood_delta = entry.mood_score - previous_mood

    week_start = when - timedelta(days=7)
    entries_this_week = sum(1 for e in earlier if e.effective_date >= week_start)

    three_days_ago = when - timedelta(days=3)
    recent_moods = [e.mood_score for e in earlier_with_mood if e.effective_date >= three_days_ago]
    avg_recent = sum(recent_moods) / len(recent_moods) if recent_moods else None

    previous_day = (when - timedelta(days=1)).date()
    previous_day_activities: List[str] = []
    for e in earlier:
        if e.effective_date.date() != previous_day:
            continue
        for activity in extract_entities_by_type(e.tags, ACTIVITY_PREFIX):
            if activity not in previous_day_activities:
                previous_day_activities.append(activity)

    return SequentialFeatures(
        days_since_last_entry=days_since_last,
        mood_delta_from_previous=mood_delta,
        is_mood_shift=abs(mood_delta) > 0.2,
        entries_this_week=entries_this_week,
        avg_mood_last_3_days=avg_recent,
        previous_entry_mood=previous_mood,
        previous_day_activities=previous_day_activities,
    )


# ================================================================
# Public API
# ================================================================

def extract_features(
    entry: Entry,
    all_entries: Sequence[Entry] = (),
    context: Optional[Dict[str, Any]] = None
) -> FeatureRecord:
    """
    Extract every feature bucket for one entry.

    Args:
        entry: The entry to describe
        all_entries: The user's recent entries (used for first-mention and
            sequential features; may include the entry itself)
        context: Fallback environment values (weather, temperature) used
            when the entry carries no environment snapshot

    Returns:
        FeatureRecord
    """
    context = context or {}
    when = entry.local_time
    earlier = _earlier_entries(entry, all_entries)
    health = entry.health
    env = entry.environment

    people = extract_entities_by_type(entry.tags, PERSON_PREFIX)

    temporal = TemporalFeatures(
        day_of_week=day_of_week(when),
        hour_of_day=when.hour,
        is_weekend=day_of_week(when) in (0, 6),
        week_of_year=when.isocalendar()[1],
        month=when.month,
        day_of_month=when.day,
        season=get_season(when),
        is_holiday_period=is_holiday_period(when),
    )

    entities = EntityFeatures(
        people=people,
        places=extract_entities_by_type(entry.tags, PLACE_PREFIX),
        activities=extract_entities_by_type(entry.tags, ACTIVITY_PREFIX),
        topics=extract_entities_by_type(entry.tags, TOPIC_PREFIX),
        person_count=len(people),
        is_alone=len(people) == 0,
        is_new_place=_is_first_mention(entry, PLACE_PREFIX, earlier),
        is_new_person=_is_first_mention(entry, PERSON_PREFIX, earlier),
    )

    ctx = ContextFeatures(
        weather=(env.weather if env and env.weather else context.get("weather")),
        temperature=(env.temperature if env and env.temperature is not None else context.get("temperature")),
        is_low_light=env.is_low_sunshine if env else None,
        sleep_hours=health.sleep_hours if health else None,
        sleep_quality=health.sleep_quality if health else None,
        had_workout=health.has_workout if health else None,
        stress_indicator=health.stress_indicator if health else None,
        daylight_hours=env.daylight_hours if env else None,
    )

    return FeatureRecord(
        entry_id=entry.id,
        date=when,
        category=entry.category,
        temporal=temporal,
        entities=entities,
        context=ctx,
        linguistic=_linguistic_features(entry.text or ""),
        sequential=_sequential_features(entry, earlier),
        mood_score=entry.mood_score,
        entry_type=entry.entry_type,
    )


def extract_all_features(entries: Sequence[Entry]) -> List[FeatureRecord]:
    """Extract features for every entry against the same corpus"""
    return [extract_features(entry, entries) for entry in entries]


def categorize_sleep(hours: Optional[float]) -> str:
    """Bucket sleep hours: poor (<5), fair (<7), good (<=9), excessive"""
    if hours is None:
        return "unknown"
    if hours < 5:
        return "poor"
    if hours < 7:
        return "fair"
    if hours <= 9:
        return "good"
    return "excessive"
