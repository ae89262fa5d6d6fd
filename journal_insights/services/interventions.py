"""
Intervention Tracking & Recommendations

Detects what the user did (activities named in the text, weather and
daylight from the environment snapshot, sleep/recovery/strain from the
health snapshot), measures how mood and next-day biometrics moved after
each one, and turns the most effective interventions for the current life
state into up to three ranked recommendations.

Everything here is deterministic and runs in the mining worker thread.
"""

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Callable, Dict, List, Optional, Sequence

from journal_insights.models.entry import BiometricDay, EnvironmentSnapshot, Entry, HealthSnapshot
from journal_insights.models.insight import PRIORITY_CORRELATIONAL, Insight, stable_insight_id
from journal_insights.models.interventions import (
    ExpectedOutcome,
    InterventionDocument,
    InterventionEffectiveness,
    InterventionOccurrence,
    InterventionRecord,
    MetricStats,
    Recommendation,
)
from journal_insights.models.state import StateDetection
from journal_insights.services.statistical_analysis import mean, population_std_dev

logger = logging.getLogger(__name__)

BASELINE_WINDOW_DAYS = 7
DEFAULT_BASELINE_MOOD = 50.0
MIN_SAMPLES_FOR_SCORE = 3
GOOD_RECOVERY = 60
LOW_RECOVERY = 40
LOW_MOOD_POINTS = 40
RECENT_MOOD_ENTRIES = 3
MIN_RECOMMENDATION_SCORE = 0.5
MAX_RECOMMENDATIONS = 3


@dataclass(frozen=True)
class NarrativeIntervention:
    category: str
    pattern: re.Pattern


def _words(*alternatives: str) -> re.Pattern:
    return re.compile(r"\b(?:" + "|".join(alternatives) + r")\b", re.IGNORECASE)


NARRATIVE_INTERVENTIONS: Dict[str, NarrativeIntervention] = {
    # Physical
    "yoga": NarrativeIntervention("physical", _words("yoga", "vinyasa", "pilates")),
    "gym": NarrativeIntervention("physical", _words("gym", "lift(?:ed|ing)?", "workout", "weights")),
    "walk": NarrativeIntervention("physical", _words("walk(?:ed|ing)?", "hike(?:d)?", "hiking")),
    "bike": NarrativeIntervention("physical", _words("bike", "biked", "cycling", "rode")),
    # Relational
    "dog_walk": NarrativeIntervention("relational", re.compile(r"\bwalked (?:the |my )?dog\b|\bdog walk", re.IGNORECASE)),
    "partner_time": NarrativeIntervention("relational", _words("partner", "boyfriend", "girlfriend", "husband", "wife", "date night")),
    "social": NarrativeIntervention("relational", _words("dinner with", "hung out", "met up", "friends", "called")),
    # Behavioral
    "acts_of_service": NarrativeIntervention(
        "behavioral", re.compile(r"\b(?:helped|(?:cleaned|made|cooked) \w+(?: \w+)? for)\b", re.IGNORECASE)
    ),
    "creative": NarrativeIntervention("behavioral", _words("paint(?:ed|ing)?", "built", "created", "drew", "drawing")),
    # Recovery
    "rest_day": NarrativeIntervention("recovery", _words("rest day", "rested", "took it easy", "relaxed", "lazy day")),
    "sleep_focus": NarrativeIntervention("recovery", _words("slept in", "extra sleep", "early to bed", "went to bed early")),
    # Light exposure
    "outdoor_time": NarrativeIntervention("light_exposure", _words("outside", "outdoors", "in the sun", "sunshine")),
    "morning_light": NarrativeIntervention(
        "light_exposure", _words("morning walk", "walked this morning", "morning sun", "morning outside")
    ),
    "nature_time": NarrativeIntervention("light_exposure", _words("park", "beach", "trail", "garden", "nature")),
}

# Temperatures are Fahrenheit, as recorded on the environment snapshot
ENVIRONMENT_INTERVENTIONS: Dict[str, Callable[[EnvironmentSnapshot], bool]] = {
    "bright_day": lambda env: env.is_low_sunshine is False,
    "low_sunshine_day": lambda env: env.is_low_sunshine is True,
    "sunny_weather": lambda env: bool(env.weather and re.search(r"sunny|clear", env.weather, re.IGNORECASE)),
    "rainy_weather": lambda env: bool(env.weather and re.search(r"rain|storm|drizzle", env.weather, re.IGNORECASE)),
    "warm_weather": lambda env: env.temperature is not None and env.temperature >= 70,
    "cold_weather": lambda env: env.temperature is not None and env.temperature < 45,
}

HEALTH_INTERVENTIONS: Dict[str, Callable[[HealthSnapshot], bool]] = {
    "good_sleep_night": lambda h: h.sleep_quality in ("good", "excellent") or (h.sleep_hours or 0) >= 8,
    "poor_sleep_night": lambda h: h.sleep_quality == "poor" or (h.sleep_hours is not None and h.sleep_hours < 6),
    "workout_day": lambda h: h.has_workout is True,
    "high_recovery_day": lambda h: h.recovery_score is not None and h.recovery_score >= 67,
    "low_recovery_day": lambda h: h.recovery_score is not None and h.recovery_score < 34,
    "high_strain_day": lambda h: h.strain is not None and h.strain >= 15,
    "active_day": lambda h: h.steps is not None and h.steps >= 8000,
    "sedentary_day": lambda h: h.steps is not None and h.steps < 3000,
}

# Interventions worth suggesting per life state; "low_mood" applies when recent mood is low
STATE_INTERVENTIONS: Dict[str, List[str]] = {
    "career_waiting": ["dog_walk", "yoga", "creative", "social"],
    "career_active": ["walk", "yoga", "sleep_focus", "social"],
    "career_rejection": ["partner_time", "acts_of_service", "yoga", "social"],
    "relationship_strain": ["walk", "yoga", "creative", "rest_day"],
    "recovery_mode": ["rest_day", "walk", "sleep_focus"],
    "burnout_risk": ["rest_day", "sleep_focus", "social"],
    "low_mood": ["yoga", "dog_walk", "partner_time", "acts_of_service"],
    "stable": ["gym", "creative", "social", "walk"],
}

OPTIMAL_TIMES: Dict[str, tuple] = {
    "yoga": ("morning", "afternoon"),
    "dog_walk": ("morning", "evening"),
    "gym": ("morning", "afternoon"),
    "social": ("evening",),
    "creative": ("afternoon", "evening"),
}

TIMING_ADVICE = {
    "yoga": "This morning if possible, or early afternoon",
    "dog_walk": "Before 7pm for the best overnight recovery",
    "rest_day": "Today and tomorrow if needed",
    "social": "This evening",
    "creative": "When you have 30+ uninterrupted minutes",
    "walk": "Anytime - even a short walk helps",
    "partner_time": "This evening when you both have downtime",
    "acts_of_service": "When you notice an opportunity",
    "sleep_focus": "Tonight - aim to be in bed 30 minutes earlier",
}

STATE_REASONING = {
    ("career_waiting", "dog_walk"): (
        "You're in a waiting period with elevated stress markers. Walking the dog has historically "
        "lifted your HRV by {hrv}ms within 24 hours."
    ),
    ("career_waiting", "yoga"): (
        "During career uncertainty, yoga has been your most effective physical reset."
    ),
    ("career_waiting", "creative"): (
        "Creative projects give you a sense of agency when career outcomes feel out of your control."
    ),
    ("low_mood", "acts_of_service"): (
        "When your mood is low, doing something for someone else has historically lifted it by {mood} points."
    ),
}


# ================================================================
# Detection
# ================================================================

def _occurrence(entry: Entry, name: str, kind: str, category: str) -> InterventionOccurrence:
    return InterventionOccurrence(
        intervention=name,
        kind=kind,
        category=category,
        entry_id=entry.id,
        entry_date=entry.local_time.date(),
        entry_mood=entry.mood_score,
    )


def detect_interventions_in_entry(entry: Entry) -> List[InterventionOccurrence]:
    """Narrative, environment and health interventions present in one entry"""
    detected = [
        _occurrence(entry, name, "narrative", spec.category)
        for name, spec in NARRATIVE_INTERVENTIONS.items()
        if spec.pattern.search(entry.text or "")
    ]
    if entry.environment is not None:
        detected.extend(
            _occurrence(entry, name, "environment", "environment")
            for name, condition in ENVIRONMENT_INTERVENTIONS.items()
            if condition(entry.environment)
        )
    if entry.health is not None:
        detected.extend(
            _occurrence(entry, name, "health", "health")
            for name, condition in HEALTH_INTERVENTIONS.items()
            if condition(entry.health)
        )
    return detected


# ================================================================
# Effectiveness
# ================================================================

def _stats(values: Sequence[float]) -> Optional[MetricStats]:
    if not values:
        return None
    return MetricStats(
        mean=round(mean(values), 1),
        std_dev=round(population_std_dev(values), 1),
    )


def _baseline_mood(day: date, entries: Sequence[Entry]) -> float:
    """Mean mood (points) of the other days within a week of this one"""
    moods = [
        e.mood_score * 100
        for e in entries
        if e.mood_score is not None
        and e.local_time.date() != day
        and abs((e.local_time.date() - day).days) <= BASELINE_WINDOW_DAYS
    ]
    return mean(moods) if moods else DEFAULT_BASELINE_MOOD


def effectiveness_score(
    mood_deltas: Sequence[float],
    hrv_deltas: Sequence[float],
    next_day_recovery: Sequence[float]
) -> float:
    """
    0-1 score starting from a neutral 0.5. Each signal only counts with at
    least three samples: mood adds up to 0.25, HRV up to 0.15, and good
    average next-day recovery adds 0.1.
    """
    score = 0.5
    if len(mood_deltas) >= MIN_SAMPLES_FOR_SCORE:
        score += min(mean(mood_deltas) / 30, 0.25)
    if len(hrv_deltas) >= MIN_SAMPLES_FOR_SCORE:
        score += min(mean(hrv_deltas) / 20, 0.15)
    if len(next_day_recovery) >= MIN_SAMPLES_FOR_SCORE and mean(next_day_recovery) > GOOD_RECOVERY:
        score += 0.1
    return max(0.0, min(1.0, score))


def calculate_effectiveness(
    occurrences: Sequence[InterventionOccurrence],
    entries: Sequence[Entry],
    biometric_history: Optional[Sequence[BiometricDay]] = None
) -> InterventionEffectiveness:
    by_date = {d.date: d for d in biometric_history or []}
    mood_deltas: List[float] = []
    hrv_deltas: List[float] = []
    recoveries: List[float] = []

    for occurrence in occurrences:
        day = occurrence.entry_date
        if occurrence.entry_mood is not None:
            mood_deltas.append(occurrence.entry_mood * 100 - _baseline_mood(day, entries))

        today, tomorrow = by_date.get(day), by_date.get(day + timedelta(days=1))
        if tomorrow is None:
            continue
        if today is not None and today.hrv is not None and tomorrow.hrv is not None:
            hrv_deltas.append(tomorrow.hrv - today.hrv)
        if tomorrow.recovery_score is not None:
            recoveries.append(tomorrow.recovery_score)

    return InterventionEffectiveness(
        mood_delta=_stats(mood_deltas),
        hrv_delta=_stats(hrv_deltas),
        next_day_recovery=_stats(recoveries),
        score=effectiveness_score(mood_deltas, hrv_deltas, recoveries),
        sample_size=len(occurrences),
    )


def track_interventions(
    entries: Sequence[Entry],
    biometric_history: Optional[Sequence[BiometricDay]] = None,
    now: Optional[datetime] = None
) -> InterventionDocument:
    """Detect every intervention across the entries and score each one"""
    grouped: Dict[str, List[InterventionOccurrence]] = {}
    for entry in entries:
        for occurrence in detect_interventions_in_entry(entry):
            grouped.setdefault(occurrence.intervention, []).append(occurrence)

    document = InterventionDocument(updated_at=now)
    for name, occurrences in grouped.items():
        document.interventions[name] = InterventionRecord(
            name=name,
            kind=occurrences[0].kind,
            category=occurrences[0].category,
            total_occurrences=len(occurrences),
            effectiveness=calculate_effectiveness(occurrences, entries, biometric_history),
        )

    logger.info(f"[Interventions] Tracked {len(document.interventions)} interventions over {len(entries)} entries")
    return document


# ================================================================
# Recommendations
# ================================================================

def time_of_day(moment: datetime) -> str:
    if moment.hour < 12:
        return "morning"
    if moment.hour < 17:
        return "afternoon"
    return "evening"


def _label(name: str) -> str:
    return name.replace("_", " ")


def recent_mood_points(entries: Sequence[Entry]) -> Optional[float]:
    """Average mood (points) of the latest few entries with a mood"""
    moods = sorted((e for e in entries if e.has_mood), key=lambda e: e.effective_date)[-RECENT_MOOD_ENTRIES:]
    if not moods:
        return None
    return mean([e.mood_score for e in moods]) * 100


@dataclass
class RecommendationContext:
    state: Optional[StateDetection] = None
    recovery_today: Optional[float] = None
    recent_mood: Optional[float] = None  # points
    time_of_day: str = "morning"

    @property
    def state_key(self) -> str:
        primary = self.state.primary if self.state else "stable"
        if primary in STATE_INTERVENTIONS and primary != "stable":
            return primary
        if self.recent_mood is not None and self.recent_mood < LOW_MOOD_POINTS:
            return "low_mood"
        return "stable"


def score_recommendation(record: InterventionRecord, context: RecommendationContext) -> float:
    score = record.effectiveness.score

    optimal = OPTIMAL_TIMES.get(record.name)
    score += 0.1 if optimal is None or context.time_of_day in optimal else -0.05

    if context.recovery_today is not None and context.recovery_today < LOW_RECOVERY:
        if record.category == "physical":
            score -= 0.2
        elif record.category == "recovery":
            score += 0.2

    if context.recent_mood is not None and context.recent_mood < LOW_MOOD_POINTS and record.name == "acts_of_service":
        score += 0.15

    return max(0.0, min(1.0, score))


def recommendation_reasoning(record: InterventionRecord, state_key: str) -> str:
    effect = record.effectiveness
    mood = effect.mood_delta.mean if effect.mood_delta else None
    hrv = effect.hrv_delta.mean if effect.hrv_delta else None
    label = _label(record.name)

    template = STATE_REASONING.get((state_key, record.name))
    if template and ("{hrv}" not in template or hrv) and ("{mood}" not in template or mood):
        return template.format(hrv=round(hrv or 0), mood=round(mood or 0))

    if mood is not None and abs(mood) > 5:
        direction = "higher" if mood > 0 else "lower"
        return f"On days you do {label}, your mood is typically {round(abs(mood))} points {direction} than average."
    if hrv is not None and abs(hrv) > 3:
        verb = "improve" if hrv > 0 else "affect"
        return f"{label.capitalize()} tends to {verb} your HRV recovery the next day."
    if effect.score >= 0.7:
        return f"{label.capitalize()} has been consistently helpful for your mood and energy."
    if effect.score >= 0.55:
        return f"{label.capitalize()} sometimes helps with mood, depending on the day."
    return f"{label.capitalize()} is worth trying. I'm still learning what works best for you."


def suggest_timing(name: str, current: str) -> str:
    if name == "gym":
        return "This morning" if current == "morning" else "Before the end of the day"
    if name in TIMING_ADVICE:
        return TIMING_ADVICE[name]
    return "Tomorrow when you have time" if current == "evening" else "Later today if possible"


def predict_outcome(record: InterventionRecord) -> ExpectedOutcome:
    effect = record.effectiveness
    mood = effect.mood_delta.mean if effect.mood_delta else 10
    description = f"Expected mood improvement: +{round(mood)} points"
    if effect.hrv_delta and effect.hrv_delta.mean:
        description += f". HRV recovery: +{round(effect.hrv_delta.mean)}ms within 24 hours"
    return ExpectedOutcome(description=description, confidence=effect.score)


def generate_recommendations(
    document: Optional[InterventionDocument],
    context: RecommendationContext
) -> List[Recommendation]:
    """Top recommendations for the current state, scored above the neutral 0.5"""
    if document is None or not document.interventions:
        return []

    state_key = context.state_key
    recommendations = []
    for name in STATE_INTERVENTIONS[state_key]:
        record = document.interventions.get(name)
        if record is None:
            continue
        score = score_recommendation(record, context)
        if score <= MIN_RECOMMENDATION_SCORE:
            continue
        recommendations.append(Recommendation(
            intervention=name,
            category=record.category,
            score=round(score, 2),
            reasoning=recommendation_reasoning(record, state_key),
            timing=suggest_timing(name, context.time_of_day),
            expected_outcome=predict_outcome(record),
        ))

    recommendations.sort(key=lambda r: r.score, reverse=True)
    return recommendations[:MAX_RECOMMENDATIONS]


def recommendation_insight(recommendations: Sequence[Recommendation]) -> Optional[Insight]:
    """The best recommendation as an insight; the runners-up go into evidence"""
    if not recommendations:
        return None
    top = recommendations[0]
    return Insight(
        id=stable_insight_id("recommendation", top.intervention),
        type="recommendation",
        title=f"Try {_label(top.intervention)} today",
        summary=top.reasoning,
        body=top.expected_outcome.description,
        evidence=[f"Also worth trying: {_label(r.intervention)} ({r.reasoning})" for r in recommendations[1:]],
        recommendation=top.timing,
        priority=PRIORITY_CORRELATIONAL,
        confidence=top.expected_outcome.confidence,
        entity=top.intervention,
        source="interventions",
    )
