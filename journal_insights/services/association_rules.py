"""
Association Rule Mining

Apriori over per-entry item sets to surface multi-factor mood patterns,
e.g. "sleep:poor + time:evening" -> mood_drop.

A rule's confidence is the absolute mood difference between entries that
contain the itemset and the user's overall mean mood. It is not the
classical P(consequent | antecedent); the stored value keeps this meaning
so validation tiers stay comparable across runs.

Validation tiers:
- confidence >= 0.75: confirmed (shown as an insight)
- 0.5 <= confidence < 0.75: pending_validation (shown as a question)
- below 0.5: hidden
"""

import hashlib
import logging
import math
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from itertools import combinations
from typing import Dict, FrozenSet, Iterable, List, Optional, Sequence

from journal_insights.models.entry import Entry
from journal_insights.models.insight import (
    PRIORITY_CORRELATIONAL,
    PRIORITY_PATTERN,
    Insight,
)
from journal_insights.models.patterns import AssociationRule, RuleFeedback
from journal_insights.services.feature_extraction import (
    FeatureRecord,
    categorize_sleep,
    extract_features,
)

logger = logging.getLogger(__name__)

MIN_TRANSACTIONS = 10
MIN_RULE_COUNT = 5
MIN_MOOD_DELTA = 0.1
MAX_ITEMSET_SIZE = 4
CONFIRMED_THRESHOLD = 0.75
PENDING_THRESHOLD = 0.5

DAY_NAMES = ["Sunday", "Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday"]

# Activities recognized in free text in addition to @activity: tags
TEXT_ACTIVITY_PATTERNS: Dict[str, re.Pattern] = {
    "workout": re.compile(r"\bworkouts?\b|\bworked out\b", re.IGNORECASE),
    "yoga": re.compile(r"\byoga\b", re.IGNORECASE),
    "meditation": re.compile(r"\bmeditat(?:e|ed|ing|ion)\b", re.IGNORECASE),
    "running": re.compile(r"\b(?:running|went for a run|ran \d)", re.IGNORECASE),
    "walking": re.compile(r"\b(?:went for a walk|walking|long walk)\b", re.IGNORECASE),
    "swimming": re.compile(r"\bswim(?:ming)?\b", re.IGNORECASE),
    "therapy": re.compile(r"\b(?:therapy|therapist)\b", re.IGNORECASE),
    "reading": re.compile(r"\breading\b", re.IGNORECASE),
    "cooking": re.compile(r"\bcook(?:ed|ing)\b", re.IGNORECASE),
    "nature": re.compile(r"\b(?:hike|hiking|hiked|outdoors|nature)\b", re.IGNORECASE),
}

# Single-factor itemsets from these categories are too weak on their own
WEAK_SINGLE_PREFIXES = ("weather:", "day:", "time:", "season:")
# ...except these, which have a well-documented mood association
ALLOWED_WEAK_FACTORS = frozenset({"season:winter", "time:night"})


@dataclass
class Transaction:
    entry_id: str
    items: FrozenSet[str]
    mood: float
    date: datetime


@dataclass
class FrequentItemset:
    items: FrozenSet[str]
    count: int


# ================================================================
# Transactions
# ================================================================

def _time_bucket(hour: int) -> str:
    if 5 <= hour < 12:
        return "morning"
    if 12 <= hour < 17:
        return "afternoon"
    if 17 <= hour < 21:
        return "evening"
    return "night"


def _bool(value: bool) -> str:
    return "true" if value else "false"


def text_activities(text: Optional[str]) -> List[str]:
    if not text:
        return []
    return [name for name, pattern in TEXT_ACTIVITY_PATTERNS.items() if pattern.search(text)]


def entry_to_transaction(entry: Entry, features: FeatureRecord) -> Transaction:
    """Reduce an entry to its set of categorical items"""
    items = set()
    temporal = features.temporal
    entities = features.entities
    context = features.context

    items.add(f"day:{temporal.day_of_week}")
    items.add(f"weekend:{_bool(temporal.is_weekend)}")
    items.add(f"season:{temporal.season}")
    if temporal.is_holiday_period:
        items.add("holiday:true")
    items.add(f"time:{_time_bucket(temporal.hour_of_day)}")

    items.add(f"alone:{_bool(entities.is_alone)}")
    items.update(f"person:{p.lower()}" for p in entities.people)
    items.update(f"activity:{a.lower()}" for a in entities.activities)
    items.update(f"activity:{a}" for a in text_activities(entry.text))
    items.update(f"place:{p.lower()}" for p in entities.places)
    items.update(f"topic:{t.lower()}" for t in entities.topics)

    if context.weather:
        items.add(f"weather:{context.weather.lower()}")
    if context.sleep_hours is not None:
        items.add(f"sleep:{categorize_sleep(context.sleep_hours)}")
    if context.had_workout is not None:
        items.add(f"workout:{_bool(context.had_workout)}")

    if features.sequential.is_mood_shift:
        items.add("moodshift:true")
    if features.sequential.entries_this_week == 0:
        items.add("frequency:first_of_week")
    elif features.sequential.entries_this_week >= 5:
        items.add("frequency:daily_journaler")

    if features.entry_type:
        items.add(f"type:{features.entry_type}")

    return Transaction(
        entry_id=entry.id,
        items=frozenset(items),
        mood=features.mood_score,
        date=features.date,
    )


# ================================================================
# Apriori
# ================================================================

def _count(candidate: FrozenSet[str], transactions: Sequence[Transaction]) -> int:
    return sum(1 for t in transactions if candidate <= t.items)


def _generate_candidates(previous: List[FrozenSet[str]], k: int) -> List[FrozenSet[str]]:
    """Join (k-1)-itemsets sharing their first k-2 sorted items, dropping any with an infrequent subset"""
    ordered = sorted(tuple(sorted(s)) for s in previous)
    previous_set = set(previous)
    candidates = []

    for i in range(len(ordered)):
        for j in range(i + 1, len(ordered)):
            if ordered[i][:k - 2] != ordered[j][:k - 2]:
                continue
            candidate = frozenset(ordered[i]) | frozenset(ordered[j])
            if len(candidate) != k:
                continue
            if all(frozenset(sub) in previous_set for sub in combinations(candidate, k - 1)):
                candidates.append(candidate)

    return candidates


def find_frequent_itemsets(
    transactions: Sequence[Transaction],
    min_support: float,
    max_size: int = MAX_ITEMSET_SIZE
) -> List[FrequentItemset]:
    """
    Apriori frequent itemsets up to max_size items.

    An itemset is frequent when at least ceil(N * min_support) transactions
    contain it.
    """
    if not transactions:
        return []

    min_count = math.ceil(len(transactions) * min_support)

    item_counts: Dict[str, int] = {}
    for transaction in transactions:
        for item in transaction.items:
            item_counts[item] = item_counts.get(item, 0) + 1

    current = [
        FrequentItemset(frozenset([item]), count)
        for item, count in sorted(item_counts.items())
        if count >= min_count
    ]
    frequent = list(current)

    k = 2
    while current and k <= max_size:
        next_level = []
        for candidate in _generate_candidates([f.items for f in current], k):
            count = _count(candidate, transactions)
            if count >= min_count:
                next_level.append(FrequentItemset(candidate, count))
        frequent.extend(next_level)
        current = next_level
        k += 1

    return frequent


# ================================================================
# Rules
# ================================================================

def validation_state_for(confidence: float, min_confidence: float = CONFIRMED_THRESHOLD) -> str:
    if confidence >= min_confidence:
        return "confirmed"
    if confidence >= PENDING_THRESHOLD:
        return "pending_validation"
    return "hidden"


def is_clinically_plausible(items: Sequence[str]) -> bool:
    """Multi-factor itemsets always pass; lone weak factors need the allow-list"""
    if len(items) >= 2:
        return True
    item = items[0]
    if item.startswith(WEAK_SINGLE_PREFIXES):
        return item in ALLOWED_WEAK_FACTORS
    return True


def describe_item(item: str) -> str:
    kind, _, value = item.partition(":")
    readable = value.replace("_", " ")
    if kind == "day":
        return f"on {DAY_NAMES[int(value)]}s" if value.isdigit() and int(value) < 7 else item
    if kind == "weekend":
        return "on weekends" if value == "true" else "on weekdays"
    if kind == "time":
        return f"in the {value}"
    if kind == "alone":
        return "when spending time alone" if value == "true" else "when with others"
    if kind == "sleep":
        return f"after {value} sleep"
    if kind == "workout":
        return "on workout days" if value == "true" else "on rest days"
    if kind == "weather":
        return f"when the weather is {readable}"
    if kind == "person":
        return f"when with {readable}"
    if kind == "activity":
        return f"on {readable} days"
    if kind == "topic":
        return f"when writing about {readable}"
    if kind == "place":
        return f"at {readable}"
    if kind == "type":
        return f"in {readable} entries"
    if kind == "season":
        return f"during {value}"
    if kind == "holiday":
        return "during holiday periods"
    if kind == "frequency":
        return "when journaling regularly" if value == "daily_journaler" else "at the start of your journaling week"
    if kind == "moodshift":
        return "after a mood shift"
    return item


def explain_rule(items: Sequence[str], mood_delta: float, avg_mood: float) -> tuple[str, str]:
    direction = "higher" if mood_delta > 0 else "lower"
    percentage = round(abs(mood_delta) * 100)
    conditions = [describe_item(item) for item in items]
    short = f"Your mood is {percentage}% {direction} {' + '.join(conditions)}"
    detailed = (
        f"When {' and '.join(conditions)}, your mood averages {round(avg_mood * 100)}% "
        f"({percentage}% {direction} than your baseline)."
    )
    return short, detailed


def rule_id(items: Iterable[str]) -> str:
    key = "|".join(sorted(items))
    return f"rule_{hashlib.sha1(key.encode('utf-8')).hexdigest()[:12]}"


def build_transactions(entries: Sequence[Entry]) -> List[Transaction]:
    mood_entries = [e for e in entries if e.has_mood]
    return [entry_to_transaction(e, extract_features(e, entries)) for e in mood_entries]


def mine_association_rules(
    entries: Sequence[Entry],
    min_support: float = 0.1,
    min_confidence: float = CONFIRMED_THRESHOLD
) -> List[AssociationRule]:
    """
    Mine mood association rules from a batch of entries.

    Returns:
        Rules sorted by |mood_delta| descending; empty with fewer than 10
        mood-bearing entries
    """
    transactions = build_transactions(entries)
    if len(transactions) < MIN_TRANSACTIONS:
        return []

    baseline_mood = sum(t.mood for t in transactions) / len(transactions)
    rules: List[AssociationRule] = []

    for itemset in find_frequent_itemsets(transactions, min_support):
        if itemset.count < MIN_RULE_COUNT:
            continue

        matching = [t for t in transactions if itemset.items <= t.items]
        avg_mood = sum(t.mood for t in matching) / len(matching)
        mood_delta = avg_mood - baseline_mood
        if abs(mood_delta) < MIN_MOOD_DELTA:
            continue

        items = sorted(itemset.items)
        if not is_clinically_plausible(items):
            continue

        confidence = abs(mood_delta)
        short, detailed = explain_rule(items, mood_delta, avg_mood)
        rules.append(AssociationRule(
            id=rule_id(items),
            antecedent=items,
            consequent="mood_boost" if mood_delta > 0 else "mood_drop",
            support=len(matching) / len(transactions),
            confidence=confidence,
            mood_delta=mood_delta,
            avg_mood=avg_mood,
            baseline_mood=baseline_mood,
            count=len(matching),
            total_entries=len(transactions),
            explanation=short,
            detailed_explanation=detailed,
            validation_state=validation_state_for(confidence, min_confidence),
        ))

    rules.sort(key=lambda r: abs(r.mood_delta), reverse=True)
    logger.info(f"[AssociationRules] Mined {len(rules)} rules from {len(transactions)} entries")
    return rules


def update_rule_with_feedback(
    rule: AssociationRule,
    feedback: RuleFeedback,
    now: Optional[datetime] = None
) -> AssociationRule:
    """Confirmation raises confidence by 0.1 (max 1); dismissal lowers it by 0.2 and hides the rule"""
    if feedback == "confirmed":
        confidence = min(1.0, rule.confidence + 0.1)
        state = "confirmed"
    else:
        confidence = rule.confidence - 0.2
        state = "dismissed"

    return rule.model_copy(update={
        "user_feedback": feedback,
        "feedback_at": now or datetime.now(timezone.utc),
        "confidence": confidence,
        "validation_state": state,
    })


def carry_over_feedback(
    mined: Sequence[AssociationRule],
    previous: Sequence[AssociationRule]
) -> List[AssociationRule]:
    """Re-apply earlier user feedback to freshly mined rules with the same id"""
    feedback = {r.id: r for r in previous if r.user_feedback}
    carried = []
    for rule in mined:
        earlier = feedback.get(rule.id)
        if earlier is not None:
            rule = update_rule_with_feedback(rule, earlier.user_feedback, earlier.feedback_at)
        carried.append(rule)
    return carried


def get_confirmed_rules(rules: Sequence[AssociationRule]) -> List[AssociationRule]:
    return [r for r in rules if r.validation_state == "confirmed"]


def get_pending_validation_rules(rules: Sequence[AssociationRule]) -> List[AssociationRule]:
    return [r for r in rules if r.validation_state == "pending_validation"]


def format_rules_as_insights(rules: Sequence[AssociationRule], limit: int = 3) -> List[Insight]:
    """
    Confirmed rules become pattern insights; pending rules become
    low-priority questions. Hidden and dismissed rules are never surfaced.
    """
    insights = []
    for rule in rules:
        if rule.validation_state not in ("confirmed", "pending_validation"):
            continue
        confirmed = rule.validation_state == "confirmed"
        summary = rule.explanation if confirmed else f"{rule.explanation}. Does this resonate?"
        insights.append(Insight(
            id=f"insight_{rule.id}",
            type="association_rule",
            title=rule.explanation,
            summary=summary,
            body=rule.detailed_explanation,
            evidence=[f"Seen in {rule.count} of {rule.total_entries} entries"] + list(rule.antecedent),
            priority=PRIORITY_PATTERN if confirmed else PRIORITY_CORRELATIONAL,
            confidence=rule.confidence,
            mood_delta_percent=round(rule.mood_delta * 100, 1),
            entry_count=rule.count,
            source="association_rules",
        ))
        if len(insights) >= limit:
            break
    return insights
