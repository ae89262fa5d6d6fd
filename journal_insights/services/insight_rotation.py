"""
Insight rotation

Picks which insight to show next so users do not see the same top insight on
every visit. Each candidate is scored:

    100 base
    -80 if shown within the cooldown window, -20 if shown before that
    + min(|mood_delta_percent|, 30)
    + min(entry_count * 2, 20)
    +15 if the pattern was mentioned in the last 7 days
    +25 for high-value insight types
    + uniform jitter in [0, 10)

Recently shown records live in the key-value store per user and category,
capped at 5 and expiring after a week of inactivity.
"""

import logging
import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Sequence

from journal_insights.cache.redis_client import KeyValueStore
from journal_insights.config import (
    ROTATION_COOLDOWN_HOURS,
    ROTATION_RECENT_LIMIT,
    ROTATION_STATE_TTL_SECONDS,
)
from journal_insights.models.entry import ensure_utc
from journal_insights.models.insight import Insight, utc_now

logger = logging.getLogger(__name__)

BASE_SCORE = 100.0
COOLDOWN_PENALTY = 80.0
RESHOWN_PENALTY = 20.0
MAX_DELTA_BOOST = 30.0
MAX_ENTRY_COUNT_BOOST = 20.0
RECENT_MENTION_DAYS = 7
RECENT_MENTION_BOOST = 15.0
HIGH_VALUE_BOOST = 25.0
MAX_JITTER = 10.0

HIGH_VALUE_TYPES = frozenset({
    "synthesis",
    "association_rule",
    "sequence",
    "recovery",
    "baseline_deviation",
})

KEY_PREFIX = "insight_rotation"


@dataclass
class RotationRecord:
    key: str
    shown_at: datetime


@dataclass
class RotationState:
    recently_shown: List[RotationRecord]
    last_viewed_at: Optional[datetime] = None
    view_count: int = 0

    @classmethod
    def empty(cls) -> "RotationState":
        return cls(recently_shown=[])

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "RotationState":
        if not data:
            return cls.empty()
        records = [
            RotationRecord(key=r["key"], shown_at=ensure_utc(datetime.fromisoformat(r["shown_at"])))
            for r in data.get("recently_shown", [])
        ]
        last_viewed = data.get("last_viewed_at")
        return cls(
            recently_shown=records,
            last_viewed_at=ensure_utc(datetime.fromisoformat(last_viewed)) if last_viewed else None,
            view_count=int(data.get("view_count", 0)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "recently_shown": [
                {"key": r.key, "shown_at": r.shown_at.isoformat()} for r in self.recently_shown
            ],
            "last_viewed_at": self.last_viewed_at.isoformat() if self.last_viewed_at else None,
            "view_count": self.view_count,
        }

    def find(self, key: str) -> Optional[RotationRecord]:
        return next((r for r in self.recently_shown if r.key == key), None)


def rotation_key(user_id: str, category: str) -> str:
    return f"{KEY_PREFIX}:{user_id}:{category}"


def score_insight(
    insight: Insight,
    state: RotationState,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> float:
    now = now or utc_now()
    rng = rng or random
    score = BASE_SCORE

    record = state.find(insight.id)
    if record is not None:
        hours_since = (now - record.shown_at).total_seconds() / 3600
        score -= COOLDOWN_PENALTY if hours_since < ROTATION_COOLDOWN_HOURS else RESHOWN_PENALTY

    if insight.mood_delta_percent:
        score += min(abs(insight.mood_delta_percent), MAX_DELTA_BOOST)
    if insight.entry_count:
        score += min(insight.entry_count * 2, MAX_ENTRY_COUNT_BOOST)
    if insight.last_mentioned and now - insight.last_mentioned < timedelta(days=RECENT_MENTION_DAYS):
        score += RECENT_MENTION_BOOST
    if insight.type in HIGH_VALUE_TYPES:
        score += HIGH_VALUE_BOOST

    return score + rng.uniform(0, MAX_JITTER)


def rank_insights(
    insights: Sequence[Insight],
    state: RotationState,
    now: Optional[datetime] = None,
    rng: Optional[random.Random] = None,
) -> List[Insight]:
    scored = [(score_insight(i, state, now, rng), i) for i in insights]
    scored.sort(key=lambda pair: pair[0], reverse=True)
    return [insight for _, insight in scored]


class InsightRotation:
    """Rotation state persisted in a KeyValueStore"""

    def __init__(self, store: KeyValueStore, rng: Optional[random.Random] = None):
        self.store = store
        self.rng = rng

    async def get_state(self, user_id: str, category: str = "personal") -> RotationState:
        data = await self.store.get(rotation_key(user_id, category))
        try:
            return RotationState.from_dict(data)
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"[Rotation] Discarding unreadable state for {user_id}/{category}: {e}")
            return RotationState.empty()

    async def select_next(
        self,
        user_id: str,
        insights: Sequence[Insight],
        category: str = "personal",
        now: Optional[datetime] = None,
    ) -> Optional[Insight]:
        candidates = [i for i in insights if not i.dismissed]
        if not candidates:
            return None
        state = await self.get_state(user_id, category)
        return rank_insights(candidates, state, now, self.rng)[0]

    async def get_rotated(
        self,
        user_id: str,
        insights: Sequence[Insight],
        category: str = "personal",
        limit: int = 10,
        now: Optional[datetime] = None,
    ) -> List[Insight]:
        candidates = [i for i in insights if not i.dismissed]
        if not candidates:
            return []
        state = await self.get_state(user_id, category)
        return rank_insights(candidates, state, now, self.rng)[:limit]

    async def record_shown(
        self,
        user_id: str,
        insight_id: str,
        category: str = "personal",
        now: Optional[datetime] = None,
    ) -> RotationState:
        now = now or utc_now()
        state = await self.get_state(user_id, category)

        records = [r for r in state.recently_shown if r.key != insight_id]
        records.insert(0, RotationRecord(key=insight_id, shown_at=now))
        state.recently_shown = records[:ROTATION_RECENT_LIMIT]
        state.last_viewed_at = now
        state.view_count += 1

        await self.store.set(rotation_key(user_id, category), state.to_dict(), ttl=ROTATION_STATE_TTL_SECONDS)
        return state

    async def clear(self, user_id: str, category: str = "personal") -> None:
        await self.store.delete(rotation_key(user_id, category))
