"""Shared builders for journal-insights tests"""
from datetime import date, datetime, timedelta, timezone
from typing import List, Optional

from journal_insights.models.entry import BiometricDay, Entry, EnvironmentSnapshot, HealthSnapshot


NOW = datetime(2024, 3, 15, 12, 0, 0, tzinfo=timezone.utc)
TEST_USER = "user-123"


def make_entry(
    entry_id: str,
    text: str = "Quiet day, nothing much happened.",
    mood: Optional[float] = 0.5,
    days_ago: float = 0,
    tags: Optional[List[str]] = None,
    user_id: str = TEST_USER,
    category: str = "personal",
    health: Optional[HealthSnapshot] = None,
    environment: Optional[EnvironmentSnapshot] = None,
    now: datetime = NOW,
) -> Entry:
    """Build an entry created `days_ago` days before `now`"""
    return Entry(
        id=entry_id,
        user_id=user_id,
        text=text,
        created_at=now - timedelta(days=days_ago),
        mood_score=mood,
        category=category,
        tags=tags or [],
        health=health,
        environment=environment,
    )


def make_workout_history(count: int = 20, workouts: int = 8) -> List[Entry]:
    """One entry per day; the first `workouts` mention a workout at mood 0.8, the rest sit at 0.3"""
    entries = []
    for i in range(count):
        if i < workouts:
            entries.append(make_entry(f"e{i}", text="Great workout at the gym this morning.", mood=0.8, days_ago=i))
        else:
            entries.append(make_entry(f"e{i}", text="Stayed home and read for a while.", mood=0.3, days_ago=i))
    return entries


def make_biometric_days(count: int, today: date = NOW.date(), **readings) -> List[BiometricDay]:
    """`count` consecutive wearable days ending today"""
    values = {"resting_heart_rate": 58.0, "hrv": 60.0, "strain": 10.0, "recovery_score": 65.0, "sleep_hours": 7.5}
    values.update(readings)
    return [BiometricDay(date=today - timedelta(days=i), **values) for i in range(count)]
