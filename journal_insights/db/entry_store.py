"""Journal entry and biometric data access"""
import json
import logging
from abc import ABC, abstractmethod
from datetime import date, datetime, timedelta, timezone
from typing import Dict, List, Optional

from journal_insights.config import ENTRY_WINDOW_LIMIT
from journal_insights.db.connection import Database, db
from journal_insights.models.entry import BiometricDay, Entry

logger = logging.getLogger(__name__)


# ================================================================
# Entries
# ================================================================

class EntryStore(ABC):
    """Per-user, per-category journal entries"""

    @abstractmethod
    async def fetch_recent_entries(
        self,
        user_id: str,
        limit: int = ENTRY_WINDOW_LIMIT,
        category: Optional[str] = None
    ) -> List[Entry]:
        """Most recent entries first"""

    @abstractmethod
    async def add_entry(self, entry: Entry) -> None:
        ...

    @abstractmethod
    async def update_entry(self, entry: Entry) -> None:
        """Corrective edit of an existing entry"""


def _row_to_entry(row: dict) -> Entry:
    return Entry(
        id=row["id"],
        user_id=row["user_id"],
        category=row["category"],
        text=row["text"],
        created_at=row["created_at"],
        effective_at=row.get("effective_at"),
        utc_offset_minutes=row.get("utc_offset_minutes"),
        mood_score=row.get("mood_score"),
        entry_type=row.get("entry_type"),
        health=row.get("health"),
        environment=row.get("environment"),
        tags=row.get("tags") or [],
    )


def _entry_params(entry: Entry) -> tuple:
    return (
        entry.category,
        entry.text,
        entry.created_at,
        entry.effective_at,
        entry.utc_offset_minutes,
        entry.mood_score,
        entry.entry_type,
        json.dumps(entry.health.model_dump()) if entry.health else None,
        json.dumps(entry.environment.model_dump()) if entry.environment else None,
        json.dumps(entry.tags),
    )


class PostgresEntryStore(EntryStore):
    def __init__(self, database: Database = db):
        self.database = database

    async def fetch_recent_entries(
        self,
        user_id: str,
        limit: int = ENTRY_WINDOW_LIMIT,
        category: Optional[str] = None
    ) -> List[Entry]:
        query = "SELECT * FROM journal_entries WHERE user_id = %s"
        params: list = [user_id]
        if category:
            query += " AND category = %s"
            params.append(category)
        query += " ORDER BY created_at DESC LIMIT %s"
        params.append(limit)

        async with self.database.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(query, params)
                rows = await cur.fetchall()

        return [_row_to_entry(row) for row in rows]

    async def add_entry(self, entry: Entry) -> None:
        async with self.database.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    INSERT INTO journal_entries
                        (category, text, created_at, effective_at, utc_offset_minutes,
                         mood_score, entry_type, health, environment, tags, id, user_id)
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s::jsonb, %s::jsonb, %s::jsonb, %s, %s)
                    """,
                    _entry_params(entry) + (entry.id, entry.user_id)
                )
                await conn.commit()
        logger.info(f"Saved entry {entry.id} for user {entry.user_id}")

    async def update_entry(self, entry: Entry) -> None:
        async with self.database.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    UPDATE journal_entries
                    SET category = %s, text = %s, created_at = %s, effective_at = %s,
                        utc_offset_minutes = %s, mood_score = %s, entry_type = %s, health = %s::jsonb,
                        environment = %s::jsonb, tags = %s::jsonb
                    WHERE id = %s AND user_id = %s
                    """,
                    _entry_params(entry) + (entry.id, entry.user_id)
                )
                await conn.commit()
        logger.info(f"Updated entry {entry.id} for user {entry.user_id}")


class InMemoryEntryStore(EntryStore):
    """Process-local entry store for tests and local development"""

    def __init__(self, entries: Optional[List[Entry]] = None):
        self._entries: Dict[str, Entry] = {e.id: e for e in (entries or [])}

    async def fetch_recent_entries(
        self,
        user_id: str,
        limit: int = ENTRY_WINDOW_LIMIT,
        category: Optional[str] = None
    ) -> List[Entry]:
        matching = [
            e for e in self._entries.values()
            if e.user_id == user_id and (category is None or e.category == category)
        ]
        matching.sort(key=lambda e: e.created_at, reverse=True)
        return matching[:limit]

    async def add_entry(self, entry: Entry) -> None:
        self._entries[entry.id] = entry

    async def update_entry(self, entry: Entry) -> None:
        if entry.id not in self._entries:
            raise KeyError(f"Entry {entry.id} not found")
        self._entries[entry.id] = entry


# ================================================================
# Biometrics
# ================================================================

class BiometricProvider(ABC):
    """Optional wearable data source"""

    @abstractmethod
    async def get_history(self, user_id: str, days: int) -> List[BiometricDay]:
        """Oldest day first"""

    @abstractmethod
    async def get_today(self, user_id: str) -> Optional[BiometricDay]:
        ...


class PostgresBiometricProvider(BiometricProvider):
    def __init__(self, database: Database = db):
        self.database = database

    async def get_history(self, user_id: str, days: int) -> List[BiometricDay]:
        since = datetime.now(timezone.utc).date() - timedelta(days=days)
        async with self.database.connection() as conn:
            async with conn.cursor() as cur:
                await cur.execute(
                    """
                    SELECT day, resting_heart_rate, hrv, strain, recovery_score, sleep_hours
                    FROM biometric_days
                    WHERE user_id = %s AND day >= %s
                    ORDER BY day ASC
                    """,
                    (user_id, since)
                )
                rows = await cur.fetchall()

        return [BiometricDay(date=row.pop("day"), **row) for row in rows]

    async def get_today(self, user_id: str) -> Optional[BiometricDay]:
        today = datetime.now(timezone.utc).date()
        history = await self.get_history(user_id, 1)
        for day in history:
            if day.date == today:
                return day
        return None


class InMemoryBiometricProvider(BiometricProvider):
    def __init__(self, days: Optional[List[BiometricDay]] = None, today: Optional[date] = None):
        self._days = sorted(days or [], key=lambda d: d.date)
        self._today = today

    async def get_history(self, user_id: str, days: int) -> List[BiometricDay]:
        today = self._today or datetime.now(timezone.utc).date()
        since = today - timedelta(days=days)
        return [d for d in self._days if d.date >= since]

    async def get_today(self, user_id: str) -> Optional[BiometricDay]:
        today = self._today or datetime.now(timezone.utc).date()
        return next((d for d in self._days if d.date == today), None)
