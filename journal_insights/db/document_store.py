"""
Per-user JSON document storage

Baselines, threads, life state, mined rules, intervention effectiveness and insights are each kept as
one named JSON document per user. Writes merge top-level keys into the
existing document, so writers never clobber fields they do not own.
"""

import copy
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

import psycopg

from journal_insights.db.connection import Database, db
from journal_insights.exceptions import wrap_external_exception

logger = logging.getLogger(__name__)

# Document names
BASELINES = "baselines"
THREADS = "threads"
STATE = "state"
RULES = "rules"
INSIGHTS = "insights"
INSIGHTS_STAGING = "insights_staging"
SETTINGS = "settings"
INTERVENTIONS = "interventions"


class DocumentStore(ABC):
    """Read-modify-write storage for per-user JSON documents"""

    @abstractmethod
    async def get(self, user_id: str, name: str) -> Optional[Dict[str, Any]]:
        """Return the document, or None if it does not exist"""

    @abstractmethod
    async def merge(self, user_id: str, name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Merge top-level keys into the document (creating it) and return the result"""

    @abstractmethod
    async def delete(self, user_id: str, name: str) -> None:
        """Remove the document if present"""


class PostgresDocumentStore(DocumentStore):
    """DocumentStore backed by the user_documents JSONB table"""

    def __init__(self, database: Database = db):
        self.database = database

    async def get(self, user_id: str, name: str) -> Optional[Dict[str, Any]]:
        try:
            async with self.database.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "SELECT data FROM user_documents WHERE user_id = %s AND name = %s",
                        (user_id, name)
                    )
                    row = await cur.fetchone()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="document_get", user_id=user_id, context={"document": name})
        return row["data"] if row else None

    async def merge(self, user_id: str, name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        try:
            async with self.database.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        """
                        INSERT INTO user_documents (user_id, name, data, updated_at)
                        VALUES (%s, %s, %s::jsonb, now())
                        ON CONFLICT (user_id, name)
                        DO UPDATE SET data = user_documents.data || EXCLUDED.data,
                                      updated_at = now()
                        RETURNING data
                        """,
                        (user_id, name, json.dumps(data, default=str))
                    )
                    row = await cur.fetchone()
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="document_merge", user_id=user_id, context={"document": name})

        logger.debug(f"Merged document {name} for user {user_id}")
        return row["data"]

    async def delete(self, user_id: str, name: str) -> None:
        try:
            async with self.database.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute(
                        "DELETE FROM user_documents WHERE user_id = %s AND name = %s",
                        (user_id, name)
                    )
                    await conn.commit()
        except psycopg.Error as e:
            raise wrap_external_exception(e, operation="document_delete", user_id=user_id, context={"document": name})
        logger.debug(f"Deleted document {name} for user {user_id}")


class InMemoryDocumentStore(DocumentStore):
    """
    Process-local DocumentStore for tests and local development

    Values round-trip through JSON so callers see the same shapes the
    Postgres store returns.
    """

    def __init__(self):
        self._documents: Dict[tuple, Dict[str, Any]] = {}

    async def get(self, user_id: str, name: str) -> Optional[Dict[str, Any]]:
        document = self._documents.get((user_id, name))
        return copy.deepcopy(document) if document is not None else None

    async def merge(self, user_id: str, name: str, data: Dict[str, Any]) -> Dict[str, Any]:
        existing = self._documents.setdefault((user_id, name), {})
        existing.update(json.loads(json.dumps(data, default=str)))
        return copy.deepcopy(existing)

    async def delete(self, user_id: str, name: str) -> None:
        self._documents.pop((user_id, name), None)
