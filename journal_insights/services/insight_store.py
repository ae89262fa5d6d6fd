"""
Insight persistence

Each save goes through a staging document:

1. The batch is written to the staging document
2. The staged copy is read back and validated (unique ids, valid
   priorities, count matches)
3. The batch is promoted into the insights document: active is replaced,
   history is merged by id

If validation fails the staging document is deleted and ValidationError is
raised; the live document is untouched. Any store failure while reading,
staging or promoting raises PersistenceError after the staging document is
discarded and, for promotion, the previous active set is written back.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from journal_insights.config import INSIGHT_HISTORY_LIMIT, INSIGHT_TTL_HOURS
from journal_insights.db.document_store import INSIGHTS, INSIGHTS_STAGING, DocumentStore
from journal_insights.exceptions import PersistenceError, ValidationError
from journal_insights.models.insight import Insight, InsightDocument, utc_now

logger = logging.getLogger(__name__)

VALID_PRIORITIES = frozenset({0, 1, 2, 3})


def merge_history(
    history: Sequence[Insight],
    incoming: Sequence[Insight],
    limit: int = INSIGHT_HISTORY_LIMIT
) -> List[Insight]:
    """
    Merge incoming insights into history by id.

    A re-generated insight replaces its stored copy but keeps the dismissed
    flag. Result is sorted by last_seen (newest first), then priority, and
    capped at limit.
    """
    merged: Dict[str, Insight] = {i.id: i for i in history}
    for insight in incoming:
        previous = merged.get(insight.id)
        if previous is not None and previous.dismissed and not insight.dismissed:
            insight = insight.model_copy(update={"dismissed": True})
        merged[insight.id] = insight

    ordered = sorted(merged.values(), key=lambda i: (-i.last_seen.timestamp(), i.priority))
    return ordered[:limit]


def validate_batch(staged: Optional[dict], expected_count: int) -> List[Insight]:
    """Validate a staged batch and return its insights; raises ValidationError"""
    if not staged or "insights" not in staged:
        raise ValidationError(message="Staged insight batch is missing", field="insights")

    try:
        insights = [Insight.model_validate(i) for i in staged["insights"]]
    except ValueError as e:
        raise ValidationError(message=f"Staged insight is malformed: {e}", field="insights", cause=e)

    if len(insights) != expected_count or staged.get("count") != expected_count:
        raise ValidationError(
            message=f"Staged batch has {len(insights)} insights, expected {expected_count}",
            field="count",
            value=len(insights)
        )

    ids = [i.id for i in insights]
    if len(ids) != len(set(ids)):
        raise ValidationError(message="Staged batch contains duplicate insight ids", field="id")

    for insight in insights:
        if insight.priority not in VALID_PRIORITIES:
            raise ValidationError(
                message=f"Insight {insight.id} has invalid priority",
                field="priority",
                value=insight.priority
            )
    return insights


class InsightStore:
    """Reads and writes the per-user insights document"""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_document(self, user_id: str) -> Optional[InsightDocument]:
        data = await self.store.get(user_id, INSIGHTS)
        if data is None:
            return None
        return InsightDocument.model_validate(data)

    async def save_insights(
        self,
        user_id: str,
        insights: Sequence[Insight],
        now: Optional[datetime] = None
    ) -> InsightDocument:
        now = now or utc_now()
        batch = [i.model_copy(update={"last_seen": now}) for i in insights]

        try:
            previous = await self.get_document(user_id)
        except Exception as e:
            raise self._persistence_error(e, user_id, "read current insights", len(batch))

        # Stage
        try:
            await self.store.merge(user_id, INSIGHTS_STAGING, {
                "insights": [i.model_dump(mode="json") for i in batch],
                "count": len(batch),
                "staged_at": now.isoformat(),
            })
            staged = await self.store.get(user_id, INSIGHTS_STAGING)
        except Exception as e:
            await self._discard_staging(user_id)
            raise self._persistence_error(e, user_id, "stage insight batch", len(batch))

        # Validate
        try:
            validated = validate_batch(staged, len(batch))
        except ValidationError:
            await self._discard_staging(user_id)
            raise

        # Promote
        document = InsightDocument(
            active=validated,
            history=merge_history(previous.history if previous else [], validated),
            generated_at=now,
            expires_at=now + timedelta(hours=INSIGHT_TTL_HOURS),
            stale=False,
        )
        try:
            await self.store.merge(user_id, INSIGHTS, document.model_dump(mode="json"))
        except Exception as e:
            await self._restore(user_id, previous)
            await self._discard_staging(user_id)
            raise self._persistence_error(e, user_id, "promote insight batch", len(batch))

        await self._discard_staging(user_id)
        logger.info(f"[InsightStore] Saved {len(validated)} active insights for user {user_id}")
        return document

    @staticmethod
    def _persistence_error(error: Exception, user_id: str, step: str, count: int) -> PersistenceError:
        if isinstance(error, PersistenceError):
            error.context.update({"step": step, "insight_count": count})
            return error
        return PersistenceError(
            message=f"Failed to {step}: {error}",
            document=INSIGHTS,
            user_id=user_id,
            operation="save_insights",
            context={"step": step, "insight_count": count},
            cause=error
        )

    async def _discard_staging(self, user_id: str) -> None:
        """Best-effort removal of the staging document"""
        try:
            await self.store.delete(user_id, INSIGHTS_STAGING)
        except Exception as e:
            logger.warning(f"[InsightStore] Could not remove staged batch for user {user_id}: {e}")

    async def _restore(self, user_id: str, previous: Optional[InsightDocument]) -> None:
        """Best-effort write-back of the last known good active set"""
        if previous is None:
            return
        try:
            await self.store.merge(user_id, INSIGHTS, {
                "active": [i.model_dump(mode="json") for i in previous.active],
                "generated_at": previous.generated_at.isoformat() if previous.generated_at else None,
                "expires_at": previous.expires_at.isoformat() if previous.expires_at else None,
            })
            logger.warning(f"[InsightStore] Restored previous active insights for user {user_id}")
        except Exception as e:
            logger.error(f"[InsightStore] Rollback failed for user {user_id}: {e}", exc_info=True)

    async def mark_stale(self, user_id: str, reason: str, now: Optional[datetime] = None) -> None:
        now = now or utc_now()
        await self.store.merge(user_id, INSIGHTS, {
            "stale": True,
            "stale_reason": reason,
            "stale_at": now.isoformat(),
        })
        logger.debug(f"[InsightStore] Marked insights stale for user {user_id}: {reason}")

    async def dismiss(self, user_id: str, insight_id: str) -> bool:
        """Remove an insight from active and flag it dismissed in history"""
        document = await self.get_document(user_id)
        if document is None:
            return False

        target = next((i for i in document.active + document.history if i.id == insight_id), None)
        if target is None:
            return False

        dismissed = target.model_copy(update={"dismissed": True})
        active = [i for i in document.active if i.id != insight_id]
        history = [i for i in document.history if i.id != insight_id] + [dismissed]

        await self.store.merge(user_id, INSIGHTS, {
            "active": [i.model_dump(mode="json") for i in active],
            "history": [i.model_dump(mode="json") for i in history],
        })
        logger.info(f"[InsightStore] Dismissed insight {insight_id} for user {user_id}")
        return True

    async def mark_shown(self, user_id: str, insight_id: str, now: Optional[datetime] = None) -> bool:
        now = now or utc_now()
        document = await self.get_document(user_id)
        if document is None:
            return False

        def touch(items: List[Insight]) -> List[Insight]:
            return [i.model_copy(update={"last_seen": now}) if i.id == insight_id else i for i in items]

        if not any(i.id == insight_id for i in document.active + document.history):
            return False

        await self.store.merge(user_id, INSIGHTS, {
            "active": [i.model_dump(mode="json") for i in touch(document.active)],
            "history": [i.model_dump(mode="json") for i in touch(document.history)],
        })
        return True
