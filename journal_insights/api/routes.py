"""API routes for the insight engine"""
import logging
from datetime import datetime, timezone
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, status
from fastapi.responses import Response
from prometheus_client import CONTENT_TYPE_LATEST, generate_latest

from journal_insights.api.models import (
    ActionResponse,
    HealthCheckResponse,
    InsightsResponse,
    NewEntryRequest,
    RuleFeedbackRequest,
)
from journal_insights.db.connection import db
from journal_insights.exceptions import InputError
from journal_insights.models.insight import GenerationResult, Insight, ReassessmentResult
from journal_insights.models.patterns import AssociationRule
from journal_insights.models.thread import ThreadAssociation
from journal_insights.services.container import get_container
from journal_insights.services.orchestrator import InsightOrchestrator

logger = logging.getLogger(__name__)

router = APIRouter()


def get_orchestrator() -> InsightOrchestrator:
    return get_container().orchestrator


def require_user_id(user_id: str) -> str:
    if not user_id or not user_id.strip():
        raise InputError(message="user_id is required", field="user_id", operation="api_request")
    return user_id.strip()


@router.get("/insights/{user_id}", response_model=InsightsResponse)
async def get_insights(
    user_id: str,
    refresh: bool = True,
    orchestrator: InsightOrchestrator = Depends(get_orchestrator)
):
    """
    Cached insights for a user.

    With refresh (the default) a missing, stale or expired cache is
    regenerated first.
    """
    user_id = require_user_id(user_id)
    if refresh:
        cached = await orchestrator.get_insights(user_id)
    else:
        cached = await orchestrator.get_cached_insights(user_id)

    if cached is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No insights for user {user_id}"
        )

    return InsightsResponse(user_id=user_id, **cached.model_dump())


@router.post("/insights/{user_id}/generate", response_model=GenerationResult)
async def generate_insights(
    user_id: str,
    orchestrator: InsightOrchestrator = Depends(get_orchestrator)
):
    """Run a full generation pass now"""
    user_id = require_user_id(user_id)
    result = await orchestrator.generate_insights(user_id)
    logger.info(f"Generation for user {user_id} via API: success={result.success}")
    return result


@router.post("/insights/{user_id}/reassess", response_model=ReassessmentResult)
async def reassess_insights(
    user_id: str,
    orchestrator: InsightOrchestrator = Depends(get_orchestrator)
):
    """Recompute baselines, patterns, rules and insights after a backfill"""
    user_id = require_user_id(user_id)
    return await orchestrator.reassess(user_id)


@router.get("/insights/{user_id}/next", response_model=Insight)
async def get_next_insight(
    user_id: str,
    category: str = "personal",
    orchestrator: InsightOrchestrator = Depends(get_orchestrator)
):
    """The insight to show next, by rotation score"""
    user_id = require_user_id(user_id)
    insight = await orchestrator.get_next_insight(user_id, category)
    if insight is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No insights available for user {user_id}"
        )
    return insight


@router.post("/insights/{user_id}/{insight_id}/dismiss", response_model=ActionResponse)
async def dismiss_insight(
    user_id: str,
    insight_id: str,
    orchestrator: InsightOrchestrator = Depends(get_orchestrator)
):
    user_id = require_user_id(user_id)
    if not await orchestrator.dismiss_insight(user_id, insight_id):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Insight {insight_id} not found"
        )
    return ActionResponse(success=True, user_id=user_id, insight_id=insight_id)


@router.post("/insights/{user_id}/{insight_id}/shown", response_model=ActionResponse)
async def mark_insight_shown(
    user_id: str,
    insight_id: str,
    category: str = "personal",
    orchestrator: InsightOrchestrator = Depends(get_orchestrator)
):
    user_id = require_user_id(user_id)
    if not await orchestrator.mark_insight_shown(user_id, insight_id, category):
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Insight {insight_id} not found"
        )
    return ActionResponse(success=True, user_id=user_id, insight_id=insight_id)


@router.post("/rules/{user_id}/{rule_id}/feedback", response_model=AssociationRule)
async def record_rule_feedback(
    user_id: str,
    rule_id: str,
    request: RuleFeedbackRequest,
    orchestrator: InsightOrchestrator = Depends(get_orchestrator)
):
    """Confirm or dismiss a mined association rule"""
    user_id = require_user_id(user_id)
    rule = await orchestrator.record_rule_feedback(user_id, rule_id, request.feedback)
    if rule is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Rule {rule_id} not found"
        )
    return rule


@router.post("/entries/{user_id}", response_model=ThreadAssociation)
async def new_entry(
    user_id: str,
    request: NewEntryRequest,
    orchestrator: InsightOrchestrator = Depends(get_orchestrator)
):
    """Attach a new entry to a thread and mark cached insights stale"""
    user_id = require_user_id(user_id)
    return await orchestrator.update_for_new_entry(
        user_id,
        request.entry_id,
        request.text,
        request.sentiment,
        request.proposal,
    )


@router.get("/health", response_model=HealthCheckResponse)
async def health_check():
    """Health check endpoint"""
    if not db.is_initialized:
        db_status = "not_configured"
    else:
        try:
            async with db.connection() as conn:
                async with conn.cursor() as cur:
                    await cur.execute("SELECT 1")
                    await cur.fetchone()
            db_status = "connected"
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            db_status = "disconnected"

    return HealthCheckResponse(
        status="degraded" if db_status == "disconnected" else "healthy",
        database=db_status,
        timestamp=datetime.now(timezone.utc)
    )


@router.get("/metrics")
async def metrics_endpoint():
    """Expose Prometheus metrics"""
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)
