"""Pydantic models for API request/response validation"""
from typing import Optional
from pydantic import BaseModel, Field
from datetime import datetime

from journal_insights.models.insight import Insight
from journal_insights.models.patterns import RuleFeedback
from journal_insights.models.thread import ThreadProposal


class InsightsResponse(BaseModel):
    """Cached insights for a user"""
    user_id: str
    active: list[Insight] = Field(default_factory=list)
    history: list[Insight] = Field(default_factory=list)
    stale: bool = False
    generated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None


class ActionResponse(BaseModel):
    """Result of a dismiss / shown action"""
    success: bool
    user_id: str
    insight_id: str


class RuleFeedbackRequest(BaseModel):
    """User verdict on a mined association rule"""
    feedback: RuleFeedback = Field(..., description="confirmed or dismissed")


class NewEntryRequest(BaseModel):
    """A freshly written entry to attach to a thread"""
    entry_id: str = Field(..., description="Entry identifier")
    text: str = Field(..., description="Entry text")
    sentiment: Optional[float] = Field(None, ge=0, le=1, description="Entry sentiment in [0, 1]")
    proposal: Optional[ThreadProposal] = Field(
        default=None,
        description="Thread classification from the upstream classifier"
    )


class HealthCheckResponse(BaseModel):
    """Health check response"""
    status: str = Field(..., description="Service status")
    database: str = Field(..., description="Database connection status")
    timestamp: datetime = Field(..., description="Check timestamp")


class ErrorResponse(BaseModel):
    """Error response model"""
    error: str = Field(..., description="Error message")
    detail: Optional[str] = Field(None, description="Detailed error information")
    timestamp: datetime = Field(default_factory=datetime.now)
