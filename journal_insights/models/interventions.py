"""Intervention effectiveness and recommendation Pydantic models"""
from datetime import date, datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

InterventionKind = Literal["narrative", "environment", "health"]


class InterventionOccurrence(BaseModel):
    """One entry in which an intervention was detected"""
    intervention: str
    kind: InterventionKind
    category: str
    entry_id: str
    entry_date: date
    entry_mood: Optional[float] = None  # 0-1, as stored on the entry


class MetricStats(BaseModel):
    mean: float
    std_dev: float


class InterventionEffectiveness(BaseModel):
    """
    Mood delta is in points (0-100) against the surrounding week's average.
    HRV delta is next-day minus same-day in ms; next-day recovery is the raw score.
    """
    mood_delta: Optional[MetricStats] = None
    hrv_delta: Optional[MetricStats] = None
    next_day_recovery: Optional[MetricStats] = None
    score: float = Field(0.5, ge=0, le=1)
    sample_size: int = 0


class InterventionRecord(BaseModel):
    name: str
    kind: InterventionKind
    category: str
    total_occurrences: int
    effectiveness: InterventionEffectiveness


class InterventionDocument(BaseModel):
    """Persisted per-user intervention effectiveness"""
    interventions: dict[str, InterventionRecord] = Field(default_factory=dict)
    updated_at: Optional[datetime] = None


class ExpectedOutcome(BaseModel):
    description: str
    confidence: float
    timeframe: str = "24-48 hours"


class Recommendation(BaseModel):
    intervention: str
    category: str
    score: float
    reasoning: str
    timing: str
    expected_outcome: ExpectedOutcome
