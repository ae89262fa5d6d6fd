"""Insight Pydantic models"""
import hashlib
import re
from datetime import datetime, timezone
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from journal_insights.models.entry import ensure_utc


# Priority tiers (lower surfaces first)
PRIORITY_CALIBRATION = 0
PRIORITY_SYNTHESIS = 1
PRIORITY_PATTERN = 2
PRIORITY_CORRELATIONAL = 3


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def stable_insight_id(insight_type: str, *parts: str) -> str:
    """
    Deterministic id for an insight so regenerating the same finding
    merges into history instead of duplicating it
    """
    normalized = "|".join(re.sub(r"\s+", " ", str(p).strip().lower()) for p in parts)
    digest = hashlib.sha1(f"{insight_type}|{normalized}".encode("utf-8")).hexdigest()[:16]
    return f"{insight_type}_{digest}"


class Insight(BaseModel):
    """A user-facing insight produced by one of the engine's producers"""
    id: str
    type: str  # calibration, synthesis, pattern_alert, association_rule, sequence, recovery, baseline_deviation, recommendation...
    title: str
    summary: str = ""
    body: str = ""
    evidence: list[str] = Field(default_factory=list)
    recommendation: Optional[str] = None
    priority: int = Field(PRIORITY_PATTERN, ge=0, le=3)
    confidence: Optional[float] = None
    entity: Optional[str] = None  # person/activity/thread the insight is about
    mood_delta_percent: Optional[float] = None
    entry_count: Optional[int] = None
    last_mentioned: Optional[datetime] = None
    source: str = "engine"
    generated_at: datetime = Field(default_factory=utc_now)
    last_seen: datetime = Field(default_factory=utc_now)
    dismissed: bool = False

    @field_validator("generated_at", "last_seen", "last_mentioned")
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)


class InsightDocument(BaseModel):
    """Per-user persisted insight state"""
    active: list[Insight] = Field(default_factory=list)
    history: list[Insight] = Field(default_factory=list)
    generated_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    stale: bool = False
    stale_reason: Optional[str] = None
    stale_at: Optional[datetime] = None


class DataStatus(BaseModel):
    """How much data the generation pass had to work with"""
    entries: int = 0
    threads: int = 0
    biometric_days: int = 0
    connected: bool = False
    has_baselines: bool = False
    is_calibrating: bool = False


class GenerationResult(BaseModel):
    """Result of one insight generation pass"""
    success: bool
    insights: list[Insight] = Field(default_factory=list)
    data_status: DataStatus = Field(default_factory=DataStatus)
    generated_at: datetime = Field(default_factory=utc_now)
    errors: list[str] = Field(default_factory=list)


class CachedInsights(BaseModel):
    """What the consumer sees when reading cached insights"""
    active: list[Insight] = Field(default_factory=list)
    history: list[Insight] = Field(default_factory=list)
    stale: bool = False
    expires_at: Optional[datetime] = None
    generated_at: Optional[datetime] = None


class ReassessmentResult(BaseModel):
    """Outcome of a full reassessment pass after a data backfill"""
    completed_steps: list[str] = Field(default_factory=list)
    cancelled: bool = False
    baselines_recalculated: bool = False
    patterns_detected: int = 0
    rules_mined: int = 0
    generation: Optional[GenerationResult] = None
    started_at: datetime = Field(default_factory=utc_now)
    completed_at: Optional[datetime] = None


class FeatureToggle(BaseModel):
    enabled: bool = True


class EngineSettings(BaseModel):
    """Per-user switches for optional producers"""
    synthesis: FeatureToggle = Field(default_factory=FeatureToggle)
    meta_patterns: FeatureToggle = Field(default_factory=FeatureToggle)
    association_rules: FeatureToggle = Field(default_factory=FeatureToggle)
    sequence_mining: FeatureToggle = Field(default_factory=FeatureToggle)
    recommendations: FeatureToggle = Field(default_factory=FeatureToggle)
