"""Pattern mining Pydantic models (association rules, sequences, recovery)"""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

ValidationState = Literal["confirmed", "pending_validation", "hidden", "dismissed"]
RuleFeedback = Literal["confirmed", "dismissed"]


class AssociationRule(BaseModel):
    """A frequent itemset and the mood effect of its co-occurrence"""
    id: str
    antecedent: list[str]
    consequent: Literal["mood_boost", "mood_drop"]
    support: float
    # |moodDelta|, not a conditional probability
    confidence: float
    mood_delta: float
    avg_mood: float
    baseline_mood: float
    count: int
    total_entries: int
    explanation: str
    detailed_explanation: str
    validation_state: ValidationState
    user_feedback: Optional[RuleFeedback] = None
    feedback_at: Optional[datetime] = None


class SequenceExample(BaseModel):
    """One observed decline sequence inside a cluster"""
    start_date: datetime
    end_date: datetime
    mood_drop: float
    topics: list[str] = Field(default_factory=list)


class SequenceCluster(BaseModel):
    """Recurring set of topics that precedes mood drops"""
    id: str
    pattern: list[str]
    occurrences: int
    avg_mood_drop: float
    avg_days_to_decline: float
    confidence: float
    validation_state: ValidationState
    explanation: str
    examples: list[SequenceExample] = Field(default_factory=list)


class MoodEvent(BaseModel):
    """A local mood extremum"""
    entry_id: str
    date: datetime
    mood: float
    kind: Literal["low", "high"]
    magnitude: float


class RecoveryFactor(BaseModel):
    factor: str
    count: int
    frequency: float


class RecoveryEpisode(BaseModel):
    """A low-mood period and what followed it"""
    low_start: datetime
    low_end: datetime
    low_mood: float
    recovery_entries: int
    recovery_days: Optional[float] = None
    recovered: bool
    peak_mood: Optional[float] = None
    factors: list[str] = Field(default_factory=list)


class RecoverySignature(BaseModel):
    """Aggregated "what helps you recover" profile"""
    total_recoveries: int
    avg_recovery_days: Optional[float] = None
    common_factors: list[RecoveryFactor] = Field(default_factory=list)
    narrative: str
    insight: str
    validation_state: ValidationState
    episodes: list[RecoveryEpisode] = Field(default_factory=list)


class RuleDocument(BaseModel):
    """Persisted mined rules and their feedback"""
    rules: list[AssociationRule] = Field(default_factory=list)
    sequences: list[SequenceCluster] = Field(default_factory=list)
    recovery: Optional[RecoverySignature] = None
    mined_at: Optional[datetime] = None
