"""Life state Pydantic models"""
from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class StateScore(BaseModel):
    state_id: str
    name: str
    confidence: float


class StateDetection(BaseModel):
    """Result of scoring the life-state catalog"""
    primary: str
    secondary: list[str] = Field(default_factory=list)
    confidence: float
    all_detected: list[StateScore] = Field(default_factory=list)


class CurrentState(BaseModel):
    primary: str
    secondary: list[str] = Field(default_factory=list)
    confidence: float
    started_at: datetime
    duration_days: int = 0
    all_detected: list[StateScore] = Field(default_factory=list)


class StateHistoryItem(BaseModel):
    state: str
    started_at: datetime
    ended_at: datetime
    duration_days: int
    outcome: str  # the state that replaced it


class StateDocument(BaseModel):
    current: Optional[CurrentState] = None
    history: list[StateHistoryItem] = Field(default_factory=list)
    updated_at: Optional[datetime] = None
