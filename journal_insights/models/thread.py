"""Narrative thread Pydantic models"""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

ThreadCategory = Literal[
    "career", "health", "relationship", "growth", "somatic",
    "financial", "housing", "creative", "social"
]
ThreadStatus = Literal["active", "evolved", "resolved"]
Trajectory = Literal["stable", "improving", "declining", "volatile"]

THREAD_CATEGORIES: tuple[str, ...] = (
    "career", "health", "relationship", "growth", "somatic",
    "financial", "housing", "creative", "social"
)


class ArcPoint(BaseModel):
    """One point on a thread's emotional arc"""
    date: datetime
    sentiment: float
    event: str
    entry_id: Optional[str] = None


class Thread(BaseModel):
    """A long-running storyline tracked across entries"""
    id: str
    display_name: str
    category: ThreadCategory = "growth"
    status: ThreadStatus = "active"

    # Lineage edges (resolved through ThreadArena)
    root_thread_id: str
    predecessor_id: Optional[str] = None
    successor_id: Optional[str] = None
    evolution_type: Optional[str] = None  # pivot, continuation, resolution
    evolution_context: Optional[str] = None

    sentiment_baseline: float = 0.5
    sentiment_history: list[float] = Field(default_factory=list)
    trajectory: Trajectory = "stable"
    emotional_arc: list[ArcPoint] = Field(default_factory=list)

    somatic_signals: list[str] = Field(default_factory=list)
    somatic_frequency: dict[str, int] = Field(default_factory=dict)

    entry_ids: list[str] = Field(default_factory=list)
    entry_count: int = 0
    embedding: Optional[list[float]] = None

    resolution: Optional[str] = None
    created_at: datetime
    last_updated: datetime
    last_entry_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None


class ThreadProposal(BaseModel):
    """Classification of an entry from the external classifier or local heuristics"""
    action: Literal["continue", "metamorphosis", "new"] = "new"
    existing_thread_name: Optional[str] = None
    proposed_name: Optional[str] = None
    category: str = "growth"
    predecessor_name: Optional[str] = None
    evolution_type: Optional[str] = None
    evolution_context: Optional[str] = None
    somatic_signals: list[str] = Field(default_factory=list)
    sentiment: Optional[float] = None
    confidence: Optional[float] = None
    arc_event: Optional[str] = None


class ThreadAssociation(BaseModel):
    """Outcome of associating an entry with a thread"""
    success: bool
    action: Optional[str] = None  # appended, metamorphosis, deduplicated, created, fallback
    thread_id: Optional[str] = None
    thread_name: Optional[str] = None
    predecessor_id: Optional[str] = None
    somatic_signals: list[str] = Field(default_factory=list)
    confidence: Optional[float] = None
    evolution_candidates: list[str] = Field(default_factory=list)  # thread ids
    error: Optional[str] = None
