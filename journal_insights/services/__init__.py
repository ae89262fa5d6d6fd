"""
Service Layer Package

Business logic of the insight engine, separated from the HTTP layer and
from the storage adapters in db/ and cache/.

Engine services:
- Feature extraction, pattern detection, statistical helpers
- BaselineManager: personal and contextual baselines
- StateDetector: life-state classification and history
- ThreadManager: storylines and their metamorphosis
- Association rule, sequence and recovery mining
- Insight dedup, rotation and persistence
- InsightOrchestrator: the single entry point for callers
"""

from journal_insights.services.container import (
    ServiceContainer,
    get_container,
    init_container,
    reset_container,
    set_container,
)
from journal_insights.services.orchestrator import InsightOrchestrator

__all__ = [
    # Service Layer Container
    "ServiceContainer",
    "get_container",
    "init_container",
    "reset_container",
    "set_container",
    # Engine entry point
    "InsightOrchestrator",
]
