"""Pydantic models for journal-insights"""
from journal_insights.models.entry import Entry, HealthSnapshot, EnvironmentSnapshot, BiometricDay
from journal_insights.models.insight import (
    Insight,
    InsightDocument,
    DataStatus,
    GenerationResult,
    CachedInsights,
    ReassessmentResult,
    EngineSettings,
)

__all__ = [
    "Entry",
    "HealthSnapshot",
    "EnvironmentSnapshot",
    "BiometricDay",
    "Insight",
    "InsightDocument",
    "DataStatus",
    "GenerationResult",
    "CachedInsights",
    "ReassessmentResult",
    "EngineSettings",
]
