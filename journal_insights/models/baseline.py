"""Personal baseline Pydantic models"""
from datetime import datetime
from typing import Literal, Optional
from pydantic import BaseModel, Field

BaselineStatus = Literal[
    "significantly_elevated", "elevated", "normal", "depressed", "significantly_depressed"
]


class Percentiles(BaseModel):
    p25: float
    p50: float
    p75: float


class MetricStats(BaseModel):
    """Descriptive statistics for one metric"""
    mean: float
    std_dev: float
    min: float
    max: float
    percentiles: Percentiles
    trend: float  # change per day
    sample_size: int


class ContextBaseline(BaseModel):
    """Metric stats for one slice (state:X, entity:X, activity:X, day:X)"""
    scope: str
    sample_days: int
    metrics: dict[str, Optional[MetricStats]] = Field(default_factory=dict)
    next_day_metrics: dict[str, Optional[MetricStats]] = Field(default_factory=dict)


class BaselineDocument(BaseModel):
    calculated_at: datetime
    data_window_days: int
    entry_count: int
    biometric_days: int = 0
    global_metrics: dict[str, Optional[MetricStats]] = Field(default_factory=dict)
    contextual: dict[str, ContextBaseline] = Field(default_factory=dict)
    correlations: dict[str, float] = Field(default_factory=dict)


class BaselineComparison(BaseModel):
    metric: str
    current: float
    baseline_mean: float
    z_score: float
    status: BaselineStatus
    percent_difference: float
    interpretation: str
