"""Journal entry and biometric Pydantic models"""
from datetime import date, datetime, timedelta, timezone
from typing import Optional
from pydantic import BaseModel, Field, field_validator, model_validator


def clamp_unit(value: Optional[float]) -> Optional[float]:
    """Clamp a score into [0, 1], passing None through"""
    if value is None:
        return None
    return max(0.0, min(1.0, float(value)))


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Treat naive datetimes as UTC so comparisons never mix naive and aware"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class HealthSnapshot(BaseModel):
    """Wearable/health readings attached to an entry"""
    sleep_hours: Optional[float] = Field(None, ge=0, le=24)
    sleep_quality: Optional[str] = None  # poor, fair, good, excellent
    has_workout: Optional[bool] = None
    resting_heart_rate: Optional[float] = None
    hrv: Optional[float] = None
    recovery_score: Optional[float] = None  # 0-100
    strain: Optional[float] = None
    stress_indicator: Optional[str] = None  # low, moderate, high
    steps: Optional[int] = None


class EnvironmentSnapshot(BaseModel):
    """Environmental readings attached to an entry"""
    weather: Optional[str] = None  # sunny, cloudy, rain, snow...
    temperature: Optional[float] = None
    is_low_sunshine: Optional[bool] = None
    daylight_hours: Optional[float] = None


class Entry(BaseModel):
    """A single journal entry"""
    id: str
    user_id: Optional[str] = None
    text: str = ""
    created_at: datetime
    effective_at: Optional[datetime] = None  # backdated entries
    # Writer's UTC offset; timestamps are stored in UTC so local hour and date need it
    utc_offset_minutes: Optional[int] = Field(None, ge=-14 * 60, le=14 * 60)
    mood_score: Optional[float] = None
    entry_type: Optional[str] = None  # reflection, vent, task, mixed...
    category: str = "personal"  # personal, work
    health: Optional[HealthSnapshot] = None
    environment: Optional[EnvironmentSnapshot] = None
    tags: list[str] = Field(default_factory=list)

    @field_validator("mood_score")
    @classmethod
    def clamp_mood(cls, v: Optional[float]) -> Optional[float]:
        return clamp_unit(v)

    @field_validator("created_at", "effective_at")
    @classmethod
    def normalize_timestamp(cls, v: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(v)

    @model_validator(mode="after")
    def capture_utc_offset(self) -> "Entry":
        if self.utc_offset_minutes is None:
            offset = self.effective_date.utcoffset()
            if offset:
                self.utc_offset_minutes = int(offset.total_seconds() // 60)
        return self

    @property
    def effective_date(self) -> datetime:
        """Timestamp the entry is about (backdated date wins over creation time)"""
        return self.effective_at or self.created_at

    @property
    def local_time(self) -> datetime:
        """effective_date on the writer's own clock (UTC when the offset is unknown)"""
        if self.utc_offset_minutes is None:
            return self.effective_date
        return self.effective_date.astimezone(timezone(timedelta(minutes=self.utc_offset_minutes)))

    @property
    def has_mood(self) -> bool:
        return self.mood_score is not None


class BiometricDay(BaseModel):
    """One day of wearable data"""
    date: date
    resting_heart_rate: Optional[float] = None
    hrv: Optional[float] = None
    strain: Optional[float] = None
    recovery_score: Optional[float] = None
    sleep_hours: Optional[float] = None
