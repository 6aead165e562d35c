"""Pydantic schemas shared across the analysis layer."""
from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from .errors import AnalysisErrorKind, FailureKind


class AnalysisKind(str, Enum):
    SLEEP_PATTERN = "sleep_pattern"
    FEEDING_PATTERN = "feeding_pattern"
    GROWTH_TREND = "growth_trend"
    DAILY_SUMMARY = "daily_summary"
    COMPREHENSIVE = "comprehensive"


ANALYSIS_KIND_DESCRIPTIONS = {
    AnalysisKind.SLEEP_PATTERN: "Sleep duration, regularity and interruptions",
    AnalysisKind.FEEDING_PATTERN: "Feeding frequency, spacing and amounts",
    AnalysisKind.GROWTH_TREND: "Weight, height and head circumference over time",
    AnalysisKind.DAILY_SUMMARY: "One-day overview across every record type",
    AnalysisKind.COMPREHENSIVE: "Routine analysis across every record type",
}


class AnalysisSource(str, Enum):
    CLOUD = "cloud"
    LOCAL = "local"


class BabyProfile(BaseModel):
    id: str
    name: str = ""
    birth_date: Optional[date] = None
    gender: Optional[str] = None
    photo_url: Optional[str] = Field(default=None, description="Local or remote avatar reference")


class SleepRecord(BaseModel):
    id: str
    baby_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    quality: Optional[int] = Field(default=None, ge=0, le=10)
    environment_factors: Dict[str, Any] = Field(
        default_factory=dict,
        description="light | noise | temperature | location readings",
    )
    interruptions: List[Dict[str, Any]] = Field(default_factory=list)
    notes: Optional[str] = None

    @property
    def duration_minutes(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return max(0.0, (self.end_time - self.start_time).total_seconds() / 60)


class FeedingRecord(BaseModel):
    id: str
    baby_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    feeding_type: str = Field(default="bottle", description="breast | bottle | formula | solid")
    amount: Optional[float] = None
    unit: Optional[str] = Field(default=None, description="ml | oz | g")
    notes: Optional[str] = None


class ActivityRecord(BaseModel):
    id: str
    baby_id: str
    start_time: datetime
    end_time: Optional[datetime] = None
    activity_type: str = Field(default="other", description="diaper | bath | tummy_time | play | other")
    notes: Optional[str] = None
    photo_url: Optional[str] = None


class GrowthRecord(BaseModel):
    id: str
    baby_id: str
    measured_at: datetime
    height_cm: Optional[float] = None
    weight_kg: Optional[float] = None
    head_circumference_cm: Optional[float] = None
    notes: Optional[str] = None


_KIND_SECTIONS = {
    AnalysisKind.SLEEP_PATTERN: ("sleep",),
    AnalysisKind.FEEDING_PATTERN: ("feeding",),
    AnalysisKind.GROWTH_TREND: ("growth",),
    AnalysisKind.DAILY_SUMMARY: ("sleep", "feeding", "activities", "growth"),
    AnalysisKind.COMPREHENSIVE: ("sleep", "feeding", "activities", "growth"),
}


class RecordBundle(BaseModel):
    """Raw domain records handed over by the record repositories."""

    baby: Optional[BabyProfile] = None
    sleep: List[SleepRecord] = Field(default_factory=list)
    feeding: List[FeedingRecord] = Field(default_factory=list)
    activities: List[ActivityRecord] = Field(default_factory=list)
    growth: List[GrowthRecord] = Field(default_factory=list)

    def for_kind(self, kind: AnalysisKind) -> "RecordBundle":
        sections = _KIND_SECTIONS[kind]
        return RecordBundle(
            baby=self.baby,
            **{name: list(getattr(self, name)) for name in sections},
        )

    def record_count(self) -> int:
        return len(self.sleep) + len(self.feeding) + len(self.activities) + len(self.growth)

    def is_empty(self) -> bool:
        return self.record_count() == 0

    @property
    def subject_id(self) -> Optional[str]:
        if self.baby is not None:
            return self.baby.id
        for section in (self.sleep, self.feeding, self.activities, self.growth):
            if section:
                return section[0].baby_id
        return None


class AnalysisRequest(BaseModel):
    kind: AnalysisKind
    subject_id: Optional[str] = None
    anonymize: bool = True
    payload: Dict[str, Any] = Field(default_factory=dict)


def _utcnow() -> datetime:
    return datetime.now(tz=timezone.utc)


class AnalysisResult(BaseModel):
    text: str
    source: AnalysisSource
    kind: Optional[AnalysisKind] = None
    created_at: datetime = Field(default_factory=_utcnow)


class AnalysisOutcome(BaseModel):
    """Result-or-error channel returned to UI callers."""

    result: Optional[AnalysisResult] = None
    error: Optional[AnalysisErrorKind] = None
    fallback_reason: Optional[FailureKind] = Field(
        default=None,
        description="Why the cloud path was skipped, when the result came from the fallback",
    )

    @property
    def ok(self) -> bool:
        return self.result is not None


class QuotaWindowKind(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"


class QuotaWindow(BaseModel):
    window_kind: QuotaWindowKind
    count: int = Field(default=0, ge=0)
    window_start: datetime


class QuotaStatus(BaseModel):
    hourly_used: int
    daily_used: int
    hourly_remaining: int
    daily_remaining: int
    next_allowed_at: Optional[datetime] = None


class CacheStats(BaseModel):
    entries: int
    valid_entries: int


class AnalysisSettings(BaseModel):
    cloud_ai_enabled: bool
    data_anonymization_enabled: bool
    cloud_only_on_wifi: bool


class AnalysisSettingsPayload(BaseModel):
    cloud_ai_enabled: Optional[bool] = None
    data_anonymization_enabled: Optional[bool] = None
    cloud_only_on_wifi: Optional[bool] = None
