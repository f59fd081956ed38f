'''
Session models, including the weekly recurrence rule used for series.
'''
from datetime import datetime, date, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import Field, field_validator

from ..database.db_enums import SessionStatusEnum, SessionTypeEnum
from .common import CamelModel, Money

MAX_DURATION_MIN = 24 * 60


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes from clients are taken to be UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)

# --- 1. API Input Models ---

class SessionCreate(CamelModel):
    class_id: Optional[UUID] = None
    start_time: datetime
    duration_min: int = Field(..., ge=1, le=MAX_DURATION_MIN)
    notes: Optional[str] = Field(None, max_length=2000)
    fee_per_session: Optional[Decimal] = Field(None, ge=0)

    @field_validator("start_time")
    @classmethod
    def _normalize_start(cls, value: datetime) -> datetime:
        return _as_utc(value)

class SessionUpdate(CamelModel):
    """Partial update; only the fields present in the body are applied."""
    start_time: Optional[datetime] = None
    duration_min: Optional[int] = Field(None, ge=1, le=MAX_DURATION_MIN)
    notes: Optional[str] = Field(None, max_length=2000)
    fee_per_session: Optional[Decimal] = Field(None, ge=0)

    @field_validator("start_time")
    @classmethod
    def _normalize_start(cls, value: Optional[datetime]) -> Optional[datetime]:
        return _as_utc(value) if value is not None else None

class RecurrenceRule(CamelModel):
    """
    Weekly recurrence. Days of week use 0 = Sunday ... 6 = Saturday and
    `time` is a wall-clock HH:MM in `timezone`.
    """
    days_of_week: list[int] = Field(..., min_length=1, max_length=7)
    time: str = Field(..., pattern=r"^([01]\d|2[0-3]):[0-5]\d$")
    start_date: date
    end_date: Optional[date] = None
    max_occurrences: Optional[int] = Field(None, ge=1)
    timezone: str = "UTC"
    exclusion_dates: list[date] = Field(default_factory=list)

    @field_validator("days_of_week")
    @classmethod
    def _check_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 6 for day in value):
            raise ValueError("daysOfWeek entries must be between 0 (Sunday) and 6 (Saturday)")
        return sorted(set(value))

class SessionSeriesCreate(CamelModel):
    class_id: Optional[UUID] = None
    recurrence: RecurrenceRule
    duration_min: int = Field(..., ge=1, le=MAX_DURATION_MIN)
    fee_per_session: Optional[Decimal] = Field(None, ge=0)
    notes: Optional[str] = Field(None, max_length=2000)

class PrivateSessionCreate(CamelModel):
    """An ad-hoc session for an explicit list of students, not tied to a class."""
    student_ids: list[UUID] = Field(..., min_length=1)
    start_time: datetime
    duration_min: int = Field(..., ge=1, le=MAX_DURATION_MIN)
    notes: Optional[str] = Field(None, max_length=2000)
    fee_per_session: Optional[Decimal] = Field(None, ge=0)

    @field_validator("start_time")
    @classmethod
    def _normalize_start(cls, value: datetime) -> datetime:
        return _as_utc(value)

    @field_validator("student_ids")
    @classmethod
    def _dedupe(cls, value: list[UUID]) -> list[UUID]:
        return list(dict.fromkeys(value))

class SessionUnlock(CamelModel):
    reason: str = Field(..., min_length=3, max_length=2000)

    @field_validator("reason")
    @classmethod
    def _strip(cls, value: str) -> str:
        value = value.strip()
        if len(value) < 3:
            raise ValueError("reason must be at least 3 characters")
        return value

# --- 2. API Output Models ---

class SessionRead(CamelModel):
    id: UUID
    class_id: Optional[UUID] = None
    class_name: Optional[str] = None
    teacher_id: UUID
    start_time: datetime
    duration_min: int
    status: SessionStatusEnum
    notes: Optional[str] = None
    fee_per_session: Optional[Money] = None
    type: SessionTypeEnum
    series_id: Optional[UUID] = None
    created_at: datetime

class SessionSeriesRead(CamelModel):
    series_id: UUID
    total_sessions: int
    sessions: list[SessionRead]
