"""
Schemas for recurring reminders, completions and mutation results
"""
from datetime import datetime
from typing import List, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from croniter import croniter

from healthpath.utils.timezone import to_utc_aware
from .recurrence_models import (
    RecurrenceType,
    ReminderKind,
    ReminderStatus,
    TIME_OF_DAY_PATTERN,
)


def _normalize_days(days: Optional[List[int]]) -> Optional[List[int]]:
    if days is None:
        return None
    for day in days:
        if not 0 <= day <= 6:
            raise ValueError("days must be weekday numbers 0-6 (0 = Sunday)")
    return sorted(set(days))


def _check_timezone(name: Optional[str]) -> Optional[str]:
    if name is None:
        return None
    if name.upper() in ("UTC", "Z", "ETC/UTC"):
        return name
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"unknown timezone: {name}")
    return name


def _check_cron(expr: Optional[str]) -> Optional[str]:
    if expr is None:
        return None
    if not croniter.is_valid(expr):
        raise ValueError(f"invalid cron expression: {expr}")
    return expr


class ReminderCreate(BaseModel):
    """Schema for creating a recurring reminder"""
    title: str = Field(..., min_length=1, max_length=200)
    reminder_type: ReminderKind = ReminderKind.OTHER
    frequency: RecurrenceType
    time: str = Field(..., pattern=TIME_OF_DAY_PATTERN.pattern, description="Wall-clock time HH:MM")
    start_date: datetime
    end_date: Optional[datetime] = None
    days: Optional[List[int]] = Field(default=None, description="Weekly only, 0 = Sunday")
    date: Optional[int] = Field(default=None, ge=1, le=31, description="Monthly only, day of month")
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None
    notes: Optional[str] = None
    sound_id: Optional[str] = None
    enabled: bool = True

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("start_date", "end_date")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc_aware(v)

    @field_validator("days")
    @classmethod
    def valid_days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        return _normalize_days(v)

    @field_validator("timezone")
    @classmethod
    def valid_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _check_timezone(v)

    @field_validator("cron_expression")
    @classmethod
    def valid_cron(cls, v: Optional[str]) -> Optional[str]:
        return _check_cron(v)

    @model_validator(mode="after")
    def end_after_start(self) -> "ReminderCreate":
        if self.end_date is not None and self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self


class ReminderUpdate(BaseModel):
    """Partial update; only fields explicitly sent are applied"""
    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    reminder_type: Optional[ReminderKind] = None
    frequency: Optional[RecurrenceType] = None
    time: Optional[str] = Field(default=None, pattern=TIME_OF_DAY_PATTERN.pattern)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    days: Optional[List[int]] = None
    date: Optional[int] = Field(default=None, ge=1, le=31)
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None
    notes: Optional[str] = None
    sound_id: Optional[str] = None
    enabled: Optional[bool] = None

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if not v:
            raise ValueError("title must not be empty")
        return v

    @field_validator("start_date", "end_date")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc_aware(v)

    @field_validator("days")
    @classmethod
    def valid_days(cls, v: Optional[List[int]]) -> Optional[List[int]]:
        return _normalize_days(v)

    @field_validator("timezone")
    @classmethod
    def valid_timezone(cls, v: Optional[str]) -> Optional[str]:
        return _check_timezone(v)

    @field_validator("cron_expression")
    @classmethod
    def valid_cron(cls, v: Optional[str]) -> Optional[str]:
        return _check_cron(v)


class ReminderRead(BaseModel):
    """A persisted reminder as handed out by the store"""
    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    title: str
    reminder_type: ReminderKind
    frequency: RecurrenceType
    time: str
    start_date: datetime
    end_date: Optional[datetime] = None
    days: Optional[List[int]] = None
    date: Optional[int] = None
    cron_expression: Optional[str] = None
    timezone: Optional[str] = None
    notes: Optional[str] = None
    sound_id: Optional[str] = None
    enabled: bool
    next_due: Optional[datetime] = None
    notification_id: Optional[str] = None
    last_completed: Optional[datetime] = None
    shared_from_user_id: Optional[str] = None
    shared_from_reminder_id: Optional[str] = None
    version: int
    created_at: datetime
    updated_at: datetime

    @field_validator(
        "start_date", "end_date", "next_due", "last_completed", "created_at", "updated_at"
    )
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        # SQLite hands back naive datetimes
        return to_utc_aware(v)


class UpcomingReminder(ReminderRead):
    status: ReminderStatus
    frequency_label: str


class CompletionCreate(BaseModel):
    """Schema for logging a completion (or a skip when completed is False)"""
    timestamp: Optional[datetime] = None
    completed: bool = True
    notes: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def to_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc_aware(v)


class ReminderCompletionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    reminder_id: str
    user_id: str
    timestamp: datetime
    completed: bool
    notes: Optional[str] = None

    @field_validator("timestamp")
    @classmethod
    def to_utc(cls, v: datetime) -> datetime:
        return to_utc_aware(v)


class ShareRequest(BaseModel):
    target_user_id: str = Field(..., min_length=1)


class NotificationOutcomeRead(BaseModel):
    status: str
    handle: Optional[str] = None
    reason: Optional[str] = None


class MutationResponse(BaseModel):
    reminder: ReminderRead
    notification: NotificationOutcomeRead


class ResyncResponse(BaseModel):
    user_id: str
    reminders: int
    rescheduled: int
    degraded: int
