"""
Reminder persistence models - recurring reminder definitions and their completion log
"""
from datetime import datetime, timezone as dt_timezone
from sqlalchemy import Column, String, DateTime, Boolean, Integer, Index, ForeignKey, JSON, Text
import uuid

from healthpath.db.base import Base


def _utcnow() -> datetime:
    return datetime.now(dt_timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


class Reminder(Base):
    """A recurring health reminder owned by one user"""
    __tablename__ = "health_reminders"

    id = Column(String(36), primary_key=True, default=_new_id)
    user_id = Column(String, nullable=False, index=True)
    title = Column(String, nullable=False)
    reminder_type = Column(String, nullable=False, default="other")
    notes = Column(Text, nullable=True)
    sound_id = Column(String, nullable=True)

    # Recurrence definition
    frequency = Column(String, nullable=False)
    time = Column(String(5), nullable=False)  # "HH:MM" wall clock in `timezone`
    start_date = Column(DateTime(timezone=True), nullable=False)
    end_date = Column(DateTime(timezone=True), nullable=True)
    days = Column(JSON, nullable=True)  # weekly only, 0 = Sunday
    date = Column("day_of_month", Integer, nullable=True)  # monthly only
    cron_expression = Column(String, nullable=True)  # custom only
    timezone = Column(String, nullable=True)

    # Derived state
    enabled = Column(Boolean, nullable=False, default=True)
    next_due = Column(DateTime(timezone=True), nullable=True, index=True)
    notification_id = Column(String, nullable=True)
    # Handle already handed to the dispatch queue by the scheduler scan
    dispatched_notification_id = Column(String, nullable=True)
    last_completed = Column(DateTime(timezone=True), nullable=True)

    # Provenance of shared copies (informational only)
    shared_from_user_id = Column(String, nullable=True)
    shared_from_reminder_id = Column(String(36), nullable=True)

    # Optimistic concurrency token, bumped on every write
    version = Column(Integer, nullable=False, default=1)

    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_health_reminders_user_created", "user_id", "created_at"),
        Index("ix_health_reminders_enabled_next_due", "enabled", "next_due"),
    )


class ReminderCompletionLog(Base):
    """Append-only log of completions and skips"""
    __tablename__ = "reminder_completion_logs"

    id = Column(String(36), primary_key=True, default=_new_id)
    reminder_id = Column(
        String(36),
        ForeignKey("health_reminders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id = Column(String, nullable=False, index=True)
    timestamp = Column(DateTime(timezone=True), nullable=False)
    completed = Column(Boolean, nullable=False, default=True)
    notes = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_reminder_completion_logs_reminder_ts", "reminder_id", "timestamp"),
    )
