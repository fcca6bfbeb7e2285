"""
Recurring reminder models and next-due calculation
"""
from datetime import datetime, timedelta, tzinfo
from typing import Optional, List, Dict, Any, Tuple
from enum import Enum
from dataclasses import dataclass, field
import calendar
import logging
import re

from croniter import croniter

from healthpath.utils.timezone import get_zoneinfo, to_local, to_utc_aware

logger = logging.getLogger(__name__)

TIME_OF_DAY_PATTERN = re.compile(r"^([01]?\d|2[0-3]):([0-5]\d)$")


class RecurrenceType(str, Enum):
    """Types of recurrence patterns"""
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    CUSTOM = "custom"


class ReminderKind(str, Enum):
    """What the reminder is about. Classification only, recurrence ignores it."""
    PILL = "pill"
    PATCH = "patch"
    RING = "ring"
    INJECTION = "injection"
    APPOINTMENT = "appointment"
    OTHER = "other"


class ReminderStatus(str, Enum):
    NOT_SCHEDULED = "not_scheduled"
    OVERDUE = "overdue"
    DUE_TODAY = "due_today"
    UPCOMING = "upcoming"


FREQUENCY_LABELS = {
    RecurrenceType.DAILY: "Every day",
    RecurrenceType.WEEKLY: "Every week",
    RecurrenceType.MONTHLY: "Every month",
    RecurrenceType.QUARTERLY: "Every 3 months",
    RecurrenceType.CUSTOM: "Custom schedule",
}

# Frequencies whose step never moves the weekday of a weekly cycle; custom
# rules without a cron expression step daily
WEEK_ALIGNED_FREQUENCIES = frozenset({
    RecurrenceType.DAILY,
    RecurrenceType.WEEKLY,
    RecurrenceType.CUSTOM,
})

MAX_CATCH_UP_STEPS = 1000


def parse_time_of_day(value: Optional[str]) -> Optional[Tuple[int, int]]:
    """Parse "HH:MM" into (hour, minute); None when absent or malformed."""
    if not value or not isinstance(value, str):
        return None
    match = TIME_OF_DAY_PATTERN.match(value.strip())
    if not match:
        return None
    return int(match.group(1)), int(match.group(2))


@dataclass
class RecurrenceRule:
    """The recurrence-relevant part of a reminder.

    ``days`` uses 0 = Sunday .. 6 = Saturday. ``date`` is a day of month (1-31).
    Invalid entries are tolerated here and ignored by the calculator.
    """
    frequency: RecurrenceType
    time: Optional[str] = None
    days: List[int] = field(default_factory=list)
    date: Optional[int] = None
    end_date: Optional[datetime] = None
    timezone: Optional[str] = None
    cron_expression: Optional[str] = None

    def __post_init__(self):
        if not isinstance(self.frequency, RecurrenceType):
            try:
                self.frequency = RecurrenceType(self.frequency)
            except ValueError:
                logger.warning(f"⚠️ [Recurrence] Unknown frequency {self.frequency!r}, treating as daily")
                self.frequency = RecurrenceType.DAILY
        self.days = list(self.days or [])

    @property
    def weekdays(self) -> List[int]:
        """Valid, unique weekday indices in ascending order."""
        valid = set()
        for day in self.days:
            if isinstance(day, int) and not isinstance(day, bool) and 0 <= day <= 6:
                valid.add(day)
        return sorted(valid)

    @property
    def day_of_month(self) -> Optional[int]:
        if isinstance(self.date, int) and not isinstance(self.date, bool) and 1 <= self.date <= 31:
            return self.date
        return None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "frequency": self.frequency.value,
            "time": self.time,
            "days": list(self.days),
            "date": self.date,
            "end_date": self.end_date.isoformat() if self.end_date else None,
            "timezone": self.timezone,
            "cron_expression": self.cron_expression,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RecurrenceRule":
        end_date = data.get("end_date")
        if isinstance(end_date, str):
            end_date = datetime.fromisoformat(end_date.replace("Z", "+00:00"))
        return cls(
            frequency=data.get("frequency", RecurrenceType.DAILY),
            time=data.get("time"),
            days=data.get("days") or [],
            date=data.get("date"),
            end_date=end_date,
            timezone=data.get("timezone"),
            cron_expression=data.get("cron_expression"),
        )

    @classmethod
    def from_reminder(cls, reminder: Any) -> "RecurrenceRule":
        """Build a rule from any reminder-shaped object (ORM row or schema)."""
        return cls(
            frequency=getattr(reminder, "frequency", RecurrenceType.DAILY),
            time=getattr(reminder, "time", None),
            days=getattr(reminder, "days", None) or [],
            date=getattr(reminder, "date", None),
            end_date=getattr(reminder, "end_date", None),
            timezone=getattr(reminder, "timezone", None),
            cron_expression=getattr(reminder, "cron_expression", None),
        )


class RecurrenceCalculator:
    """Calculates the next due instant for a recurrence rule.

    Pure and deterministic: the result depends only on the rule, the anchor and
    ``now``. Wall-clock arithmetic happens in the rule's timezone and every
    returned datetime is UTC-aware.
    """

    @staticmethod
    def compute_next_due(
        rule: RecurrenceRule,
        anchor: datetime,
        now: datetime,
    ) -> Optional[datetime]:
        """Next occurrence strictly after ``now``, stepping from ``anchor``.

        A stale anchor keeps stepping by the rule until it passes ``now``, so
        weekday and day-of-month constraints survive the catch-up.

        Returns None only when the occurrence would fall after ``rule.end_date``.
        """
        tz = get_zoneinfo(rule.timezone)
        now = to_utc_aware(now)
        local_anchor = to_local(anchor, tz)
        time_of_day = parse_time_of_day(rule.time)

        candidate = None
        if rule.frequency == RecurrenceType.CUSTOM and rule.cron_expression:
            candidate = RecurrenceCalculator._calculate_cron_next(rule, local_anchor, now, tz)

        if candidate is None:
            stepped = RecurrenceCalculator._step(rule, local_anchor)
            candidate = RecurrenceCalculator._apply_time(stepped, time_of_day)
            candidate = RecurrenceCalculator._ensure_future(rule, candidate, time_of_day, now, tz)

        return RecurrenceCalculator._within_end_date(rule, to_utc_aware(candidate))

    @staticmethod
    def first_occurrence(
        rule: RecurrenceRule,
        start_date: datetime,
        now: datetime,
    ) -> Optional[datetime]:
        """First occurrence of a reminder that has never been completed.

        The start date itself counts when its configured time is still ahead
        and it satisfies the rule's weekday / day-of-month constraints.
        """
        tz = get_zoneinfo(rule.timezone)
        now = to_utc_aware(now)
        start_utc = to_utc_aware(start_date)
        local_start = to_local(start_date, tz)

        candidate = None
        if rule.frequency == RecurrenceType.CUSTOM and rule.cron_expression:
            try:
                itr = croniter(rule.cron_expression, local_start - timedelta(seconds=1))
                candidate = to_utc_aware(itr.get_next(datetime))
            except (ValueError, KeyError) as e:
                logger.warning(f"⚠️ [Recurrence] Bad cron expression {rule.cron_expression!r}: {e}")
        else:
            local_candidate = RecurrenceCalculator._apply_time(local_start, parse_time_of_day(rule.time))
            if RecurrenceCalculator._matches_rule(rule, local_candidate):
                candidate = to_utc_aware(local_candidate)

        if candidate is not None and candidate >= start_utc and candidate > now:
            return RecurrenceCalculator._within_end_date(rule, candidate)

        return RecurrenceCalculator.compute_next_due(rule, start_date, now)

    @staticmethod
    def calculate_next_due(
        rule: RecurrenceRule,
        start_date: datetime,
        last_completed: Optional[datetime],
        now: datetime,
    ) -> Optional[datetime]:
        """Pick the anchor (last completion wins over the start date) and compute."""
        if last_completed is not None:
            return RecurrenceCalculator.compute_next_due(rule, last_completed, now)
        return RecurrenceCalculator.first_occurrence(rule, start_date, now)

    @staticmethod
    def _step(rule: RecurrenceRule, local_anchor: datetime) -> datetime:
        if rule.frequency == RecurrenceType.WEEKLY:
            weekdays = rule.weekdays
            if weekdays:
                current = (local_anchor.weekday() + 1) % 7  # 0 = Sunday
                later = [day for day in weekdays if day > current]
                if later:
                    offset = later[0] - current
                else:
                    # Wrap to next week
                    offset = 7 - current + weekdays[0]
                return local_anchor + timedelta(days=offset)
            return local_anchor + timedelta(days=7)

        if rule.frequency == RecurrenceType.MONTHLY:
            return RecurrenceCalculator._add_months(local_anchor, 1, rule.day_of_month)

        if rule.frequency == RecurrenceType.QUARTERLY:
            return RecurrenceCalculator._add_months(local_anchor, 3)

        # Daily, and the fallback for custom rules without a cron expression
        return local_anchor + timedelta(days=1)

    @staticmethod
    def _add_months(local_dt: datetime, months: int, day: Optional[int] = None) -> datetime:
        """Shift by whole months; days past the end of the month clamp to its last day."""
        month_index = local_dt.month - 1 + months
        year = local_dt.year + month_index // 12
        month = month_index % 12 + 1
        last_day = calendar.monthrange(year, month)[1]
        return local_dt.replace(year=year, month=month, day=min(day or local_dt.day, last_day))

    @staticmethod
    def _apply_time(local_dt: datetime, time_of_day: Optional[Tuple[int, int]]) -> datetime:
        if time_of_day is None:
            return local_dt
        hour, minute = time_of_day
        return local_dt.replace(hour=hour, minute=minute, second=0, microsecond=0)

    @staticmethod
    def _matches_rule(rule: RecurrenceRule, local_dt: datetime) -> bool:
        if rule.frequency == RecurrenceType.WEEKLY and rule.weekdays:
            return (local_dt.weekday() + 1) % 7 in rule.weekdays
        if rule.frequency == RecurrenceType.MONTHLY and rule.day_of_month:
            last_day = calendar.monthrange(local_dt.year, local_dt.month)[1]
            return local_dt.day == min(rule.day_of_month, last_day)
        return True

    @staticmethod
    def _ensure_future(
        rule: RecurrenceRule,
        candidate: datetime,
        time_of_day: Optional[Tuple[int, int]],
        now: datetime,
        tz: tzinfo,
    ) -> datetime:
        if to_utc_aware(candidate) > now:
            return candidate

        if rule.frequency in WEEK_ALIGNED_FREQUENCIES:
            # Whole weeks keep both the weekday and the wall-clock time
            weeks = (now - to_utc_aware(candidate)).days // 7
            if weeks > 0:
                candidate = RecurrenceCalculator._apply_time(candidate + timedelta(weeks=weeks), time_of_day)

        # Daily rules advance one day here; the others keep their own step
        for _ in range(MAX_CATCH_UP_STEPS):
            if to_utc_aware(candidate) > now:
                return candidate
            candidate = RecurrenceCalculator._apply_time(
                RecurrenceCalculator._step(rule, candidate), time_of_day
            )
        if to_utc_aware(candidate) > now:
            return candidate

        parts = time_of_day or (candidate.hour, candidate.minute)
        caught_up = RecurrenceCalculator._apply_time(to_local(now, tz), parts)
        if to_utc_aware(caught_up) <= now:
            caught_up = RecurrenceCalculator._apply_time(caught_up + timedelta(days=1), parts)
        logger.warning(
            f"⚠️ [Recurrence] Gave up stepping {rule.frequency.value} rule after {MAX_CATCH_UP_STEPS} steps, "
            f"caught up to {caught_up.isoformat()}"
        )
        return caught_up

    @staticmethod
    def _calculate_cron_next(
        rule: RecurrenceRule,
        local_anchor: datetime,
        now: datetime,
        tz: tzinfo,
    ) -> Optional[datetime]:
        """Next cron match after the anchor, or after now when the anchor is stale."""
        try:
            nxt = croniter(rule.cron_expression, local_anchor).get_next(datetime)
            if to_utc_aware(nxt) <= now:
                nxt = croniter(rule.cron_expression, to_local(now, tz)).get_next(datetime)
            logger.debug(f"🧭 [Cron] anchor={local_anchor.isoformat()} expr={rule.cron_expression} next={nxt.isoformat()}")
            return nxt
        except (ValueError, KeyError) as e:
            logger.warning(f"⚠️ [Cron] Failed to compute next for {rule.cron_expression!r}: {e}")
            return None

    @staticmethod
    def _within_end_date(rule: RecurrenceRule, candidate: datetime) -> Optional[datetime]:
        if rule.end_date is not None and candidate > to_utc_aware(rule.end_date):
            logger.info(f"🏁 [Recurrence] Next occurrence {candidate.isoformat()} is past end date, series finished")
            return None
        return candidate


compute_next_due = RecurrenceCalculator.compute_next_due
first_occurrence = RecurrenceCalculator.first_occurrence
calculate_next_due = RecurrenceCalculator.calculate_next_due


def describe_status(
    next_due: Optional[datetime],
    now: datetime,
    timezone: Optional[str] = None,
) -> ReminderStatus:
    """Card state of a reminder: overdue, due today (in the user's zone) or upcoming."""
    if next_due is None:
        return ReminderStatus.NOT_SCHEDULED
    next_due = to_utc_aware(next_due)
    now = to_utc_aware(now)
    if next_due < now:
        return ReminderStatus.OVERDUE
    tz = get_zoneinfo(timezone)
    if to_local(next_due, tz).date() == to_local(now, tz).date():
        return ReminderStatus.DUE_TODAY
    return ReminderStatus.UPCOMING


def frequency_label(frequency: Any) -> str:
    try:
        return FREQUENCY_LABELS[RecurrenceType(frequency)]
    except ValueError:
        return ""
