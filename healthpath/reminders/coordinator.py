"""
Reminder lifecycle: create, update, complete, delete and share.

Every operation validates first, persists before it touches notifications and
cancels an old notification before scheduling a new one. Writes carry the
version read at load time, so a concurrent edit fails with
ReminderConflictError instead of silently interleaving.
"""
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Type, TypeVar, Union
import logging

from pydantic import BaseModel, ValidationError

from healthpath.utils.timezone import to_utc_aware, utcnow
from .completion import CompletionLedger, MutationResult, apply_notification
from .config import settings
from .exceptions import (
    ReminderConflictError,
    ReminderNotFoundError,
    ReminderValidationError,
)
from .metrics import reminders_created_total, reminders_deleted_total, reminders_shared_total, reminders_updated_total
from .notifications import NotificationOrchestrator, NotificationOutcome, NotificationService, OutcomeStatus
from .recurrence_models import RecurrenceRule, calculate_next_due, describe_status, frequency_label
from .repository import ReminderStore
from .unified_schemas import (
    ReminderCompletionRead,
    ReminderCreate,
    ReminderRead,
    ReminderUpdate,
    UpcomingReminder,
)

logger = logging.getLogger(__name__)

SchemaT = TypeVar("SchemaT", bound=BaseModel)

# Changing any of these re-derives next_due
RECURRENCE_FIELDS = frozenset({
    "frequency", "time", "start_date", "end_date", "days", "date", "cron_expression", "timezone",
})

REQUIRED_FIELDS = frozenset({"title", "reminder_type", "frequency", "time", "start_date", "enabled"})

SHARED_FIELDS = (
    "title", "reminder_type", "notes", "sound_id", "frequency", "time", "start_date",
    "end_date", "days", "date", "cron_expression", "timezone", "enabled",
)


@dataclass
class ResyncSummary:
    user_id: str
    reminders: int = 0
    rescheduled: int = 0
    degraded: int = 0


class ReminderLifecycleCoordinator:
    def __init__(
        self,
        store: ReminderStore,
        notifications: Union[NotificationService, NotificationOrchestrator],
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        if isinstance(notifications, NotificationOrchestrator):
            self.orchestrator = notifications
        else:
            self.orchestrator = NotificationOrchestrator(notifications)
        self.ledger = CompletionLedger(store, self.orchestrator, clock)
        self._clock = clock

    # Mutations

    async def create(self, user_id: str, data: Union[ReminderCreate, Dict[str, Any]]) -> MutationResult:
        payload = _validate(ReminderCreate, data)
        _require_user_id(user_id)
        now = self._clock()

        rule = RecurrenceRule.from_reminder(payload)
        next_due = calculate_next_due(rule, payload.start_date, None, now)

        record = _to_record(payload.model_dump())
        record.update(next_due=next_due, notification_id=None)
        reminder_id = await self.store.create(user_id, record)
        reminder = await self._load(reminder_id)
        reminders_created_total.inc()
        logger.info(
            f"➕ [Reminders] Created reminder={reminder.id} user={user_id} frequency={reminder.frequency.value} "
            f"next_due={next_due.isoformat() if next_due else None}"
        )
        return await apply_notification(self.store, self.orchestrator, reminder, None, now)

    async def update(self, reminder_id: str, changes: Union[ReminderUpdate, Dict[str, Any]]) -> MutationResult:
        payload = _validate(ReminderUpdate, changes)
        fields = payload.model_dump(exclude_unset=True)
        for name in REQUIRED_FIELDS & set(fields):
            if fields[name] is None:
                raise ReminderValidationError(f"{name} cannot be cleared", field=name)

        current = await self._load(reminder_id)
        merged = current.model_copy(update=fields)
        if merged.end_date is not None and merged.end_date < merged.start_date:
            raise ReminderValidationError("end_date must not be before start_date", field="end_date")

        now = self._clock()
        partial = _to_record(fields)
        recurrence_changed = bool(RECURRENCE_FIELDS & set(fields))

        if not merged.enabled:
            # Disabled reminders keep next_due but never hold a notification
            if recurrence_changed:
                partial["next_due"] = self._next_due_for(merged, now)
            partial["notification_id"] = None
            updated = await self.store.update(reminder_id, partial, expected_version=current.version)
            reminders_updated_total.inc()
            cancelled = await self.orchestrator.cancel(current.notification_id)
            outcome = NotificationOutcome.skipped("disabled") if cancelled else NotificationOutcome.degraded("cancel_failed")
            logger.info(f"⏸️ [Reminders] Reminder={reminder_id} is disabled, notification cleared")
            return MutationResult(reminder=updated, notification=outcome)

        stale = current.next_due is None or current.next_due <= now
        if recurrence_changed or not current.enabled or stale:
            partial["next_due"] = self._next_due_for(merged, now)
        partial["notification_id"] = None
        updated = await self.store.update(reminder_id, partial, expected_version=current.version)
        reminders_updated_total.inc()
        logger.info(
            f"✏️ [Reminders] Updated reminder={reminder_id} fields={sorted(fields)} "
            f"next_due={updated.next_due.isoformat() if updated.next_due else None}"
        )
        return await apply_notification(self.store, self.orchestrator, updated, current.notification_id, now)

    async def complete(
        self,
        reminder_id: str,
        timestamp: Optional[datetime] = None,
        completed: bool = True,
        notes: Optional[str] = None,
    ) -> MutationResult:
        return await self.ledger.record_completion(reminder_id, timestamp, completed, notes)

    async def delete(self, reminder_id: str) -> NotificationOutcome:
        """Cancel the live notification, then remove the reminder and its completion logs."""
        current = await self._load(reminder_id)
        cancelled = await self.orchestrator.cancel(current.notification_id)
        await self.store.delete(reminder_id)
        reminders_deleted_total.inc()
        logger.info(f"🗑️ [Reminders] Deleted reminder={reminder_id} user={current.user_id}")
        if not cancelled:
            return NotificationOutcome.degraded("cancel_failed")
        return NotificationOutcome.skipped("deleted")

    async def share(self, reminder_id: str, target_user_id: str) -> MutationResult:
        """Copy a reminder to another user.

        The copy is independent: new id, its own timestamps, anchor and
        notification. Only a provenance tag points back at the source.
        """
        _require_user_id(target_user_id, field="target_user_id")
        source = await self._load(reminder_id)
        if target_user_id == source.user_id:
            raise ReminderValidationError("Cannot share a reminder with its owner", field="target_user_id")

        now = self._clock()
        next_due = to_utc_aware(source.next_due) if source.next_due else None
        if next_due is None or next_due <= now:
            next_due = self._next_due_for(source.model_copy(update={"last_completed": None}), now)
        record = _to_record({name: getattr(source, name) for name in SHARED_FIELDS})
        record.update(
            next_due=next_due,
            notification_id=None,
            last_completed=None,
            shared_from_user_id=source.user_id,
            shared_from_reminder_id=source.id,
        )
        new_id = await self.store.create(target_user_id, record)
        copy = await self._load(new_id)
        reminders_shared_total.inc()
        logger.info(f"🤝 [Reminders] Shared reminder={source.id} from user={source.user_id} to user={target_user_id} as {copy.id}")
        return await apply_notification(self.store, self.orchestrator, copy, None, now)

    async def resync(self, user_id: str) -> ResyncSummary:
        """Re-derive notification state for all of a user's reminders.

        Enabled reminders with a missing or past next_due, or without a
        handle, are recomputed and rescheduled; disabled ones lose any handle.
        """
        _require_user_id(user_id)
        now = self._clock()
        summary = ResyncSummary(user_id=user_id)
        for reminder in await self.store.list(user_id):
            summary.reminders += 1
            try:
                outcome = await self._resync_one(reminder, now)
            except (ReminderConflictError, ReminderNotFoundError) as e:
                # Someone else is mutating this reminder; their write wins
                logger.info(f"🔁 [Reminders] Skipping resync of reminder={reminder.id}: {e}")
                continue
            if outcome is None:
                continue
            if outcome.status == OutcomeStatus.SCHEDULED:
                summary.rescheduled += 1
            elif outcome.status == OutcomeStatus.DEGRADED:
                summary.degraded += 1
        logger.info(
            f"🔁 [Reminders] Resynced user={user_id} reminders={summary.reminders} "
            f"rescheduled={summary.rescheduled} degraded={summary.degraded}"
        )
        return summary

    # Queries

    async def get(self, reminder_id: str) -> ReminderRead:
        return await self._load(reminder_id)

    async def list_for_user(self, user_id: str) -> List[ReminderRead]:
        _require_user_id(user_id)
        return await self.store.list(user_id)

    async def list_completions(self, reminder_id: str) -> List[ReminderCompletionRead]:
        return await self.ledger.list_completions(reminder_id)

    async def upcoming(
        self,
        user_id: str,
        now: Optional[datetime] = None,
        days: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[UpcomingReminder]:
        """Enabled reminders due within the next ``days`` days, soonest first."""
        _require_user_id(user_id)
        now = to_utc_aware(now) if now else self._clock()
        horizon = now + timedelta(days=days if days is not None else settings.UPCOMING_WINDOW_DAYS)
        limit = limit if limit is not None else settings.UPCOMING_LIMIT

        due = [
            r for r in await self.store.list(user_id)
            if r.enabled and r.next_due is not None and now <= r.next_due <= horizon
        ]
        due.sort(key=lambda r: r.next_due)
        return [
            UpcomingReminder(
                **r.model_dump(),
                status=describe_status(r.next_due, now, r.timezone),
                frequency_label=frequency_label(r.frequency),
            )
            for r in due[:limit]
        ]

    # Internals

    async def _load(self, reminder_id: str) -> ReminderRead:
        reminder = await self.store.get(reminder_id)
        if reminder is None:
            raise ReminderNotFoundError(reminder_id)
        return reminder

    def _next_due_for(self, reminder: ReminderRead, now: datetime) -> Optional[datetime]:
        return calculate_next_due(
            RecurrenceRule.from_reminder(reminder),
            reminder.start_date,
            reminder.last_completed,
            now,
        )

    async def _resync_one(self, reminder: ReminderRead, now: datetime) -> Optional[NotificationOutcome]:
        if not reminder.enabled:
            if not reminder.notification_id:
                return None
            await self.store.update(reminder.id, {"notification_id": None}, expected_version=reminder.version)
            await self.orchestrator.cancel(reminder.notification_id)
            return NotificationOutcome.skipped("disabled")

        stale = reminder.next_due is None or reminder.next_due <= now
        if not stale and reminder.notification_id:
            return None

        partial: Dict[str, Any] = {"notification_id": None}
        if stale:
            partial["next_due"] = self._next_due_for(reminder, now)
            if partial["next_due"] is None and reminder.next_due is None and not reminder.notification_id:
                # Series already finished
                return None
        updated = await self.store.update(reminder.id, partial, expected_version=reminder.version)
        result = await apply_notification(self.store, self.orchestrator, updated, reminder.notification_id, now)
        return result.notification


def _validate(schema: Type[SchemaT], data: Any) -> SchemaT:
    if isinstance(data, schema):
        return data
    if isinstance(data, BaseModel):
        data = data.model_dump(exclude_unset=True)
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        first = e.errors()[0] if e.errors() else {}
        field = ".".join(str(part) for part in first.get("loc", ())) or None
        raise ReminderValidationError(first.get("msg", "Invalid reminder data"), field=field) from e


def _require_user_id(user_id: Any, field: str = "user_id") -> None:
    if not isinstance(user_id, str) or not user_id.strip():
        raise ReminderValidationError(f"{field} is required", field=field)


def _to_record(values: Dict[str, Any]) -> Dict[str, Any]:
    return {k: (v.value if isinstance(v, Enum) else v) for k, v in values.items()}
