"""
Reminder persistence: the store interface the lifecycle code depends on and
its SQLAlchemy implementation.
"""
from datetime import datetime, timezone as dt_timezone
from typing import Any, Callable, Dict, List, Optional, Protocol
import asyncio
import logging

from sqlalchemy import select, update, delete, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .exceptions import PersistenceFailure, ReminderConflictError, ReminderNotFoundError
from .unified_models import Reminder, ReminderCompletionLog
from .unified_schemas import ReminderRead, ReminderCompletionRead

logger = logging.getLogger(__name__)

UPDATABLE_FIELDS = frozenset({
    "title",
    "reminder_type",
    "notes",
    "sound_id",
    "frequency",
    "time",
    "start_date",
    "end_date",
    "days",
    "date",
    "cron_expression",
    "timezone",
    "enabled",
    "next_due",
    "notification_id",
    "last_completed",
    "shared_from_user_id",
    "shared_from_reminder_id",
})


def _completion_log(user_id: str, entry: Dict[str, Any]) -> ReminderCompletionLog:
    return ReminderCompletionLog(
        reminder_id=entry["reminder_id"],
        user_id=user_id,
        timestamp=entry["timestamp"],
        completed=entry.get("completed", True),
        notes=entry.get("notes"),
    )


class ReminderStore(Protocol):
    """Persistence collaborator.

    A ``get`` issued right after an ``update`` by the same caller must observe it.
    ``update`` bumps the reminder's version and, when ``expected_version`` is
    given, applies only if the stored version still matches.
    """

    async def get(self, reminder_id: str) -> Optional[ReminderRead]: ...

    async def list(self, user_id: str) -> List[ReminderRead]: ...

    async def create(self, user_id: str, data: Dict[str, Any]) -> str: ...

    async def update(
        self,
        reminder_id: str,
        partial: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> ReminderRead: ...

    async def delete(self, reminder_id: str) -> None: ...

    async def append_completion_log(self, user_id: str, entry: Dict[str, Any]) -> str: ...

    async def apply_completion(
        self,
        reminder_id: str,
        user_id: str,
        entry: Dict[str, Any],
        partial: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> ReminderRead:
        """Append ``entry`` and apply ``partial`` atomically: both land or neither does."""
        ...

    async def list_completions(self, reminder_id: str) -> List[ReminderCompletionRead]: ...


class SqlAlchemyReminderStore:
    """ReminderStore over a SQLAlchemy session factory.

    Sessions are synchronous; each call runs in a worker thread so the
    lifecycle coroutines never block the event loop.
    """

    def __init__(self, session_factory: Callable[[], Session]):
        self._session_factory = session_factory

    async def get(self, reminder_id: str) -> Optional[ReminderRead]:
        return await asyncio.to_thread(self._run, "get", self._get, reminder_id)

    async def list(self, user_id: str) -> List[ReminderRead]:
        return await asyncio.to_thread(self._run, "list", self._list, user_id)

    async def create(self, user_id: str, data: Dict[str, Any]) -> str:
        return await asyncio.to_thread(self._run, "create", self._create, user_id, data)

    async def update(
        self,
        reminder_id: str,
        partial: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> ReminderRead:
        return await asyncio.to_thread(
            self._run, "update", self._update, reminder_id, partial, expected_version
        )

    async def delete(self, reminder_id: str) -> None:
        await asyncio.to_thread(self._run, "delete", self._delete, reminder_id)

    async def append_completion_log(self, user_id: str, entry: Dict[str, Any]) -> str:
        return await asyncio.to_thread(self._run, "append_completion_log", self._append_log, user_id, entry)

    async def apply_completion(
        self,
        reminder_id: str,
        user_id: str,
        entry: Dict[str, Any],
        partial: Dict[str, Any],
        expected_version: Optional[int] = None,
    ) -> ReminderRead:
        return await asyncio.to_thread(
            self._run, "apply_completion", self._apply_completion,
            reminder_id, user_id, entry, partial, expected_version,
        )

    async def list_completions(self, reminder_id: str) -> List[ReminderCompletionRead]:
        return await asyncio.to_thread(self._run, "list_completions", self._list_completions, reminder_id)

    def _run(self, operation: str, fn: Callable[..., Any], *args: Any) -> Any:
        db = self._session_factory()
        try:
            return fn(db, *args)
        except SQLAlchemyError as e:
            db.rollback()
            logger.error(f"❌ [ReminderStore] {operation} failed: {e!r}")
            raise PersistenceFailure(operation=operation, original_error=e) from e
        finally:
            db.close()

    def _get(self, db: Session, reminder_id: str) -> Optional[ReminderRead]:
        reminder = db.get(Reminder, reminder_id)
        return ReminderRead.model_validate(reminder) if reminder else None

    def _list(self, db: Session, user_id: str) -> List[ReminderRead]:
        stmt = (
            select(Reminder)
            .where(Reminder.user_id == user_id)
            .order_by(Reminder.created_at.desc())
        )
        return [ReminderRead.model_validate(r) for r in db.execute(stmt).scalars()]

    def _create(self, db: Session, user_id: str, data: Dict[str, Any]) -> str:
        now = datetime.now(dt_timezone.utc)
        values = {k: v for k, v in data.items() if k in UPDATABLE_FIELDS}
        reminder = Reminder(user_id=user_id, version=1, created_at=now, updated_at=now, **values)
        db.add(reminder)
        db.commit()
        return reminder.id

    def _update(
        self,
        db: Session,
        reminder_id: str,
        partial: Dict[str, Any],
        expected_version: Optional[int],
    ) -> ReminderRead:
        self._versioned_update(db, reminder_id, partial, expected_version)
        db.commit()

        reminder = db.get(Reminder, reminder_id, populate_existing=True)
        return ReminderRead.model_validate(reminder)

    def _versioned_update(
        self,
        db: Session,
        reminder_id: str,
        partial: Dict[str, Any],
        expected_version: Optional[int],
    ) -> None:
        """Run the version-checked UPDATE without committing; rolls back on a miss."""
        unknown = set(partial) - UPDATABLE_FIELDS
        if unknown:
            raise ValueError(f"Fields not updatable: {sorted(unknown)}")

        stmt = update(Reminder).where(Reminder.id == reminder_id)
        if expected_version is not None:
            stmt = stmt.where(Reminder.version == expected_version)
        stmt = stmt.values(
            **partial,
            version=Reminder.version + 1,
            updated_at=datetime.now(dt_timezone.utc),
        )
        result = db.execute(stmt)
        if result.rowcount == 0:
            db.rollback()
            current = db.get(Reminder, reminder_id)
            if current is None:
                raise ReminderNotFoundError(reminder_id)
            raise ReminderConflictError(reminder_id, expected_version, current.version)

    def _delete(self, db: Session, reminder_id: str) -> None:
        db.execute(delete(ReminderCompletionLog).where(ReminderCompletionLog.reminder_id == reminder_id))
        result = db.execute(delete(Reminder).where(Reminder.id == reminder_id))
        if result.rowcount == 0:
            db.rollback()
            raise ReminderNotFoundError(reminder_id)
        db.commit()

    def _append_log(self, db: Session, user_id: str, entry: Dict[str, Any]) -> str:
        log = _completion_log(user_id, entry)
        db.add(log)
        db.commit()
        return log.id

    def _apply_completion(
        self,
        db: Session,
        reminder_id: str,
        user_id: str,
        entry: Dict[str, Any],
        partial: Dict[str, Any],
        expected_version: Optional[int],
    ) -> ReminderRead:
        # Same transaction: a version miss raises before the log entry exists
        self._versioned_update(db, reminder_id, partial, expected_version)
        db.add(_completion_log(user_id, {**entry, "reminder_id": reminder_id}))
        db.commit()

        reminder = db.get(Reminder, reminder_id, populate_existing=True)
        return ReminderRead.model_validate(reminder)

    def _list_completions(self, db: Session, reminder_id: str) -> List[ReminderCompletionRead]:
        stmt = (
            select(ReminderCompletionLog)
            .where(ReminderCompletionLog.reminder_id == reminder_id)
            .order_by(ReminderCompletionLog.timestamp.desc())
        )
        return [ReminderCompletionRead.model_validate(log) for log in db.execute(stmt).scalars()]


def get_due_notifications(db: Session, now: datetime, limit: int = 500) -> List[Reminder]:
    """Enabled reminders that are due and whose live handle was not dispatched yet."""
    stmt = (
        select(Reminder)
        .where(Reminder.enabled.is_(True))
        .where(Reminder.next_due <= now)
        .where(Reminder.notification_id.is_not(None))
        .where(
            or_(
                Reminder.dispatched_notification_id.is_(None),
                Reminder.dispatched_notification_id != Reminder.notification_id,
            )
        )
        .order_by(Reminder.next_due.asc())
        .limit(limit)
    )
    return list(db.execute(stmt).scalars())


def mark_dispatched(db: Session, reminder_id: str, handle: str) -> bool:
    """Mark ``handle`` as queued so scans won't pick it up again.

    Leaves the version alone: this is scheduler bookkeeping, not a user edit.
    Returns False when the reminder moved on to another handle meanwhile.
    """
    result = db.execute(
        update(Reminder)
        .where(Reminder.id == reminder_id)
        .where(Reminder.notification_id == handle)
        .values(dispatched_notification_id=handle)
    )
    db.commit()
    return result.rowcount > 0
