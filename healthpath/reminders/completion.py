"""
Completion ledger: logs completions and skips, re-anchors the recurrence on
the completion instant and moves the notification along.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List, Optional
import logging

from healthpath.utils.timezone import to_utc_aware, utcnow
from .exceptions import PersistenceFailure, ReminderNotFoundError
from .metrics import reminder_completions_total
from .notifications import NotificationOrchestrator, NotificationOutcome
from .recurrence_models import RecurrenceRule, compute_next_due
from .repository import ReminderStore
from .unified_schemas import ReminderRead, ReminderCompletionRead

logger = logging.getLogger(__name__)


@dataclass
class MutationResult:
    """The persisted reminder after a mutation plus what happened on the notification side."""
    reminder: ReminderRead
    notification: NotificationOutcome


async def apply_notification(
    store: ReminderStore,
    orchestrator: NotificationOrchestrator,
    reminder: ReminderRead,
    previous_handle: Optional[str],
    now: datetime,
) -> MutationResult:
    """Cancel ``previous_handle``, schedule for the persisted ``reminder`` and write the handle back.

    ``reminder`` must already be persisted with ``notification_id`` cleared.
    The handle write-back carries the reminder's version; if the record moved
    on in the meantime (or the write fails) the fresh handle is cancelled again
    so no untracked notification stays live.
    """
    outcome = await orchestrator.reschedule(
        reminder.model_copy(update={"notification_id": previous_handle}), now
    )
    if outcome.handle is None:
        return MutationResult(reminder=reminder, notification=outcome)

    try:
        persisted = await store.update(
            reminder.id,
            {"notification_id": outcome.handle},
            expected_version=reminder.version,
        )
    except (PersistenceFailure, ReminderNotFoundError) as e:
        logger.warning(
            f"⚠️ [Notify] Could not attach handle={outcome.handle} to reminder={reminder.id}: {e}; cancelling it"
        )
        await orchestrator.cancel(outcome.handle)
        return MutationResult(
            reminder=reminder,
            notification=NotificationOutcome.degraded(f"handle_not_persisted: {e.message}"),
        )
    return MutationResult(reminder=persisted, notification=outcome)


class CompletionLedger:
    def __init__(
        self,
        store: ReminderStore,
        orchestrator: NotificationOrchestrator,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.store = store
        self.orchestrator = orchestrator
        self._clock = clock

    async def record_completion(
        self,
        reminder_id: str,
        timestamp: Optional[datetime] = None,
        completed: bool = True,
        notes: Optional[str] = None,
    ) -> MutationResult:
        """Log a completion (or a skip) and re-anchor the reminder at ``timestamp``.

        A skip recomputes next_due exactly like a completion; it only differs
        in the log entry. The log entry and the re-anchored reminder are written
        in one store transaction, so a conflict leaves neither behind.
        """
        now = self._clock()
        timestamp = to_utc_aware(timestamp) if timestamp else now

        reminder = await self.store.get(reminder_id)
        if reminder is None:
            raise ReminderNotFoundError(reminder_id)

        next_due = compute_next_due(RecurrenceRule.from_reminder(reminder), timestamp, now)
        updated = await self.store.apply_completion(
            reminder.id,
            reminder.user_id,
            {"timestamp": timestamp, "completed": completed, "notes": notes},
            {"last_completed": timestamp, "next_due": next_due, "notification_id": None},
            expected_version=reminder.version,
        )
        reminder_completions_total.labels(completed=str(completed).lower()).inc()
        logger.info(
            f"✅ [Completion] reminder={reminder.id} completed={completed} at {timestamp.isoformat()} "
            f"next_due={next_due.isoformat() if next_due else None}"
        )
        return await apply_notification(self.store, self.orchestrator, updated, reminder.notification_id, now)

    async def list_completions(self, reminder_id: str) -> List[ReminderCompletionRead]:
        if await self.store.get(reminder_id) is None:
            raise ReminderNotFoundError(reminder_id)
        return await self.store.list_completions(reminder_id)
