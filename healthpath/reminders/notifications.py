"""
Keeps one outstanding notification aligned with a reminder's next_due.

Schedule and cancel failures are never raised to the caller. A failed schedule
comes back as a degraded NotificationOutcome, a failed cancel is logged and
counted; the reminder record stays the source of truth either way.
"""
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Protocol
import logging

from healthpath.utils.timezone import to_utc_aware, utcnow
from .metrics import (
    notifications_scheduled_total,
    notifications_degraded_total,
    notifications_cancel_failed_total,
)

logger = logging.getLogger(__name__)


class NotificationService(Protocol):
    """Device/OS (or push backend) collaborator."""

    async def schedule_at(self, instant: datetime, payload: Dict[str, Any]) -> str: ...

    async def cancel(self, handle: str) -> None: ...


class OutcomeStatus(str, Enum):
    SCHEDULED = "scheduled"
    SKIPPED = "skipped"
    DEGRADED = "degraded"


@dataclass(frozen=True)
class NotificationOutcome:
    """Tagged result: Scheduled(handle) | Skipped(reason) | Degraded(reason)."""
    status: OutcomeStatus
    handle: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def scheduled(cls, handle: str) -> "NotificationOutcome":
        return cls(status=OutcomeStatus.SCHEDULED, handle=handle)

    @classmethod
    def skipped(cls, reason: str) -> "NotificationOutcome":
        return cls(status=OutcomeStatus.SKIPPED, reason=reason)

    @classmethod
    def degraded(cls, reason: str) -> "NotificationOutcome":
        return cls(status=OutcomeStatus.DEGRADED, reason=reason)

    @property
    def ok(self) -> bool:
        return self.status != OutcomeStatus.DEGRADED

    def to_dict(self) -> Dict[str, Any]:
        return {"status": self.status.value, "handle": self.handle, "reason": self.reason}


class NotificationOrchestrator:
    def __init__(self, service: NotificationService):
        self.service = service

    async def schedule(self, reminder: Any, now: Optional[datetime] = None) -> NotificationOutcome:
        """Schedule an alert at reminder.next_due.

        Skipped when the reminder is disabled or next_due is absent or not in
        the future.
        """
        now = to_utc_aware(now) if now else utcnow()
        if not reminder.enabled:
            return NotificationOutcome.skipped("disabled")
        if reminder.next_due is None:
            return NotificationOutcome.skipped("no_next_due")
        next_due = to_utc_aware(reminder.next_due)
        if next_due <= now:
            return NotificationOutcome.skipped("next_due_not_in_future")

        payload = {
            "reminder_id": str(reminder.id),
            "type": _enum_value(reminder.reminder_type),
            "user_id": str(reminder.user_id),
            "title": reminder.title,
        }
        try:
            handle = await self.service.schedule_at(next_due, payload)
        except Exception as e:
            notifications_degraded_total.inc()
            logger.warning(
                f"⚠️ [Notify] Failed to schedule notification for reminder={reminder.id} "
                f"at {next_due.isoformat()}: {e!r}"
            )
            return NotificationOutcome.degraded(f"schedule_failed: {e}")

        if not handle:
            notifications_degraded_total.inc()
            logger.warning(f"⚠️ [Notify] Notification service returned no handle for reminder={reminder.id}")
            return NotificationOutcome.degraded("no_handle_returned")

        notifications_scheduled_total.inc()
        logger.info(f"🔔 [Notify] Scheduled reminder={reminder.id} at {next_due.isoformat()} handle={handle}")
        return NotificationOutcome.scheduled(str(handle))

    async def cancel(self, handle: Optional[str]) -> bool:
        """Best-effort cancel. Returns False when the collaborator failed."""
        if not handle:
            return True
        try:
            await self.service.cancel(handle)
        except Exception as e:
            notifications_cancel_failed_total.inc()
            logger.warning(f"⚠️ [Notify] Failed to cancel notification handle={handle}: {e!r}")
            return False
        logger.info(f"🔕 [Notify] Cancelled notification handle={handle}")
        return True

    async def reschedule(self, reminder: Any, now: Optional[datetime] = None) -> NotificationOutcome:
        """Cancel the reminder's current handle, then schedule a fresh one."""
        await self.cancel(reminder.notification_id)
        return await self.schedule(reminder, now)


def _enum_value(value: Any) -> str:
    return value.value if isinstance(value, Enum) else str(value)
