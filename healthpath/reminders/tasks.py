import logging
from typing import Optional

from celery import shared_task
from kombu.exceptions import KombuError
from sqlalchemy.orm import Session

from healthpath.db.session import SessionLocal
from healthpath.utils.timezone import to_utc_aware, utcnow
from .celery_app import celery_app
from .config import settings
from .dispatcher import send_push_via_fcm
from .metrics import (
    reminders_dispatch_stale_total,
    scheduler_dispatched_total,
    scheduler_publish_failed_total,
    scheduler_scans_total,
)
from .repository import get_due_notifications, mark_dispatched
from .scheduler import DISPATCH_TASK
from .unified_models import Reminder

logger = logging.getLogger(__name__)


def is_current_notification(reminder: Optional[Reminder], handle: Optional[str]) -> bool:
    """True when ``handle`` is still the live notification of an enabled reminder.

    The reminder can be completed, edited or deleted between the scan that
    queued the task and the worker that runs it, so the task checks the record
    before it alerts anyone.
    """
    if reminder is None or not reminder.enabled:
        return False
    return bool(handle) and reminder.notification_id == handle


def build_dispatch_event(reminder: Reminder) -> dict:
    return {
        "reminder_id": str(reminder.id),
        "type": reminder.reminder_type,
        "user_id": reminder.user_id,
        "title": reminder.title,
        "scheduled_for": to_utc_aware(reminder.next_due).isoformat(),
    }


@shared_task(name="reminders.scan_and_dispatch")
def scan_and_dispatch_task() -> int:
    """Publish due notifications to the dispatch queue. Returns number dispatched."""
    db: Session = SessionLocal()
    dispatched = 0
    try:
        now = utcnow()
        due = get_due_notifications(db, now, limit=settings.SCHEDULER_BATCH_SIZE)
        scheduler_scans_total.inc()
        for r in due:
            handle = r.notification_id
            try:
                celery_app.send_task(
                    DISPATCH_TASK,
                    args=[build_dispatch_event(r)],
                    task_id=handle,
                    queue=settings.RABBITMQ_DISPATCH_QUEUE,
                    routing_key=settings.RABBITMQ_DISPATCH_ROUTING_KEY,
                )
            except (KombuError, OSError) as e:
                # Left unmarked, the next scan retries it
                scheduler_publish_failed_total.inc()
                logger.error(f"❌ [Scheduler] Could not publish reminder={r.id} handle={handle}: {e!r}")
                continue
            if not mark_dispatched(db, r.id, handle):
                logger.info(f"🔁 [Scheduler] reminder={r.id} moved past handle={handle} while publishing")
            dispatched += 1
            scheduler_dispatched_total.inc()
    finally:
        db.close()
    if dispatched:
        logger.info(f"⏰ [Scheduler] Dispatched {dispatched} due reminder(s)")
    return dispatched


@shared_task(name="reminders.dispatch", bind=True)
def dispatch_reminder_task(self, event: dict) -> bool:
    handle = self.request.id
    reminder_id = str(event.get("reminder_id"))
    db: Session = SessionLocal()
    try:
        reminder = db.get(Reminder, reminder_id)
        current = is_current_notification(reminder, handle)
    finally:
        db.close()

    if not current:
        reminders_dispatch_stale_total.inc()
        logger.info(f"🔕 [Dispatch] Dropping stale notification handle={handle} reminder={reminder_id}")
        return False
    return send_push_via_fcm(event)
