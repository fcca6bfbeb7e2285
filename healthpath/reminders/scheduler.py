"""
NotificationService backed by the scheduler scan.

Scheduling only mints the handle. The reminder row (``next_due`` plus the
persisted ``notification_id``) is the schedule: the ``reminders.scan_and_dispatch``
beat task publishes ``reminders.dispatch`` once the reminder is due, with the
handle as the Celery task id. Nothing sits in the broker with a far-off ETA, so
RabbitMQ's consumer_timeout never closes the channel and redelivers it.
"""
from datetime import datetime
from typing import Any, Dict, Optional
import asyncio
import logging
import uuid

from celery import Celery
from kombu.exceptions import KombuError

from healthpath.utils.timezone import to_utc_aware
from .celery_app import celery_app
from .exceptions import NotificationFailure

logger = logging.getLogger(__name__)

DISPATCH_TASK = "reminders.dispatch"


class CeleryNotificationService:
    def __init__(self, app: Optional[Celery] = None):
        self.app = app or celery_app

    async def schedule_at(self, instant: datetime, payload: Dict[str, Any]) -> str:
        # Known before anything is published, so the row can carry it first
        handle = str(uuid.uuid4())
        logger.debug(
            f"📬 [Dispatch] handle={handle} reminder={payload.get('reminder_id')} "
            f"due={to_utc_aware(instant).isoformat()}"
        )
        return handle

    async def cancel(self, handle: str) -> None:
        """Revoke the dispatch task in case the scan already queued it.

        Clearing ``notification_id`` on the row is what stops a future dispatch.
        """
        await asyncio.to_thread(self._revoke, handle)

    def _revoke(self, handle: str) -> None:
        try:
            self.app.control.revoke(handle)
        except (KombuError, OSError) as e:
            raise NotificationFailure(
                "Failed to revoke reminder dispatch",
                context={"handle": handle},
                original_error=e,
            ) from e
