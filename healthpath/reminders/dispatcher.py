from typing import Dict, Any, Optional
import json
import logging
import os
import uuid

from firebase_admin import messaging, credentials, initialize_app, _apps  # type: ignore
from firebase_admin.exceptions import FirebaseError

from .config import settings
from .metrics import reminders_dispatch_success_total, reminders_dispatch_failed_total

logger = logging.getLogger(__name__)


def _ensure_firebase_initialized() -> None:
    if _apps:
        return

    proj = settings.FCM_PROJECT_ID
    creds_json: Optional[str] = (
        settings.FCM_CREDENTIALS_JSON
        or os.getenv("GOOGLE_APPLICATION_CREDENTIALS_JSON")
        or os.getenv("GOOGLE_APPLICATION_CREDENTIALS")
    )
    options = {"projectId": proj} if proj else None

    if not creds_json or not creds_json.strip():
        logger.warning("⚠️ [FCM] No credentials provided - push notifications are disabled")
        return

    try:
        if creds_json.strip().startswith("{"):
            initialize_app(credentials.Certificate(json.loads(creds_json)), options=options)
            logger.info(f"✅ [FCM] Firebase app initialized (inline JSON) project_id={proj}")
        elif os.path.exists(creds_json):
            initialize_app(credentials.Certificate(creds_json), options=options)
            logger.info(f"✅ [FCM] Firebase app initialized (file) project_id={proj}")
        else:
            initialize_app(options=options)
            logger.info(f"✅ [FCM] Firebase app initialized (default credentials) project_id={proj}")
    except (ValueError, OSError) as e:
        logger.error(f"❌ [FCM] Failed to initialize Firebase: {e!r}")


def user_topic(user_id: str) -> str:
    """Devices subscribe to one topic per user."""
    return f"{settings.FCM_TOPIC_PREFIX}{user_id}"


def build_message(event: Dict[str, Any]) -> messaging.Message:
    """FCM message for a fired reminder.

    Expected event keys: reminder_id, user_id, type, title and optionally
    scheduled_for (ISO-8601, UTC).
    """
    # Fresh collapse id so iOS does not fold consecutive occurrences together
    collapse_id = str(uuid.uuid4())
    return messaging.Message(
        topic=user_topic(str(event.get("user_id", ""))),
        notification=messaging.Notification(
            title=settings.NOTIFICATION_TITLE,
            body=event.get("title") or "It's time!",
        ),
        data={
            "reminder_id": str(event.get("reminder_id")),
            "type": str(event.get("type")),
            "scheduled_for": str(event.get("scheduled_for") or ""),
            "notification_id": collapse_id,
        },
        apns=messaging.APNSConfig(
            headers={
                "apns-push-type": "alert",
                "apns-priority": "10",
                "apns-collapse-id": collapse_id,
            }
        ),
    )


def send_push_via_fcm(event: Dict[str, Any]) -> bool:
    """Send the reminder alert to the owner's devices. Returns True when FCM accepted it."""
    _ensure_firebase_initialized()
    if not _apps:
        logger.warning(
            f"⚠️ [FCM] Firebase not initialized - skipping push for reminder={event.get('reminder_id')} "
            f"project_id={settings.FCM_PROJECT_ID}"
        )
        reminders_dispatch_failed_total.inc()
        return False

    message = build_message(event)
    try:
        result = messaging.send(message)
    except (FirebaseError, ValueError) as e:
        # Not re-raised: a retry storm would deliver the same alert repeatedly
        logger.error(f"❌ [FCM] Failed to send reminder={event.get('reminder_id')}: {e!r}")
        reminders_dispatch_failed_total.inc()
        return False

    logger.info(f"🚀 [FCM] Sent reminder={event.get('reminder_id')} to topic={message.topic}: {result}")
    reminders_dispatch_success_total.inc()
    return True
