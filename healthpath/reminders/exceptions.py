"""
Reminder error hierarchy.

Validation, persistence and not-found errors propagate to the caller.
Notification failures are absorbed by the orchestrator and reported as a
degraded NotificationOutcome instead of being raised from a mutation.
"""
from typing import Any, Dict, Optional


class ReminderError(Exception):
    """Base class; carries an HTTP status and a context dict for logs and API responses."""

    status_code = 500

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        self.message = message
        self.context = context or {}
        self.original_error = original_error
        full_message = message
        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            full_message = f"{message} [{context_str}]"
        super().__init__(full_message)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": True,
            "message": self.message,
            "status_code": self.status_code,
            "context": self.context,
        }


class ReminderValidationError(ReminderError):
    """Rejected input. Raised before any persistence or notification call."""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None, context: Optional[Dict[str, Any]] = None):
        ctx = dict(context or {})
        if field:
            ctx["field"] = field
        super().__init__(message, context=ctx)
        self.field = field


class ReminderNotFoundError(ReminderError):
    status_code = 404

    def __init__(self, reminder_id: str, original_error: Optional[Exception] = None):
        super().__init__(
            f"Reminder not found: {reminder_id}",
            context={"reminder_id": reminder_id},
            original_error=original_error,
        )
        self.reminder_id = reminder_id


class PersistenceFailure(ReminderError):
    """The store could not apply a write; the mutation counts as not applied."""

    status_code = 503

    def __init__(
        self,
        message: str = "Reminder store unavailable",
        operation: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        original_error: Optional[Exception] = None,
    ):
        ctx = dict(context or {})
        if operation:
            ctx["operation"] = operation
        super().__init__(message, context=ctx, original_error=original_error)


class ReminderConflictError(PersistenceFailure):
    """Optimistic concurrency check failed: the reminder changed since it was read."""

    status_code = 409

    def __init__(self, reminder_id: str, expected_version: int, actual_version: Optional[int] = None):
        super().__init__(
            "Reminder was modified concurrently",
            operation="update",
            context={
                "reminder_id": reminder_id,
                "expected_version": expected_version,
                "actual_version": actual_version,
            },
        )
        self.reminder_id = reminder_id


class NotificationFailure(ReminderError):
    """The notification collaborator failed. Never escapes a reminder mutation."""

    status_code = 502
