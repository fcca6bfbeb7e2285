from prometheus_client import Counter


reminders_created_total = Counter(
    "reminders_created_total",
    "Total reminders created",
)

reminders_updated_total = Counter(
    "reminders_updated_total",
    "Total reminder updates applied",
)

reminders_deleted_total = Counter(
    "reminders_deleted_total",
    "Total reminders deleted",
)

reminders_shared_total = Counter(
    "reminders_shared_total",
    "Total reminders copied to another user",
)

reminder_completions_total = Counter(
    "reminder_completions_total",
    "Total completion log entries recorded",
    ["completed"],
)

notifications_scheduled_total = Counter(
    "reminder_notifications_scheduled_total",
    "Total notifications scheduled",
)

notifications_degraded_total = Counter(
    "reminder_notifications_degraded_total",
    "Total notification schedule attempts that failed",
)

notifications_cancel_failed_total = Counter(
    "reminder_notifications_cancel_failed_total",
    "Total notification cancellations that failed",
)

reminders_dispatch_success_total = Counter(
    "reminders_dispatch_success_total",
    "Total successful push dispatches",
)

reminders_dispatch_failed_total = Counter(
    "reminders_dispatch_failed_total",
    "Total failed push dispatches",
)

reminders_dispatch_stale_total = Counter(
    "reminders_dispatch_stale_total",
    "Total dispatch events dropped because the notification was superseded",
)

scheduler_scans_total = Counter(
    "reminder_scheduler_scans_total",
    "Total scheduler scans executed",
)

scheduler_dispatched_total = Counter(
    "reminder_scheduler_dispatched_total",
    "Total due notifications handed to the dispatch queue",
)

scheduler_publish_failed_total = Counter(
    "reminder_scheduler_publish_failed_total",
    "Total due notifications the scan could not publish",
)
