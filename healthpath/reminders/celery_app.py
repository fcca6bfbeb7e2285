from celery import Celery
from kombu import Exchange, Queue
from .config import settings


broker_url = settings.CELERY_BROKER_URL or settings.RABBITMQ_URL
result_backend = settings.CELERY_RESULT_BACKEND or None

celery_app = Celery(
    "reminders",
    broker=broker_url,
    backend=result_backend,
)

exchange = Exchange(settings.RABBITMQ_EXCHANGE, type="direct", durable=True)

celery_app.conf.update(
    task_acks_late=True,
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    enable_utc=True,
    worker_prefetch_multiplier=1,
    worker_concurrency=settings.WORKER_CONCURRENCY,
    task_default_queue=settings.RABBITMQ_DISPATCH_QUEUE,
    task_default_exchange=settings.RABBITMQ_EXCHANGE,
    task_default_routing_key=settings.RABBITMQ_DISPATCH_ROUTING_KEY,
    include=["healthpath.reminders.tasks"],
    task_queues=(
        Queue(
            settings.RABBITMQ_DISPATCH_QUEUE,
            exchange=exchange,
            routing_key=settings.RABBITMQ_DISPATCH_ROUTING_KEY,
            durable=True,
        ),
    ),
)

# Celery Beat schedule for periodic scanning
celery_app.conf.beat_schedule = {
    "scan-and-dispatch": {
        "task": "reminders.scan_and_dispatch",
        "schedule": settings.SCHEDULER_SCAN_INTERVAL_SECONDS,
    },
}
