"""Celery application configuration."""

from celery import Celery

from lead_notifier.config import get_settings
from lead_notifier.utils.logging import setup_logging

setup_logging()

settings = get_settings()

# Create Celery app
app = Celery(
    "lead_notifier",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "lead_notifier.tasks.notification_delivery",
    ],
)

# Celery configuration
app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=settings.attempt_timeout_seconds + 60,
    task_soft_time_limit=settings.attempt_timeout_seconds + 30,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    result_expires=3600,  # 1 hour
    task_default_queue="default",
)

# Lead notifications run on their own queue
app.conf.task_routes = {
    "lead_notifier.tasks.notification_delivery.*": {
        "queue": settings.notifications_queue,
    },
}

if __name__ == "__main__":
    app.start()
