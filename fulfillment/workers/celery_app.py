"""
Celery application configuration.
"""

from celery import Celery
from celery.schedules import crontab

from fulfillment.config import settings

# Create Celery app
celery_app = Celery(
    "fulfillment",
    broker=settings.redis_url,
    backend=settings.redis_url,
    include=[
        "fulfillment.workers.maintenance",
    ],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=300,  # 5 minutes
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    # Drop idempotency rows past the retention window, daily at 03:15 UTC
    "prune-processed-events": {
        "task": "fulfillment.workers.maintenance.prune_processed_events",
        "schedule": crontab(hour=3, minute=15),
    },
}
