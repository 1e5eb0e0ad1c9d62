"""
Celery Application Configuration

Configures Celery with:
- Beat schedule for the orphan reconciliation sweep
- Late acknowledgment so an interrupted sweep is redelivered
"""

from celery import Celery
from kombu import Queue

from event_gallery.core.config import settings

# Create Celery app
celery_app = Celery(
    "event_gallery",
    broker=settings.CELERY_BROKER_URL or settings.REDIS_URL,
    backend=settings.CELERY_RESULT_BACKEND or settings.REDIS_URL,
    include=[
        "event_gallery.pipeline.tasks",
    ]
)

# Celery configuration
celery_app.conf.update(
    # Task settings
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,

    # Task tracking
    task_track_started=True,
    task_time_limit=600,  # 10 minute hard limit
    task_soft_time_limit=540,  # 9 minute soft limit

    # Result expiration
    result_expires=86400,  # 24 hours

    worker_prefetch_multiplier=1,

    # Queue definitions
    task_queues=(
        Queue("default", routing_key="default"),
        Queue("maintenance", routing_key="maintenance.#"),
    ),
    task_default_queue="default",

    # Task routing
    task_routes={
        "event_gallery.pipeline.tasks.reconcile_orphaned_assets": {"queue": "maintenance"},
    },

    # Late acknowledgment for reliability
    task_acks_late=True,
    task_reject_on_worker_lost=True,
)

# Beat schedule for periodic tasks
celery_app.conf.beat_schedule = {
    "reconcile-orphaned-assets": {
        "task": "event_gallery.pipeline.tasks.reconcile_orphaned_assets",
        "schedule": settings.RECONCILE_INTERVAL_SECONDS,
    },
}
