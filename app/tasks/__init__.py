"""Background tasks using Celery."""

from celery import Celery

from app.config import get_settings

settings = get_settings()

# Create Celery app
celery_app = Celery(
    "submission_vault",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

# Configure Celery
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=600,  # one batch per key should finish well within this
    worker_prefetch_multiplier=1,
    task_acks_late=True,
)

# Import task modules to register them
from app.tasks import migration_runner  # noqa

# Configure periodic tasks (Celery Beat)
celery_app.conf.beat_schedule = {
    # Advance each scheduled migration by one batch
    "migrations-scheduled-tick": {
        "task": "migrations.scheduled_tick",
        "schedule": settings.MIGRATION_SCHEDULE_INTERVAL_SECONDS,
        "options": {"time_limit": 300},
    },
}
