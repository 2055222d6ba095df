from celery import Celery
from celery.schedules import crontab
import structlog

from petbooking.core.config import settings

logger = structlog.get_logger(__name__)

# Create Celery instance
celery_app = Celery(
    "petbooking",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["petbooking.tasks"],
)

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone=settings.BUSINESS_TIMEZONE,
    enable_utc=True,
    result_expires=3600,
    task_routes={
        "petbooking.tasks.*": {"queue": "availability"},
    },
    worker_prefetch_multiplier=1,
    task_acks_late=True,
    worker_max_tasks_per_child=1000,
    beat_schedule={
        "roll-availability-daily": {
            "task": "petbooking.tasks.roll_availability",
            "schedule": crontab(hour=3, minute=0),
        },
    },
)
