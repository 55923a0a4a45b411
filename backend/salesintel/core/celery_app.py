from celery import Celery
from celery.schedules import crontab

from .config import get_settings
from .logging import configure_logging

settings = get_settings()
configure_logging(settings.LOG_LEVEL)

# Shared by the API (send_task) and the worker (task registration)
COLLECTION_QUEUE = "collection"
RUN_COLLECTION_TASK = "salesintel.services.tasks.run_collection"
CLEANUP_RUNS_TASK = "salesintel.services.retention.cleanup_expired"

celery_app = Celery(
    "salesintel",
    broker=settings.REDIS_URL,
    backend=settings.REDIS_URL,
)

celery_app.conf.update(
    task_routes={RUN_COLLECTION_TASK: {"queue": COLLECTION_QUEUE}},
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    # A collection holds paid calls in flight; reserve one at a time per process
    worker_prefetch_multiplier=1,
    imports=("salesintel.services.tasks", "salesintel.services.retention"),
    beat_schedule={
        "cleanup-expired-collection-runs": {
            "task": CLEANUP_RUNS_TASK,
            "schedule": crontab(hour=settings.COLLECTION_HISTORY_CLEANUP_HOUR_UTC, minute=0),
        },
    },
)
