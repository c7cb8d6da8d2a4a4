"""Celery application configuration for scheduled bank email sync."""

import os

from celery import Celery
from celery.schedules import crontab
from dotenv import load_dotenv

# Load environment variables from .env file (Docker env vars take precedence)
load_dotenv(override=False)

# Initialize Celery
celery_app = Celery(
    "mailsync_tasks",
    broker=os.getenv("CELERY_BROKER_URL", "redis://localhost:6379/0"),
    backend=os.getenv("CELERY_RESULT_BACKEND", "redis://localhost:6379/0"),
)

# Note: SQLAlchemy manages its own connection pool automatically.
# No manual pool initialization needed for Celery workers.

# Celery configuration
celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_time_limit=1800,  # 30 minutes hard limit (fan-out over all connections)
    task_soft_time_limit=1740,  # 29 minutes soft limit (sends warning)
    result_expires=3600,  # Keep results for 1 hour
    worker_prefetch_multiplier=1,  # Sync runs are long; don't hoard them
)

# Periodic schedule (run with: celery -A celery_app beat)
celery_app.conf.beat_schedule = {
    "sync-all-email-connections-hourly": {
        "task": "tasks.email_sync_tasks.sync_all_connections_task",
        "schedule": crontab(minute=0),
    },
    "recover-stale-candidate-emails": {
        "task": "tasks.email_sync_tasks.recover_stale_candidates_task",
        "schedule": crontab(minute="*/15"),
    },
}

# Tasks are registered via @celery_app.task decorators in their module
from tasks import email_sync_tasks  # noqa: E402,F401
