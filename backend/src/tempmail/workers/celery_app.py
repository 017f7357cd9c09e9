"""Celery application for background jobs.

Usage:
    celery -A tempmail.workers.celery_app worker --beat --loglevel=info

Beat schedule:
- retention.cleanup: every CLEANUP_INTERVAL_MINUTES
- retention.daily_stats: daily at 00:00 UTC
"""

from celery import Celery
from celery.schedules import crontab
from celery.signals import setup_logging

from ..config import settings
from ..observability.logging_config import configure_logging

celery_app = Celery(
    "tempmail",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
    include=["tempmail.retention.tasks"],
)

celery_app.conf.update(
    task_serializer="json",
    result_serializer="json",
    accept_content=["json"],
    timezone="UTC",
    enable_utc=True,
    task_acks_late=True,
)


def build_beat_schedule(cleanup_interval_minutes: int) -> dict:
    """Beat entries for the retention tasks."""
    return {
        "retention-cleanup": {
            "task": "retention.cleanup",
            "schedule": crontab(minute=f"*/{cleanup_interval_minutes}")
            if cleanup_interval_minutes < 60
            else crontab(minute=0, hour=f"*/{max(cleanup_interval_minutes // 60, 1)}"),
            "options": {
                "expires": cleanup_interval_minutes * 60,  # Skip runs nobody picked up
            },
        },
        "retention-daily-stats": {
            "task": "retention.daily_stats",
            "schedule": crontab(hour=0, minute=0),
        },
    }


celery_app.conf.beat_schedule = build_beat_schedule(settings.CLEANUP_INTERVAL_MINUTES)


@setup_logging.connect
def _configure_worker_logging(**kwargs) -> None:
    configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)
