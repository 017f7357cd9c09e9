"""Celery tasks for data retention cleanup.

Tasks:
- retention.cleanup: every CLEANUP_INTERVAL_MINUTES via Celery Beat
- retention.daily_stats: daily at midnight UTC, logs service statistics
"""

import logging
from typing import Any, Dict

from celery import shared_task

from ..config import settings
from ..database import SessionLocal, get_db_session
from .service import RetentionService

logger = logging.getLogger(__name__)


@shared_task(name="retention.cleanup", bind=True)
def retention_cleanup_task(self) -> Dict[str, Any]:
    """Delete old messages and expired or inactive addresses.

    The task is idempotent: running it twice in a row finds nothing more
    to delete the second time.

    Returns:
        Dict with cleanup statistics (status, messages_deleted,
        addresses_deleted, database_errors, duration_seconds)
    """
    logger.info("Retention cleanup task started")

    db = SessionLocal()
    try:
        service = RetentionService(db, retention_hours=settings.EMAIL_RETENTION_HOURS)
        statistics = service.run_cleanup()

        result = {
            'status': 'completed',
            'job_started_at': statistics.job_started_at.isoformat(),
            'job_completed_at': statistics.job_completed_at.isoformat(),
            'duration_seconds': statistics.duration_seconds,
            'messages_deleted': statistics.messages_deleted,
            'addresses_deleted': statistics.addresses_deleted,
            'database_errors': statistics.database_errors,
            'total_deleted': statistics.total_deleted,
            'has_errors': statistics.has_errors,
        }

        logger.info(
            f"Retention cleanup task completed: {statistics.total_deleted} rows deleted",
        )

        return result

    except Exception as e:
        logger.error("Retention cleanup task failed", exc_info=True)

        # Return error status but don't raise (allow task to complete)
        return {
            'status': 'failed',
            'error': str(e),
            'total_deleted': 0,
        }

    finally:
        db.close()


@shared_task(name="retention.daily_stats", bind=True)
def daily_stats_task(self) -> Dict[str, Any]:
    """Log and return service-wide address and message counters."""
    with get_db_session() as db:
        service = RetentionService(db, retention_hours=settings.EMAIL_RETENTION_HOURS)
        statistics = service.get_statistics(settings.CLEANUP_INTERVAL_MINUTES)

    logger.info(
        f"Daily statistics: {statistics.addresses.active} active addresses, "
        f"{statistics.messages.total} messages ({statistics.messages.today} today)",
    )
    return statistics.model_dump(mode="json")
