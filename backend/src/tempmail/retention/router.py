"""FastAPI router for retention management endpoints.

Provides admin APIs for:
- Viewing service-wide statistics
- Manually triggering a cleanup run
"""

import logging
from typing import Any, Dict

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from ..config import settings
from ..database import get_db
from .schemas import ServiceStatistics
from .service import RetentionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/admin", tags=["Admin"])


def get_retention_service(db: Session = Depends(get_db)) -> RetentionService:
    return RetentionService(db, retention_hours=settings.EMAIL_RETENTION_HOURS)


@router.get("/stats", response_model=ServiceStatistics)
def service_stats(
    service: RetentionService = Depends(get_retention_service),
) -> ServiceStatistics:
    """Address and message counters plus the cleanup schedule."""
    return service.get_statistics(settings.CLEANUP_INTERVAL_MINUTES)


@router.post("/cleanup")
def run_cleanup(
    service: RetentionService = Depends(get_retention_service),
) -> Dict[str, Any]:
    """Run the retention cleanup synchronously."""
    statistics = service.run_cleanup()

    logger.info(f"Manual cleanup removed {statistics.total_deleted} rows")

    return {
        "message": "Cleanup completed",
        "messages_deleted": statistics.messages_deleted,
        "addresses_deleted": statistics.addresses_deleted,
        "database_errors": statistics.database_errors,
        "duration_seconds": statistics.duration_seconds,
    }
