"""Retention service for data cleanup operations.

This service implements the cleanup rules of the temporary mail store:
- Delete messages older than EMAIL_RETENTION_HOURS
- Delete addresses that are expired or deactivated, with their messages
- Report service-wide statistics

All operations are idempotent and can be safely retried. The SMTP
ingest path never deletes anything; this is the only place rows go away.
"""

import logging
from datetime import datetime, timedelta
from typing import Callable, Optional

from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.base import utcnow
from ..models.inbound_message import InboundMessage
from ..models.temp_address import TempAddress
from ..observability.metrics import retention_deleted_total
from .schemas import (
    AddressStatistics,
    MessageStatistics,
    RetentionStatistics,
    SchedulerInfo,
    ServiceStatistics,
)

logger = logging.getLogger(__name__)


class RetentionService:
    """Service for executing retention cleanup operations.

    Args:
        db: Database session
        retention_hours: Age after which messages are deleted
        clock: Returns the current aware datetime
    """

    def __init__(
        self,
        db: Session,
        retention_hours: int,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.retention_hours = retention_hours
        self.clock = clock

    def delete_old_messages(self, now: Optional[datetime] = None) -> int:
        """Delete messages received before ``now - retention_hours``.

        Returns:
            Number of messages deleted
        """
        cutoff = (now or self.clock()) - timedelta(hours=self.retention_hours)
        deleted = self.db.query(InboundMessage).filter(
            InboundMessage.received_at < cutoff
        ).delete(synchronize_session=False)
        self.db.commit()

        retention_deleted_total.labels(table="inbound_message").inc(deleted)
        logger.info(f"Deleted {deleted} messages older than {self.retention_hours}h")
        return deleted

    def delete_dead_addresses(self, now: Optional[datetime] = None) -> int:
        """Delete expired or deactivated addresses and their messages.

        Messages are deleted explicitly rather than relying on the
        foreign key cascade, which SQLite does not enforce by default.

        Returns:
            Number of addresses deleted
        """
        now = now or self.clock()
        dead_ids = [
            row.id for row in self.db.query(TempAddress.id).filter(
                or_(TempAddress.expires_at <= now, TempAddress.is_active.is_(False))
            ).all()
        ]
        if not dead_ids:
            return 0

        messages_deleted = self.db.query(InboundMessage).filter(
            InboundMessage.temp_address_id.in_(dead_ids)
        ).delete(synchronize_session=False)
        deleted = self.db.query(TempAddress).filter(
            TempAddress.id.in_(dead_ids)
        ).delete(synchronize_session=False)
        self.db.commit()

        retention_deleted_total.labels(table="inbound_message").inc(messages_deleted)
        retention_deleted_total.labels(table="temp_address").inc(deleted)
        logger.info(f"Deleted {deleted} expired or inactive addresses ({messages_deleted} messages)")
        return deleted

    def run_cleanup(self) -> RetentionStatistics:
        """Run every cleanup step; a failing step is logged and counted."""
        now = self.clock()
        statistics = RetentionStatistics(job_started_at=now)

        try:
            statistics.messages_deleted = self.delete_old_messages(now)
        except SQLAlchemyError as e:
            self.db.rollback()
            statistics.database_errors += 1
            logger.error(f"Failed to delete old messages: {e}", exc_info=True)

        try:
            statistics.addresses_deleted = self.delete_dead_addresses(now)
        except SQLAlchemyError as e:
            self.db.rollback()
            statistics.database_errors += 1
            logger.error(f"Failed to delete expired addresses: {e}", exc_info=True)

        statistics.job_completed_at = self.clock()
        return statistics

    def get_address_statistics(self, now: Optional[datetime] = None) -> AddressStatistics:
        now = now or self.clock()
        active = self.db.query(func.count(TempAddress.id)).filter(
            TempAddress.is_active.is_(True),
            TempAddress.expires_at > now,
        ).scalar() or 0
        expired = self.db.query(func.count(TempAddress.id)).filter(
            TempAddress.expires_at <= now,
        ).scalar() or 0
        total = self.db.query(func.count(TempAddress.id)).scalar() or 0
        return AddressStatistics(active=active, expired=expired, total=total)

    def get_message_statistics(self, now: Optional[datetime] = None) -> MessageStatistics:
        now = now or self.clock()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        total = self.db.query(func.count(InboundMessage.id)).scalar() or 0
        unread = self.db.query(func.count(InboundMessage.id)).filter(
            InboundMessage.is_read.is_(False),
        ).scalar() or 0
        today = self.db.query(func.count(InboundMessage.id)).filter(
            InboundMessage.received_at >= midnight,
        ).scalar() or 0
        return MessageStatistics(total=total, unread=unread, today=today)

    def get_statistics(self, cleanup_interval_minutes: int) -> ServiceStatistics:
        now = self.clock()
        return ServiceStatistics(
            addresses=self.get_address_statistics(now),
            messages=self.get_message_statistics(now),
            scheduler=SchedulerInfo(
                cleanup_interval_minutes=cleanup_interval_minutes,
                email_retention_hours=self.retention_hours,
            ),
            generated_at=now,
        )
