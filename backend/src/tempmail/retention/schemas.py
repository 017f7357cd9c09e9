"""Pydantic schemas for retention statistics.

This module defines retention-related schemas:
- RetentionStatistics: Result of one cleanup run
- AddressStatistics / MessageStatistics: Point-in-time counters
- ServiceStatistics: Response of GET /api/admin/stats
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field


class RetentionStatistics(BaseModel):
    """Statistics from one retention cleanup run."""

    job_started_at: datetime
    job_completed_at: Optional[datetime] = None
    messages_deleted: int = Field(0, description="Messages older than the retention window")
    addresses_deleted: int = Field(0, description="Expired or deactivated addresses (with their messages)")
    database_errors: int = 0

    @property
    def duration_seconds(self) -> Optional[float]:
        if self.job_completed_at is None:
            return None
        return (self.job_completed_at - self.job_started_at).total_seconds()

    @property
    def total_deleted(self) -> int:
        return self.messages_deleted + self.addresses_deleted

    @property
    def has_errors(self) -> bool:
        return self.database_errors > 0


class AddressStatistics(BaseModel):
    active: int = Field(..., description="Active and not yet expired")
    expired: int = Field(..., description="Past their expiry time")
    total: int


class MessageStatistics(BaseModel):
    total: int
    unread: int
    today: int = Field(..., description="Received since midnight UTC")


class SchedulerInfo(BaseModel):
    cleanup_interval_minutes: int
    email_retention_hours: int


class ServiceStatistics(BaseModel):
    """Service-wide counters for the admin dashboard."""
    addresses: AddressStatistics
    messages: MessageStatistics
    scheduler: SchedulerInfo
    generated_at: datetime
