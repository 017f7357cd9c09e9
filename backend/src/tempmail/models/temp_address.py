"""TempAddress model - A short-lived receiving address.

Each temporary address accepts inbound mail until it expires or is
deactivated. The SMTP ingest path only reads these rows; creation,
extension and deactivation happen through the REST API, and removal
through the retention cleanup job.
"""

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import Column, String, Boolean, DateTime, Index, Uuid
from sqlalchemy.orm import relationship, validates

from .base import Base, utcnow, as_utc


class TempAddress(Base):
    """
    TempAddress model - A disposable email address with an expiry.

    Addresses are stored lower-cased so lookups are case-insensitive.
    An address is *live* iff ``is_active`` and the current time is before
    ``expires_at``.
    """
    __tablename__ = "temp_address"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    email_address = Column(String(320), nullable=False, unique=True)

    # Bearer token handed to the client; grants read access to the inbox
    access_token = Column(
        String(36),
        nullable=False,
        unique=True,
        default=lambda: str(uuid.uuid4()),
    )

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    expires_at = Column(DateTime(timezone=True), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index('idx_temp_address_expires_at', 'expires_at'),
        Index('idx_temp_address_active', 'is_active'),
    )

    messages = relationship(
        "InboundMessage",
        back_populates="temp_address",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @validates('email_address')
    def normalize_email_address(self, key, value):
        """Store addresses lower-cased and trimmed."""
        if not value or not value.strip():
            raise ValueError("email_address must not be empty")
        return value.strip().lower()

    def is_live(self, now: Optional[datetime] = None) -> bool:
        """Return True if the address can currently receive mail."""
        now = now or utcnow()
        return bool(self.is_active) and now < as_utc(self.expires_at)

    def __repr__(self):
        return (
            f"<TempAddress(id={self.id}, email_address={self.email_address}, "
            f"expires_at={self.expires_at}, is_active={self.is_active})>"
        )
