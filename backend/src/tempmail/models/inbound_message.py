"""InboundMessage model - Represents a received email.

Rows are created once by the SMTP ingest path for a live temporary
address and never mutated by it afterwards. The REST API flips
``is_read`` and deletes rows; the retention job purges old ones.
"""

import uuid

from sqlalchemy import (
    Column,
    String,
    Text,
    Boolean,
    Integer,
    DateTime,
    ForeignKey,
    Index,
    Uuid,
)
from sqlalchemy.orm import relationship

from .base import Base, PortableJSONB, utcnow


class InboundMessage(Base):
    """
    InboundMessage model - A parsed email delivered to a temporary address.

    Attachment payloads are never stored: ``attachments`` holds metadata
    only (filename, content type, size, content id, disposition).
    ``headers`` maps lower-cased header names to their string values.
    """
    __tablename__ = "inbound_message"

    id = Column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    temp_address_id = Column(
        Uuid(as_uuid=True),
        ForeignKey("temp_address.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    message_id = Column(Text, nullable=False)

    sender_email = Column(String(320), nullable=False)
    sender_name = Column(Text, nullable=True)
    recipient_email = Column(String(320), nullable=False)

    subject = Column(Text, nullable=False, default="(No Subject)")
    body_text = Column(Text, nullable=False, default="")
    body_html = Column(Text, nullable=False, default="")

    attachments = Column(PortableJSONB, nullable=False, default=list)
    headers = Column(PortableJSONB, nullable=False, default=dict)

    received_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    is_read = Column(Boolean, nullable=False, default=False)
    size_bytes = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index('idx_inbound_address_received', 'temp_address_id', 'received_at'),
        Index('idx_inbound_recipient', 'recipient_email'),
        Index('idx_inbound_received_at', 'received_at'),
    )

    temp_address = relationship("TempAddress", back_populates="messages")

    @property
    def has_attachments(self) -> bool:
        return bool(self.attachments)

    def __repr__(self):
        return (
            f"<InboundMessage(id={self.id}, temp_address_id={self.temp_address_id}, "
            f"from={self.sender_email}, subject={self.subject!r})>"
        )
