"""Read side of the inbox.

Queries, previews, read-marking and deletion of inbound_message rows
for one temporary address. All methods take the owning address id so
a token can never reach another address's mail.
"""

import re
from typing import List, Optional
from uuid import UUID

from sqlalchemy import desc, func, or_
from sqlalchemy.orm import Query, Session

from ..models.inbound_message import InboundMessage
from .schemas import EmailPreview

PREVIEW_LENGTH = 150

_WHITESPACE = re.compile(r"\s+")


def create_text_preview(text: Optional[str], max_length: int = PREVIEW_LENGTH) -> str:
    """Collapse whitespace and cut to ``max_length`` characters (``...`` appended)."""
    if not text:
        return ""
    cleaned = _WHITESPACE.sub(" ", text).strip()
    if len(cleaned) <= max_length:
        return cleaned
    return cleaned[:max_length] + "..."


def to_preview(message: InboundMessage) -> EmailPreview:
    return EmailPreview(
        id=message.id,
        sender_email=message.sender_email,
        sender_name=message.sender_name,
        subject=message.subject,
        received_at=message.received_at,
        is_read=message.is_read,
        has_attachments=message.has_attachments,
        size_bytes=message.size_bytes,
        preview=create_text_preview(message.body_text),
    )


class InboxService:
    """Message queries scoped to one temporary address."""

    def __init__(self, db: Session):
        self.db = db

    def _messages(self, address_id: UUID) -> Query:
        return self.db.query(InboundMessage).filter(InboundMessage.temp_address_id == address_id)

    def list_messages(
        self,
        address_id: UUID,
        limit: int = 50,
        offset: int = 0,
        only_unread: bool = False,
    ) -> List[InboundMessage]:
        """Messages newest first."""
        query = self._messages(address_id)
        if only_unread:
            query = query.filter(InboundMessage.is_read.is_(False))
        return (
            query.order_by(desc(InboundMessage.received_at), desc(InboundMessage.id))
            .offset(offset)
            .limit(limit)
            .all()
        )

    def count_messages(self, address_id: UUID, only_unread: bool = False) -> int:
        query = self.db.query(func.count(InboundMessage.id)).filter(
            InboundMessage.temp_address_id == address_id
        )
        if only_unread:
            query = query.filter(InboundMessage.is_read.is_(False))
        return query.scalar() or 0

    def get_message(self, address_id: UUID, message_id: UUID) -> Optional[InboundMessage]:
        return self._messages(address_id).filter(InboundMessage.id == message_id).first()

    def mark_read(self, message: InboundMessage) -> InboundMessage:
        if not message.is_read:
            message.is_read = True
            self.db.flush()
        return message

    def delete_message(self, address_id: UUID, message_id: UUID) -> bool:
        """Delete one message. Returns False if it does not belong to the address."""
        deleted = self._messages(address_id).filter(
            InboundMessage.id == message_id
        ).delete(synchronize_session=False)
        return deleted > 0

    def delete_all(self, address_id: UUID) -> int:
        return self._messages(address_id).delete(synchronize_session=False)

    def search(
        self,
        address_id: UUID,
        text: str,
        limit: int = 20,
        offset: int = 0,
    ) -> List[InboundMessage]:
        """Case-insensitive substring match on subject, sender and text body."""
        pattern = f"%{text}%"
        return (
            self._messages(address_id)
            .filter(
                or_(
                    InboundMessage.subject.ilike(pattern),
                    InboundMessage.sender_email.ilike(pattern),
                    InboundMessage.body_text.ilike(pattern),
                )
            )
            .order_by(desc(InboundMessage.received_at))
            .offset(offset)
            .limit(limit)
            .all()
        )
