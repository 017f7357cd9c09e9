"""Message ingestion pipeline.

Turns the raw bytes of one SMTP DATA payload into a structured
candidate record, or a rejection. The pipeline never consults the
address store; routing against live addresses happens in the
InboundMailHandler.

Steps:
1. Structural parse (headers, bodies, attachment metadata)
2. Recipient resolution (To → Envelope-To → Delivered-To → RCPT TO)
3. Subject normalization
4. Leaked-header clean-up of the text body
5. Quoted-printable residue decoding
6. Size and Message-ID
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from ...models.base import utcnow
from .errors import ParseFailure
from .mime_parser import (
    AttachmentMetadata,
    clean_leaked_headers,
    decode_quoted_printable,
    extract_attachments,
    extract_bodies,
    extract_headers,
    first_address,
    header_values,
    generate_synthetic_message_id,
    needs_quoted_printable_decoding,
    parse_address_list,
    parse_mime_message,
)

logger = logging.getLogger(__name__)

DEFAULT_SUBJECT = "(No Subject)"
UNKNOWN_SENDER = "unknown"

# Header fallbacks consulted after To, in order
RECIPIENT_HEADERS = ("envelope-to", "delivered-to")


class RejectionReason(str, Enum):
    """Why the pipeline refused to produce a candidate."""
    UNROUTABLE = "unroutable"
    PARSE_FAILURE = "parse_failure"


@dataclass(frozen=True)
class Rejection:
    """Pipeline outcome for a message that cannot be routed or parsed."""
    reason: RejectionReason
    detail: str = ""


@dataclass
class CandidateMessage:
    """Structured record produced from one raw message.

    Attributes:
        message_id: Message-ID header or a synthesized one
        sender_email: First From address (``unknown`` when missing)
        sender_name: Display name of the sender, if any
        recipient_email: Resolved recipient, lower-cased
        subject: Trimmed subject or ``(No Subject)``
        body_text: Cleaned plain-text body
        body_html: HTML body
        attachments: Attachment metadata (no content)
        headers: Header map with lower-cased names
        size_bytes: Length of the raw input
        received_at: Time the pipeline ran
    """
    message_id: str
    sender_email: str
    sender_name: Optional[str]
    recipient_email: str
    subject: str
    body_text: str
    body_html: str
    attachments: List[AttachmentMetadata] = field(default_factory=list)
    headers: Dict[str, str] = field(default_factory=dict)
    size_bytes: int = 0
    received_at: datetime = field(default_factory=utcnow)

    def to_record(self) -> Dict[str, Any]:
        """Column values for an InboundMessage row."""
        return {
            "message_id": self.message_id,
            "sender_email": self.sender_email,
            "sender_name": self.sender_name,
            "recipient_email": self.recipient_email,
            "subject": self.subject,
            "body_text": self.body_text,
            "body_html": self.body_html,
            "attachments": [attachment.to_dict() for attachment in self.attachments],
            "headers": dict(self.headers),
            "size_bytes": self.size_bytes,
            "received_at": self.received_at,
        }


IngestResult = Union[CandidateMessage, Rejection]


def resolve_recipient(
    headers: Dict[str, str],
    envelope_recipients: Sequence[str] = (),
) -> Optional[str]:
    """Pick the address a message should be delivered to.

    Fallback order: first ``To`` address, ``Envelope-To``,
    ``Delivered-To``, then the first envelope ``RCPT TO`` address.

    Returns:
        Lower-cased address, or None when nothing usable is present
    """
    recipient = first_address(headers.get("to"))
    if recipient:
        return recipient

    for name in RECIPIENT_HEADERS:
        value = headers.get(name, "").strip()
        if value:
            return (first_address(value) or value).lower()

    for address in envelope_recipients:
        if address and address.strip():
            return address.strip().lower()

    return None


def resolve_sender(from_values: Sequence[str]) -> Tuple[str, Optional[str]]:
    """Return ``(sender_email, sender_name)`` from the From header(s).

    SMTP sessions prepend an envelope ``From`` without a display name, so
    the name is taken from any later From header naming the same address.
    """
    senders = [pair for value in from_values for pair in parse_address_list(value)]
    if not senders:
        return UNKNOWN_SENDER, None

    sender_email = senders[0][1]
    sender_name = next(
        (
            name for name, address in senders
            if name and address.lower() == sender_email.lower()
        ),
        None,
    )
    return sender_email, sender_name


def normalize_subject(subject: Optional[str]) -> str:
    """Trim the subject, defaulting to ``(No Subject)`` when blank."""
    if subject is None or not subject.strip():
        return DEFAULT_SUBJECT
    return subject.strip()


def clean_body_text(body_text: str) -> str:
    """Apply leaked-header clean-up, then quoted-printable decoding."""
    cleaned = clean_leaked_headers(body_text)
    if needs_quoted_printable_decoding(cleaned):
        cleaned = decode_quoted_printable(cleaned)
    return cleaned.strip()


def ingest_message(
    raw: bytes,
    envelope_recipients: Sequence[str] = (),
    received_at: Optional[datetime] = None,
) -> IngestResult:
    """Transform a raw RFC822 message into a candidate record.

    Args:
        raw: Raw message bytes (headers + body, possibly multipart)
        envelope_recipients: RCPT TO addresses of the SMTP session
        received_at: Receive timestamp (defaults to now)

    Returns:
        CandidateMessage, or Rejection with reason ``unroutable`` or
        ``parse_failure``
    """
    try:
        msg = parse_mime_message(raw)
        headers = extract_headers(msg)
        body_text, body_html = extract_bodies(msg)
        attachments = extract_attachments(msg)
    except ParseFailure as e:
        return Rejection(RejectionReason.PARSE_FAILURE, str(e))

    recipient = resolve_recipient(headers, envelope_recipients)
    if not recipient:
        logger.warning("Dropping message without a routable recipient")
        return Rejection(RejectionReason.UNROUTABLE, "no recipient address found")

    sender_email, sender_name = resolve_sender(header_values(msg, "from"))

    message_id = headers.get("message-id", "").strip()
    if not message_id:
        message_id = generate_synthetic_message_id()
        logger.debug(f"Message without Message-ID, generated {message_id}")

    return CandidateMessage(
        message_id=message_id,
        sender_email=sender_email,
        sender_name=sender_name,
        recipient_email=recipient,
        subject=normalize_subject(headers.get("subject")),
        body_text=clean_body_text(body_text),
        body_html=body_html.strip(),
        attachments=attachments,
        headers=headers,
        size_bytes=len(raw),
        received_at=received_at or utcnow(),
    )
