"""MIME parser for inbound mail.

Handles parsing of raw RFC822/MIME messages into headers, bodies and
attachment metadata, plus the text clean-up helpers applied to the
plain-text body. Attachment payloads are measured but never kept.
"""

import email
import email.policy
import html
import logging
import re
import time
import uuid
from dataclasses import dataclass
from email.message import EmailMessage
from email.utils import getaddresses
from typing import Any, Dict, List, Optional, Tuple

from .errors import ParseFailure

logger = logging.getLogger(__name__)

SYNTHETIC_MESSAGE_ID_DOMAIN = "tempmail.local"

# Number of lines skipped past a leaked Content-Type/Content-Transfer-Encoding
# line to get over the rest of the part headers
PART_HEADER_SKIP_LINES = 3

_SOFT_LINE_BREAK = re.compile(r"=\r?\n")
_HEX_ESCAPE = re.compile(r"=[0-9A-F]{2}")
_HEX_ESCAPE_BYTES = re.compile(rb"=([0-9A-F]{2})")

_HTML_BLOCK_TAGS = re.compile(r"<\s*(br|/p|/div|/tr|/h[1-6]|/li)\b[^>]*>", re.IGNORECASE)
_HTML_DROP_BLOCKS = re.compile(r"<(script|style|head)\b.*?</\1\s*>", re.IGNORECASE | re.DOTALL)
_HTML_TAG = re.compile(r"<[^>]+>")


@dataclass
class AttachmentMetadata:
    """Metadata about an email attachment (content is never stored)."""

    filename: str
    content_type: str
    size_bytes: int
    content_id: Optional[str] = None
    content_disposition: Optional[str] = None
    has_content: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "filename": self.filename,
            "content_type": self.content_type,
            "size_bytes": self.size_bytes,
            "content_id": self.content_id,
            "content_disposition": self.content_disposition,
            "has_content": self.has_content,
        }


def parse_mime_message(raw_mime: bytes) -> EmailMessage:
    """Parse raw MIME bytes into an EmailMessage.

    Args:
        raw_mime: Raw MIME message bytes

    Returns:
        EmailMessage: Parsed MIME message

    Raises:
        ParseFailure: If MIME parsing fails
    """
    try:
        return email.message_from_bytes(raw_mime, policy=email.policy.default)
    except Exception as e:
        logger.error(f"Failed to parse MIME message: {e}")
        raise ParseFailure(f"Invalid MIME message: {e}") from e


def _header_value(msg: EmailMessage, name: str, raw_value: Any) -> str:
    try:
        return str(msg.policy.header_fetch_parse(name, raw_value))
    except Exception as e:
        logger.debug(f"Keeping raw value for unparsable header {name}: {e}")
        return " ".join(str(raw_value).split())


def extract_headers(msg: EmailMessage) -> Dict[str, str]:
    """Flatten message headers into a map keyed by lower-cased name.

    The first occurrence of a repeated header wins. Values are decoded
    (RFC 2047) where the header parses, and unfolded raw text otherwise.
    """
    headers: Dict[str, str] = {}
    for name, raw_value in msg.raw_items():
        key = name.lower()
        if key not in headers:
            headers[key] = _header_value(msg, name, raw_value)
    return headers


def header_values(msg: EmailMessage, name: str) -> List[str]:
    """All values of a possibly repeated header, in message order."""
    wanted = name.lower()
    return [
        _header_value(msg, header_name, raw_value)
        for header_name, raw_value in msg.raw_items()
        if header_name.lower() == wanted
    ]


def parse_address_list(value: Optional[str]) -> List[Tuple[str, str]]:
    """Parse an address header into ``(display_name, address)`` pairs.

    Entries without an address are skipped.
    """
    if not value:
        return []
    return [
        (name.strip(), address.strip())
        for name, address in getaddresses([value])
        if address and address.strip()
    ]


def first_address(value: Optional[str]) -> Optional[str]:
    """Return the first address in an address header, lower-cased."""
    addresses = parse_address_list(value)
    if not addresses:
        return None
    return addresses[0][1].lower()


def _is_attachment(part: EmailMessage) -> bool:
    disposition = part.get_content_disposition()
    if disposition == "attachment":
        return True
    if part.get_filename():
        return True
    return part.get_content_maintype() != "text"


def _decode_text_part(part: EmailMessage) -> str:
    try:
        # get_content() handles quoted-printable, base64 and charsets
        return part.get_content()
    except Exception as e:
        logger.warning(f"Failed to decode text part with get_content(): {e}")
        payload = part.get_payload(decode=True) or b""
        charset = part.get_content_charset() or "utf-8"
        try:
            return payload.decode(charset, errors="replace")
        except LookupError:
            return payload.decode("utf-8", errors="replace")


def extract_bodies(msg: EmailMessage) -> Tuple[str, str]:
    """Extract the plain-text and HTML bodies.

    The first non-attachment ``text/plain`` and ``text/html`` parts win.
    When the message has HTML only, the text body is derived from it.

    Returns:
        Tuple of (body_text, body_html)
    """
    body_text = ""
    body_html = ""

    for part in msg.walk():
        if part.is_multipart() or _is_attachment(part):
            continue
        content_type = part.get_content_type()
        if content_type == "text/html":
            if not body_html:
                body_html = _decode_text_part(part)
        elif content_type.startswith("text/"):
            if not body_text:
                body_text = _decode_text_part(part)

    if not body_text and body_html:
        body_text = html_to_text(body_html)

    return body_text, body_html


def extract_attachments(msg: EmailMessage) -> List[AttachmentMetadata]:
    """Collect metadata for every attachment in the MIME tree.

    Walks the entire MIME tree. Skips multipart containers and the
    inline text parts used as message bodies. Inline images with a
    Content-ID count as attachments.
    """
    attachments = []

    for part in msg.walk():
        if part.is_multipart() or not _is_attachment(part):
            continue

        try:
            payload = part.get_payload(decode=True)
        except Exception as e:
            logger.warning(f"Failed to decode attachment payload: {e}")
            payload = None

        size_bytes = len(payload) if payload else 0
        content_id = part.get("Content-ID")

        attachments.append(AttachmentMetadata(
            filename=part.get_filename() or "unnamed",
            content_type=part.get_content_type() or "application/octet-stream",
            size_bytes=size_bytes,
            content_id=str(content_id).strip() if content_id else None,
            content_disposition=part.get_content_disposition(),
            has_content=size_bytes > 0,
        ))

    return attachments


def html_to_text(body_html: str) -> str:
    """Very small HTML to text conversion used when no text part exists."""
    text = _HTML_DROP_BLOCKS.sub("", body_html)
    text = _HTML_BLOCK_TAGS.sub("\n", text)
    text = _HTML_TAG.sub("", text)
    text = html.unescape(text)
    lines = [" ".join(line.split()) for line in text.splitlines()]
    return "\n".join(line for line in lines if line).strip()


def generate_synthetic_message_id(now: Optional[float] = None) -> str:
    """Generate a Message-ID for messages that arrive without one.

    Combines a millisecond timestamp with a random token under a fixed
    local domain, e.g. ``<1760659200000.3f9a1c2b7@tempmail.local>``.
    """
    millis = int((now if now is not None else time.time()) * 1000)
    token = uuid.uuid4().hex[:9]
    return f"<{millis}.{token}@{SYNTHETIC_MESSAGE_ID_DOMAIN}>"


def has_leaked_headers(body_text: str) -> bool:
    """True when raw transport headers leaked into the plain-text body."""
    lines = [line.strip() for line in body_text.splitlines()]
    has_received = any(line.startswith("Received: by") for line in lines)
    has_dkim = any(line.startswith("DKIM-Signature:") for line in lines)
    return has_received and has_dkim


def clean_leaked_headers(body_text: str) -> str:
    """Strip leaked transport headers from the front of a text body.

    Best-effort heuristic, applied only when the body contains both a
    ``Received: by`` line and a ``DKIM-Signature:`` line. Lines are scanned
    in order for the first message-start marker:

    a. a MIME boundary line (starts with ``--`` and mentions ``boundary``)
    b. a non-empty line without ``:`` directly after a blank line
    c. a ``Content-Type: text/plain`` or ``Content-Transfer-Encoding:``
       line, in which case the body starts a few lines further down

    When a marker is found past the first line, everything before it is
    dropped. Unusual formatting can still defeat this.
    """
    if not body_text or not has_leaked_headers(body_text):
        return body_text

    lines = body_text.split("\n")
    start = -1

    for index, raw_line in enumerate(lines):
        line = raw_line.strip()

        if line.startswith("--") and "boundary" in line:
            start = index
            break

        if (
            index > 0
            and lines[index - 1].strip() == ""
            and line
            and ":" not in line
        ):
            start = index
            break

        if "Content-Type: text/plain" in line or "Content-Transfer-Encoding:" in line:
            start = min(index + PART_HEADER_SKIP_LINES, len(lines) - 1)
            break

    if start > 0:
        cleaned = "\n".join(lines[start:]).strip()
        logger.info(
            "Removed leaked headers from body text",
            extra={"size_bytes": len(cleaned)},
        )
        return cleaned

    return body_text


def needs_quoted_printable_decoding(body_text: str) -> bool:
    """True when the text carries soft line breaks or ``=XX`` escapes."""
    return bool(_SOFT_LINE_BREAK.search(body_text) or _HEX_ESCAPE.search(body_text))


def decode_quoted_printable(body_text: str) -> str:
    """Decode quoted-printable residue left in an already decoded body.

    Soft line breaks are removed and each ``=XX`` escape is replaced by
    the byte it names; the resulting bytes are read as UTF-8.
    """
    joined = _SOFT_LINE_BREAK.sub("", body_text)
    decoded = _HEX_ESCAPE_BYTES.sub(
        lambda match: bytes([int(match.group(1), 16)]),
        joined.encode("utf-8"),
    )
    return decoded.decode("utf-8", errors="replace")
