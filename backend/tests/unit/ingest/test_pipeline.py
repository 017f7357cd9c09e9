"""Unit tests for the message ingestion pipeline."""

from datetime import datetime, timezone

import pytest

from tempmail.infrastructure.ingest.pipeline import (
    DEFAULT_SUBJECT,
    UNKNOWN_SENDER,
    CandidateMessage,
    Rejection,
    RejectionReason,
    clean_body_text,
    ingest_message,
    normalize_subject,
    resolve_recipient,
    resolve_sender,
)

RECEIVED_AT = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def ingest(raw: bytes, envelope=()) -> CandidateMessage:
    result = ingest_message(raw, envelope, received_at=RECEIVED_AT)
    assert isinstance(result, CandidateMessage), result
    return result


class TestSubject:
    """Test subject normalization"""

    def test_missing_subject_defaults(self):
        candidate = ingest(b"To: t@tmp.test\r\n\r\nbody")
        assert candidate.subject == DEFAULT_SUBJECT == "(No Subject)"

    @pytest.mark.parametrize("value", [None, "", "   "])
    def test_blank_subject_defaults(self, value):
        assert normalize_subject(value) == "(No Subject)"

    def test_subject_is_trimmed(self):
        assert normalize_subject("  Hi there ") == "Hi there"


class TestRecipientResolution:
    """Test To → Envelope-To → Delivered-To → RCPT TO fallback"""

    def test_to_header_first(self):
        headers = {"to": "Inbox <Inbox@Tmp.test>", "envelope-to": "other@tmp.test"}
        assert resolve_recipient(headers, ["rcpt@tmp.test"]) == "inbox@tmp.test"

    def test_envelope_to_header(self):
        headers = {"envelope-to": "Env@Tmp.test", "delivered-to": "d@tmp.test"}
        assert resolve_recipient(headers, ["rcpt@tmp.test"]) == "env@tmp.test"

    def test_delivered_to_header(self):
        assert resolve_recipient({"delivered-to": "d@tmp.test"}, ["rcpt@tmp.test"]) == "d@tmp.test"

    def test_envelope_recipient_last(self):
        assert resolve_recipient({"to": ""}, ["", "RCPT@tmp.test"]) == "rcpt@tmp.test"

    def test_nothing_found(self):
        assert resolve_recipient({}, []) is None

    def test_unroutable_message_is_rejected(self):
        result = ingest_message(b"Subject: lost\r\n\r\nbody", [])
        assert isinstance(result, Rejection)
        assert result.reason is RejectionReason.UNROUTABLE

    def test_envelope_recipient_used_when_headers_missing(self):
        candidate = ingest(b"Subject: x\r\n\r\nbody", ["t@tmp.test"])
        assert candidate.recipient_email == "t@tmp.test"


class TestSender:
    """Test sender extraction"""

    def test_name_from_later_from_header(self):
        values = ["a@x.test", '"Alice" <a@x.test>']
        assert resolve_sender(values) == ("a@x.test", "Alice")

    def test_unknown_sender(self):
        assert resolve_sender([]) == (UNKNOWN_SENDER, None)

    def test_sender_without_name(self):
        assert resolve_sender(["b@y.test"]) == ("b@y.test", None)


class TestBodyCleanup:
    """Test clean-up of the plain-text body"""

    def test_quoted_printable_residue(self):
        assert clean_body_text("Caf=C3=A9") == "Café"

    def test_leaked_headers_then_qp(self):
        body = "Received: by mx\nDKIM-Signature: v=1\n\nPrix 5=E2=82=AC"
        assert clean_body_text(body) == "Prix 5€"

    def test_plain_body_is_trimmed(self):
        assert clean_body_text("\n  Hello world \n") == "Hello world"


class TestIngestMessage:
    """Test the full pipeline on raw messages"""

    def test_smtp_assembled_message(self):
        raw = (
            b"From: a@x.test\r\nTo: t@tmp.test\r\nDate: Sat, 17 Oct 2026 12:00:00 GMT\r\n"
            b"Subject: Hi\r\n\r\nHello world\r\n"
        )
        candidate = ingest(raw, ["t@tmp.test"])

        assert candidate.subject == "Hi"
        assert candidate.body_text == "Hello world"
        assert candidate.sender_email == "a@x.test"
        assert candidate.recipient_email == "t@tmp.test"
        assert candidate.size_bytes == len(raw)
        assert candidate.received_at == RECEIVED_AT
        assert candidate.headers["subject"] == "Hi"

    def test_message_id_kept(self):
        candidate = ingest(b"To: t@tmp.test\r\nMessage-ID: <abc@x.test>\r\n\r\nbody")
        assert candidate.message_id == "<abc@x.test>"

    def test_message_id_synthesized(self):
        candidate = ingest(b"To: t@tmp.test\r\n\r\nbody")
        assert candidate.message_id.startswith("<")
        assert candidate.message_id.endswith("@tempmail.local>")

    def test_missing_from_is_unknown(self):
        assert ingest(b"To: t@tmp.test\r\n\r\nbody").sender_email == "unknown"

    def test_transfer_encoded_body(self):
        raw = (
            b"To: t@tmp.test\r\nContent-Type: text/plain; charset=utf-8\r\n"
            b"Content-Transfer-Encoding: quoted-printable\r\n\r\nCaf=C3=A9\r\n"
        )
        assert ingest(raw).body_text == "Café"

    def test_record_values(self):
        candidate = ingest(b"To: t@tmp.test\r\nSubject: s\r\n\r\nbody")
        record = candidate.to_record()
        assert record["recipient_email"] == "t@tmp.test"
        assert record["attachments"] == []
        assert record["headers"]["subject"] == "s"
        assert "id" not in record
