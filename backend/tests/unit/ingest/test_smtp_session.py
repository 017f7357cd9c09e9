"""Unit tests for the SMTP session state machine and line reassembly.

Drives SMTPSession directly with protocol lines; no sockets involved.
"""

from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from tempmail.infrastructure.ingest.pipeline import ingest_message
from tempmail.infrastructure.ingest.smtp_session import (
    ALLOWED_TRANSITIONS,
    LineBuffer,
    SessionState,
    SMTPSession,
    assemble_raw_message,
    extract_address,
    has_header_block,
)

FIXED_NOW = datetime(2026, 10, 17, 12, 0, tzinfo=timezone.utc)


def make_session(**kwargs) -> SMTPSession:
    kwargs.setdefault("hostname", "mx.test")
    kwargs.setdefault("clock", lambda: FIXED_NOW)
    return SMTPSession(**kwargs)


def feed(session: SMTPSession, *lines: str):
    """Send lines and return the list of SessionResults."""
    return [session.handle_line(line.encode()) for line in lines]


def replies(session: SMTPSession, *lines: str):
    return [result.reply for result in feed(session, *lines)]


class TestLineBuffer:
    """Test CRLF reassembly across reads"""

    def test_complete_lines(self):
        buffer = LineBuffer()
        assert buffer.feed(b"HELO a\r\nQUIT\r\n") == [b"HELO a", b"QUIT"]
        assert buffer.pending == b""

    def test_fragment_is_kept_for_next_read(self):
        buffer = LineBuffer()
        assert buffer.feed(b"HE") == []
        assert buffer.feed(b"LO cli") == []
        assert buffer.feed(b"ent\r\nMAIL") == [b"HELO client"]
        assert buffer.pending == b"MAIL"

    def test_crlf_split_between_reads(self):
        buffer = LineBuffer()
        assert buffer.feed(b"QUIT\r") == []
        assert buffer.feed(b"\n") == [b"QUIT"]

    def test_empty_line(self):
        buffer = LineBuffer()
        assert buffer.feed(b"\r\n") == [b""]

    def test_overlong_line_reported_as_none(self):
        buffer = LineBuffer(max_line_length=8)
        assert buffer.feed(b"0123456789\r\nQUIT\r\n") == [None, b"QUIT"]

    def test_overlong_fragment_discarded_until_crlf(self):
        buffer = LineBuffer(max_line_length=8)
        assert buffer.feed(b"0123456789") == []
        assert buffer.pending == b""
        assert buffer.feed(b"abcdef") == []
        assert buffer.feed(b"\r\nRSET\r\n") == [None, b"RSET"]

    def test_line_at_limit_is_accepted(self):
        buffer = LineBuffer(max_line_length=4)
        assert buffer.feed(b"QUIT\r\n") == [b"QUIT"]


class TestExtractAddress:
    """Test MAIL FROM / RCPT TO argument parsing"""

    def test_address_inside_brackets(self):
        assert extract_address("<a@x.test>") == "a@x.test"

    def test_keeps_case(self):
        assert extract_address(" <Mixed.Case@X.test> SIZE=100") == "Mixed.Case@X.test"

    def test_missing_brackets_yield_empty(self):
        assert extract_address("a@x.test") == ""

    def test_null_sender(self):
        assert extract_address("<>") == ""

    @pytest.mark.parametrize("argument", ["<a@x.test\nBcc: v@x.test>", "<a@x.test\rBcc: v@x.test>"])
    def test_line_breaks_inside_brackets_are_rejected(self, argument):
        assert extract_address(argument) == ""

    def test_bare_cr_cannot_inject_headers(self):
        session = make_session()
        feed(session, "HELO c")
        session.handle_line(b"MAIL FROM:<a@x.test\rBcc: v@x.test>")
        assert session.envelope.mail_from == ""


class TestTransitions:
    """Test the command/state transition table"""

    def test_greeting(self):
        assert make_session().greeting() == "220 mx.test SMTP Service Ready"

    def test_initial_state(self):
        assert make_session().state is SessionState.INIT

    def test_helo_and_ehlo(self):
        session = make_session()
        assert replies(session, "HELO client") == ["250 mx.test Hello"]
        assert session.state is SessionState.READY
        assert replies(session, "EHLO client") == ["250 mx.test Hello"]
        assert session.state is SessionState.READY

    def test_full_transaction_states(self):
        session = make_session()
        feed(session, "HELO c")
        feed(session, "MAIL FROM:<a@x.test>")
        assert session.state is SessionState.HAVE_SENDER
        feed(session, "RCPT TO:<t@tmp.test>")
        assert session.state is SessionState.HAVE_RECIPIENT
        assert replies(session, "DATA") == ["354 Start mail input; end with <CRLF>.<CRLF>"]
        assert session.state is SessionState.RECEIVING_DATA
        feed(session, "body")
        assert replies(session, ".") == ["250 OK: Message accepted"]
        assert session.state is SessionState.READY

    def test_commands_are_case_insensitive(self):
        session = make_session()
        assert replies(
            session,
            "helo c",
            "mail from:<a@x.test>",
            "rcpt to:<t@tmp.test>",
        ) == ["250 mx.test Hello", "250 OK", "250 OK"]
        assert session.envelope.rcpt_tos == ["t@tmp.test"]

    def test_multiple_recipients(self):
        session = make_session()
        feed(session, "HELO c", "MAIL FROM:<a@x.test>", "RCPT TO:<one@tmp.test>", "RCPT TO:<two@tmp.test>")
        assert session.envelope.rcpt_tos == ["one@tmp.test", "two@tmp.test"]

    @pytest.mark.parametrize("command", ["MAIL FROM:<a@x.test>", "RCPT TO:<t@tmp.test>", "DATA"])
    def test_transaction_commands_before_helo_are_rejected(self, command):
        session = make_session()
        assert replies(session, command) == ["503 Bad sequence of commands"]
        assert session.state is SessionState.INIT

    def test_rcpt_without_mail_is_rejected(self):
        session = make_session()
        feed(session, "HELO c")
        assert replies(session, "RCPT TO:<t@tmp.test>") == ["503 Bad sequence of commands"]
        assert session.state is SessionState.READY

    def test_data_without_recipient_is_rejected(self):
        session = make_session()
        feed(session, "HELO c", "MAIL FROM:<a@x.test>")
        assert replies(session, "DATA") == ["503 Bad sequence of commands"]
        assert session.state is SessionState.HAVE_SENDER

    def test_unknown_command(self):
        session = make_session()
        assert replies(session, "VRFY someone") == ["500 Command not recognized"]
        assert replies(session, "") == ["500 Command not recognized"]
        assert session.state is SessionState.INIT

    def test_data_with_argument_is_unrecognized(self):
        session = make_session()
        feed(session, "HELO c", "MAIL FROM:<a@x.test>", "RCPT TO:<t@tmp.test>")
        assert replies(session, "DATA now") == ["500 Command not recognized"]
        assert session.state is SessionState.HAVE_RECIPIENT

    def test_rset_returns_to_ready_and_clears_envelope(self):
        session = make_session()
        feed(session, "HELO c", "MAIL FROM:<a@x.test>", "RCPT TO:<t@tmp.test>")
        assert replies(session, "RSET") == ["250 OK"]
        assert session.state is SessionState.READY
        assert session.envelope.mail_from == ""
        assert session.envelope.rcpt_tos == []

    def test_rset_before_helo_moves_to_ready(self):
        session = make_session()
        assert replies(session, "RSET") == ["250 OK"]
        assert session.state is SessionState.READY
        assert replies(session, "MAIL FROM:<a@b.com>") == ["250 OK"]
        assert session.state is SessionState.HAVE_SENDER

    @pytest.mark.parametrize("command", ["MAIL a@b.com", "MAIL <a@b.com>", "RCPT c@d.com"])
    def test_mail_and_rcpt_require_from_and_to(self, command):
        session = make_session()
        feed(session, "HELO x", "MAIL FROM:<s@x.test>")
        assert replies(session, command) == ["500 Command not recognized"]
        assert session.state is SessionState.HAVE_SENDER
        assert session.envelope.mail_from == "s@x.test"
        assert session.envelope.rcpt_tos == []

    def test_quit_closes(self):
        session = make_session()
        result = session.handle_line(b"QUIT")
        assert result.reply == "221 Bye"
        assert result.close is True
        assert session.closed

    def test_lines_after_quit_are_ignored(self):
        session = make_session()
        feed(session, "QUIT")
        assert session.handle_line(b"HELO c").reply is None

    def test_every_verb_has_a_transition_entry(self):
        assert set(ALLOWED_TRANSITIONS) == {"HELO", "EHLO", "MAIL", "RCPT", "DATA", "RSET", "QUIT"}
        for states in ALLOWED_TRANSITIONS.values():
            assert SessionState.CLOSED not in states

    def test_overlong_command_line(self):
        session = make_session()
        assert session.handle_line(None).reply == "500 Line too long"
        assert session.state is SessionState.INIT


class TestDataPhase:
    """Test message collection between DATA and the terminating dot"""

    def start_data(self, session: SMTPSession) -> None:
        feed(session, "HELO c", "MAIL FROM:<a@x.test>", "RCPT TO:<t@tmp.test>", "DATA")

    def test_data_lines_produce_no_reply(self):
        session = make_session()
        self.start_data(session)
        assert replies(session, "Subject: Hi", "", "Hello world") == [None, None, None]

    def test_completed_message_is_handed_off(self):
        session = make_session()
        self.start_data(session)
        feed(session, "Subject: Hi", "", "Hello world")
        result = session.handle_line(b".")

        assert result.mail is not None
        assert result.mail.mail_from == "a@x.test"
        assert result.mail.rcpt_tos == ["t@tmp.test"]
        assert result.mail.session_id == session.session_id
        assert result.mail.raw.endswith(b"Subject: Hi\r\n\r\nHello world\r\n")
        assert result.mail.raw.startswith(b"From: a@x.test\r\nTo: t@tmp.test\r\nDate: ")

    def test_envelope_is_cleared_after_message(self):
        session = make_session()
        self.start_data(session)
        feed(session, "hello", ".")
        assert session.envelope.mail_from == ""
        assert session.envelope.rcpt_tos == []
        assert replies(session, "RCPT TO:<t@tmp.test>") == ["503 Bad sequence of commands"]

    def test_command_lookalikes_are_message_content(self):
        session = make_session()
        self.start_data(session)
        assert replies(session, "QUIT", "RSET", "MAIL FROM:<b@y.test>") == [None, None, None]
        assert not session.closed

        result = session.handle_line(b".")
        assert b"QUIT\r\nRSET\r\nMAIL FROM:<b@y.test>\r\n" in result.mail.raw

    def test_dot_with_text_is_content(self):
        session = make_session()
        self.start_data(session)
        assert replies(session, ". not the end", "..") == [None, None]
        assert session.state is SessionState.RECEIVING_DATA

    def test_second_transaction_on_same_connection(self):
        session = make_session()
        self.start_data(session)
        first = feed(session, "first", ".")[-1]
        feed(session, "MAIL FROM:<c@z.test>", "RCPT TO:<t@tmp.test>", "DATA")
        second = feed(session, "second", ".")[-1]

        assert b"first" in first.mail.raw
        assert b"second" in second.mail.raw
        assert b"first" not in second.mail.raw
        assert second.mail.mail_from == "c@z.test"

    def test_message_too_large(self):
        session = make_session(max_message_size=32)
        self.start_data(session)
        feed(session, "x" * 20, "y" * 20)
        result = session.handle_line(b".")

        assert result.reply == "552 Message size exceeds fixed maximum message size"
        assert result.mail is None
        assert session.state is SessionState.READY

    def test_overlong_data_line_rejects_message(self):
        session = make_session()
        self.start_data(session)
        session.handle_line(None)
        feed(session, "more text")
        result = session.handle_line(b".")

        assert result.reply == "500 Line too long"
        assert result.mail is None


class TestErrorIsolation:
    """Test that one failing command does not end the session"""

    def test_handler_exception_becomes_550(self):
        session = make_session()
        feed(session, "HELO c")

        with patch.object(SMTPSession, "_do_mail", side_effect=RuntimeError("boom")):
            assert replies(session, "MAIL FROM:<a@x.test>") == ["550 Internal server error"]

        assert not session.closed
        assert replies(session, "MAIL FROM:<a@x.test>") == ["250 OK"]


class TestAssembleRawMessage:
    """Test synthetic header assembly"""

    def test_merges_into_existing_header_block(self):
        raw = assemble_raw_message("a@x.test", ["t@tmp.test"], b"Subject: Hi\r\n\r\nbody\r\n", date_header="D")
        assert raw == b"From: a@x.test\r\nTo: t@tmp.test\r\nDate: D\r\nSubject: Hi\r\n\r\nbody\r\n"

    def test_headerless_payload_becomes_body(self):
        raw = assemble_raw_message("a@x.test", ["t@tmp.test"], b"just text\r\n", date_header="D")
        assert raw == b"From: a@x.test\r\nTo: t@tmp.test\r\nDate: D\r\n\r\njust text\r\n"

    def test_multiple_recipients_joined(self):
        raw = assemble_raw_message("a@x.test", ["one@t.test", "two@t.test"], b"x\r\n", date_header="D")
        assert b"To: one@t.test, two@t.test\r\n" in raw

    def test_url_first_line_stays_in_body(self):
        data = b"https://example.com/verify?x=1\r\nClick the link above.\r\n"
        raw = assemble_raw_message("a@x.test", ["t@tmp.test"], data, date_header="D")
        assert raw == b"From: a@x.test\r\nTo: t@tmp.test\r\nDate: D\r\n\r\n" + data

        result = ingest_message(raw, ["t@tmp.test"], received_at=FIXED_NOW)
        assert result.body_text.startswith("https://example.com/verify?x=1")
        assert "Click the link above." in result.body_text
        assert "https" not in result.headers

    def test_colon_line_followed_by_text_is_body(self):
        data = b"Note: read this\r\nplain sentence\r\n\r\nmore\r\n"
        raw = assemble_raw_message("a@x.test", ["t@tmp.test"], data, date_header="D")
        assert raw.endswith(b"Date: D\r\n\r\n" + data)

    def test_folded_header_block_is_merged(self):
        data = b"Subject: a long\r\n subject line\r\nX-Tag: 1\r\n\r\nbody\r\n"
        raw = assemble_raw_message("a@x.test", ["t@tmp.test"], data, date_header="D")
        assert raw == b"From: a@x.test\r\nTo: t@tmp.test\r\nDate: D\r\n" + data

    @pytest.mark.parametrize("data,expected", [
        (b"Subject: Hi\r\n\r\nbody\r\n", True),
        (b"Subject: Hi\r\n", True),
        (b"", False),
        (b"\r\nbody\r\n", False),
        (b" folded first\r\n\r\nbody\r\n", False),
        (b"http://x.test/\r\n\r\nbody\r\n", False),
    ])
    def test_has_header_block(self, data, expected):
        assert has_header_block(data) is expected
