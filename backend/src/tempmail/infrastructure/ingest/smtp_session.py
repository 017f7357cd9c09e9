"""SMTP session state machine.

One SMTPSession exists per TCP connection. It consumes protocol lines
(already split on CRLF by a LineBuffer) and returns the reply to send,
whether to close, and, when a DATA transaction completes, the raw
message to hand off. It performs no I/O, so it can be driven directly
from tests.

State machine:
    INIT --HELO/EHLO--> READY --MAIL--> HAVE_SENDER --RCPT--> HAVE_RECIPIENT
    HAVE_RECIPIENT --DATA--> RECEIVING_DATA --"."--> READY
    any --RSET--> READY, any --QUIT--> CLOSED

While RECEIVING_DATA every line except the lone "." terminator is
message content, including lines that look like commands.
"""

import logging
import re
from dataclasses import dataclass, field
from email.utils import format_datetime
from enum import Enum
from typing import Callable, Dict, FrozenSet, List, Optional

from ...models.base import utcnow
from ...observability.request_id import generate_session_id
from .errors import ProtocolError, SessionFault

logger = logging.getLogger(__name__)

CRLF = b"\r\n"

DEFAULT_MAX_LINE_LENGTH = 4096
DEFAULT_MAX_MESSAGE_SIZE = 26_214_400

# Replies
REPLY_OK = "250 OK"
REPLY_MESSAGE_ACCEPTED = "250 OK: Message accepted"
REPLY_START_DATA = "354 Start mail input; end with <CRLF>.<CRLF>"
REPLY_BYE = "221 Bye"
REPLY_UNRECOGNIZED = "500 Command not recognized"
REPLY_LINE_TOO_LONG = "500 Line too long"
REPLY_BAD_SEQUENCE = "503 Bad sequence of commands"
REPLY_INTERNAL_ERROR = SessionFault.reply
REPLY_TOO_LARGE = "552 Message size exceeds fixed maximum message size"

_ADDRESS_IN_BRACKETS = re.compile(r"<([^>\r\n]*)>")
# Field name and colon; "scheme://" is a URL, not a header
_HEADER_LINE = re.compile(rb"^[!-9;-~]+:(?!//)")
_FOLDED_LINE = re.compile(rb"^[ \t]+\S")


class SessionState(str, Enum):
    """Protocol states of one SMTP connection."""
    INIT = "INIT"
    READY = "READY"
    HAVE_SENDER = "HAVE_SENDER"
    HAVE_RECIPIENT = "HAVE_RECIPIENT"
    RECEIVING_DATA = "RECEIVING_DATA"
    CLOSED = "CLOSED"


_OPEN_STATES = frozenset(state for state in SessionState if state is not SessionState.CLOSED)

# Command verb -> states in which the command is accepted
ALLOWED_TRANSITIONS: Dict[str, FrozenSet[SessionState]] = {
    "HELO": _OPEN_STATES,
    "EHLO": _OPEN_STATES,
    "MAIL": frozenset({
        SessionState.READY,
        SessionState.HAVE_SENDER,
        SessionState.HAVE_RECIPIENT,
    }),
    "RCPT": frozenset({
        SessionState.HAVE_SENDER,
        SessionState.HAVE_RECIPIENT,
    }),
    "DATA": frozenset({SessionState.HAVE_RECIPIENT}),
    "RSET": _OPEN_STATES,
    "QUIT": _OPEN_STATES,
}


class LineBuffer:
    """Reassemble CRLF-terminated lines from arbitrary socket reads.

    An incomplete trailing fragment is kept and prefixed to the next
    read. A line longer than ``max_line_length`` is discarded up to its
    terminating CRLF and reported as None.
    """

    def __init__(self, max_line_length: int = DEFAULT_MAX_LINE_LENGTH):
        self.max_line_length = max_line_length
        self._pending = bytearray()
        self._discarding = False

    def feed(self, data: bytes) -> List[Optional[bytes]]:
        """Add bytes and return every line completed by them."""
        lines: List[Optional[bytes]] = []
        self._pending.extend(data)

        while True:
            end = self._pending.find(CRLF)
            if end < 0:
                break
            line = bytes(self._pending[:end])
            del self._pending[:end + len(CRLF)]
            if self._discarding or len(line) > self.max_line_length:
                self._discarding = False
                lines.append(None)
            else:
                lines.append(line)

        if len(self._pending) > self.max_line_length:
            # Keep a trailing CR in case the LF arrives in the next read
            keep_cr = self._pending.endswith(b"\r")
            self._pending.clear()
            if keep_cr:
                self._pending.extend(b"\r")
            self._discarding = True

        return lines

    @property
    def pending(self) -> bytes:
        return bytes(self._pending)


@dataclass
class Envelope:
    """SMTP envelope and DATA buffer of the current transaction."""
    mail_from: str = ""
    rcpt_tos: List[str] = field(default_factory=list)
    data: bytearray = field(default_factory=bytearray)
    data_error: Optional[str] = None


@dataclass(frozen=True)
class ReceivedMail:
    """A completed DATA transaction ready for ingestion."""
    mail_from: str
    rcpt_tos: List[str]
    raw: bytes
    session_id: str = ""


@dataclass
class SessionResult:
    """Outcome of handling one line."""
    reply: Optional[str] = None
    close: bool = False
    mail: Optional[ReceivedMail] = None


def extract_address(argument: str) -> str:
    """Return the text inside the first ``<...>`` pair, or ''."""
    match = _ADDRESS_IN_BRACKETS.search(argument)
    return match.group(1).strip() if match else ""


def has_header_block(data: bytes) -> bool:
    """True if every line before the first blank line is a header field.

    Folded continuation lines count as part of the preceding field.
    """
    head = data.split(CRLF + CRLF, 1)[0]
    lines = head.split(CRLF)
    if not lines[0] or not _HEADER_LINE.match(lines[0]):
        return False
    return all(_HEADER_LINE.match(line) or _FOLDED_LINE.match(line) for line in lines[1:] if line)


def assemble_raw_message(
    mail_from: str,
    rcpt_tos: List[str],
    data: bytes,
    date_header: Optional[str] = None,
) -> bytes:
    """Prefix the DATA payload with envelope ``From``/``To``/``Date`` headers.

    When the payload starts with its own header block (see
    has_header_block) the synthetic headers are merged into it; otherwise
    a blank line separates them from the payload so it is kept as the body.
    """
    date_header = date_header or format_datetime(utcnow(), usegmt=True)
    synthetic = (
        f"From: {mail_from}\r\n"
        f"To: {', '.join(rcpt_tos)}\r\n"
        f"Date: {date_header}\r\n"
    ).encode("utf-8")
    if has_header_block(data):
        return synthetic + data
    return synthetic + CRLF + data


class SMTPSession:
    """Protocol engine for one SMTP connection.

    Args:
        hostname: Name announced in greeting and HELO replies
        max_message_size: Largest accepted DATA payload in bytes
        clock: Callable returning the current aware datetime
    """

    def __init__(
        self,
        hostname: str = "tempmail.local",
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
        session_id: Optional[str] = None,
        clock: Callable = utcnow,
    ):
        self.hostname = hostname
        self.max_message_size = max_message_size
        self.session_id = session_id or generate_session_id()
        self.clock = clock
        self.state = SessionState.INIT
        self.envelope = Envelope()

    @property
    def closed(self) -> bool:
        return self.state is SessionState.CLOSED

    def greeting(self) -> str:
        return f"220 {self.hostname} SMTP Service Ready"

    def reset(self) -> None:
        """Discard the envelope and any buffered message data."""
        self.envelope = Envelope()

    def handle_line(self, line: Optional[bytes]) -> SessionResult:
        """Handle one protocol line (without its CRLF).

        ``None`` stands for a line that exceeded the line-length limit.
        Errors never escape: protocol errors become their reply code and
        anything unexpected becomes ``550 Internal server error``.
        """
        if self.closed:
            return SessionResult()

        try:
            try:
                if self.state is SessionState.RECEIVING_DATA:
                    return self._handle_data_line(line)
                if line is None:
                    raise ProtocolError(500, "Line too long")
                return self._handle_command(line.decode("utf-8", errors="replace"))
            except ProtocolError:
                raise
            except Exception as e:
                raise SessionFault(f"{type(e).__name__}: {e}") from e
        except ProtocolError as e:
            return SessionResult(reply=e.reply)
        except SessionFault as e:
            logger.error(
                f"Error handling SMTP command: {e}",
                extra={"session_id": self.session_id},
                exc_info=e.__cause__ or e,
            )
            return SessionResult(reply=REPLY_INTERNAL_ERROR)

    def _handle_command(self, command: str) -> SessionResult:
        text = command.strip()
        upper = text.upper()

        if upper.startswith("MAIL FROM:"):
            verb, argument = "MAIL", text[len("MAIL FROM:"):]
        elif upper.startswith("RCPT TO:"):
            verb, argument = "RCPT", text[len("RCPT TO:"):]
        else:
            parts = upper.split(None, 1)
            verb = parts[0] if parts else ""
            argument = text[len(verb):].strip()
            if verb in ("MAIL", "RCPT"):
                # Only the "MAIL FROM:" and "RCPT TO:" forms exist
                raise ProtocolError(500, "Command not recognized")

        allowed = ALLOWED_TRANSITIONS.get(verb)
        if allowed is None or (verb in ("DATA", "QUIT", "RSET") and argument):
            raise ProtocolError(500, "Command not recognized")
        if self.state not in allowed:
            raise ProtocolError(503, "Bad sequence of commands")

        handler = getattr(self, f"_do_{verb.lower()}")
        return handler(argument)

    def _do_helo(self, argument: str) -> SessionResult:
        self.reset()
        self.state = SessionState.READY
        return SessionResult(reply=f"250 {self.hostname} Hello")

    _do_ehlo = _do_helo

    def _do_mail(self, argument: str) -> SessionResult:
        self.envelope.mail_from = extract_address(argument)
        self.state = SessionState.HAVE_SENDER
        return SessionResult(reply=REPLY_OK)

    def _do_rcpt(self, argument: str) -> SessionResult:
        self.envelope.rcpt_tos.append(extract_address(argument))
        self.state = SessionState.HAVE_RECIPIENT
        return SessionResult(reply=REPLY_OK)

    def _do_data(self, argument: str) -> SessionResult:
        self.envelope.data = bytearray()
        self.envelope.data_error = None
        self.state = SessionState.RECEIVING_DATA
        return SessionResult(reply=REPLY_START_DATA)

    def _do_rset(self, argument: str) -> SessionResult:
        self.reset()
        self.state = SessionState.READY
        return SessionResult(reply=REPLY_OK)

    def _do_quit(self, argument: str) -> SessionResult:
        self.reset()
        self.state = SessionState.CLOSED
        return SessionResult(reply=REPLY_BYE, close=True)

    def _handle_data_line(self, line: Optional[bytes]) -> SessionResult:
        envelope = self.envelope

        if line == b".":
            return self._finish_data()

        if line is None:
            envelope.data_error = REPLY_LINE_TOO_LONG
            return SessionResult()

        if envelope.data_error is None:
            if len(envelope.data) + len(line) + len(CRLF) > self.max_message_size:
                envelope.data_error = REPLY_TOO_LARGE
                envelope.data = bytearray()
            else:
                envelope.data.extend(line)
                envelope.data.extend(CRLF)
        return SessionResult()

    def _finish_data(self) -> SessionResult:
        envelope = self.envelope
        self.reset()
        self.state = SessionState.READY

        if envelope.data_error is not None:
            logger.warning(
                f"Rejected message at end of DATA: {envelope.data_error}",
                extra={"session_id": self.session_id, "sender": envelope.mail_from},
            )
            return SessionResult(reply=envelope.data_error)

        raw = assemble_raw_message(
            envelope.mail_from,
            envelope.rcpt_tos,
            bytes(envelope.data),
            date_header=format_datetime(self.clock(), usegmt=True),
        )
        mail = ReceivedMail(
            mail_from=envelope.mail_from,
            rcpt_tos=list(envelope.rcpt_tos),
            raw=raw,
            session_id=self.session_id,
        )
        return SessionResult(reply=REPLY_MESSAGE_ACCEPTED, mail=mail)
