"""Error taxonomy for the inbound mail path.

Protocol-level errors carry the SMTP reply they map to. The remaining
errors never reach the transport: DATA has already been acknowledged
when they occur, so they are logged and the message is dropped.
"""


class IngestError(Exception):
    """Base class for inbound mail errors."""
    pass


class ProtocolError(IngestError):
    """Malformed, unknown or out-of-sequence command. Session continues."""

    def __init__(self, code: int, text: str):
        super().__init__(f"{code} {text}")
        self.code = code
        self.text = text

    @property
    def reply(self) -> str:
        return f"{self.code} {self.text}"


class SessionFault(IngestError):
    """Unexpected failure while handling one command. Session continues."""

    reply = "550 Internal server error"


class ParseFailure(IngestError, ValueError):
    """Raw message could not be parsed into a structured record."""
    pass


class RoutingFailure(IngestError):
    """No recipient address could be determined, or it is unknown."""
    pass


class ExpiryFailure(IngestError):
    """Recipient exists but is inactive or expired."""
    pass
