"""Inbound SMTP ingest: protocol sessions, parsing pipeline, delivery gate."""

from .errors import ExpiryFailure, IngestError, ParseFailure, ProtocolError, RoutingFailure
from .pipeline import CandidateMessage, Rejection, RejectionReason, ingest_message
from .ports import AddressResolverPort, MessageSinkPort, ResolvedAddress
from .smtp_handler import InboundMailHandler
from .smtp_server import SMTPServer
from .smtp_session import LineBuffer, ReceivedMail, SessionState, SMTPSession

__all__ = [
    "AddressResolverPort",
    "CandidateMessage",
    "ExpiryFailure",
    "InboundMailHandler",
    "IngestError",
    "LineBuffer",
    "MessageSinkPort",
    "ParseFailure",
    "ProtocolError",
    "ReceivedMail",
    "Rejection",
    "RejectionReason",
    "ResolvedAddress",
    "RoutingFailure",
    "SMTPServer",
    "SMTPSession",
    "SessionState",
    "ingest_message",
]
