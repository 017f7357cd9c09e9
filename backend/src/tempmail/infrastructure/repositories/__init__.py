"""Port implementations for the ingest path."""

from .address_repository import SqlAddressResolver
from .in_memory import InMemoryAddressResolver, InMemoryMessageSink
from .message_repository import SqlMessageSink

__all__ = [
    "SqlAddressResolver",
    "SqlMessageSink",
    "InMemoryAddressResolver",
    "InMemoryMessageSink",
]
