"""SQLAlchemy Models for the temporary mail service"""

from .base import Base
from .temp_address import TempAddress
from .inbound_message import InboundMessage

__all__ = [
    "Base",
    "TempAddress",
    "InboundMessage",
]
