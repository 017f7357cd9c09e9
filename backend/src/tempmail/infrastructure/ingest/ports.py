"""Ports consumed by the inbound mail path.

The SMTP ingest core reads temporary addresses through an
AddressResolverPort and writes accepted messages through a
MessageSinkPort. Both may block on I/O, so both are async; both must
be safe to call concurrently from many SMTP sessions.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime
from typing import Optional
from uuid import UUID

from ...models.base import as_utc, utcnow
from .pipeline import CandidateMessage


@dataclass(frozen=True)
class ResolvedAddress:
    """Snapshot of a temporary address as seen by the ingest gate.

    Attributes:
        id: Temporary address UUID
        address: Normalized (lower-cased) address
        expires_at: Expiry timestamp (aware, UTC)
        is_active: False once the address was deactivated
    """
    id: UUID
    address: str
    expires_at: datetime
    is_active: bool

    def is_live(self, now: Optional[datetime] = None) -> bool:
        """Live iff active and not yet expired."""
        now = now or utcnow()
        return self.is_active and now < as_utc(self.expires_at)


class AddressResolverPort(ABC):
    """Port interface for looking up temporary addresses.

    Implementations:
    - SqlAddressResolver: temp_address table via AsyncSession
    - InMemoryAddressResolver: dict-backed, for tests and local runs
    """

    @abstractmethod
    async def resolve_address(self, address: str) -> Optional[ResolvedAddress]:
        """Find the temporary address record for a normalized address.

        Args:
            address: Lower-cased email address

        Returns:
            ResolvedAddress, or None if no record exists. Inactive and
            expired records are returned; the caller decides liveness.
        """
        pass


class MessageSinkPort(ABC):
    """Port interface for durably storing accepted messages.

    Implementations:
    - SqlMessageSink: inbound_message table via AsyncSession
    - InMemoryMessageSink: list-backed, for tests and local runs
    """

    @abstractmethod
    async def persist_message(self, candidate: CandidateMessage, address_id: UUID) -> UUID:
        """Store a candidate message for a live temporary address.

        Args:
            candidate: Structured message from the ingest pipeline
            address_id: UUID of the matched temporary address

        Returns:
            UUID of the stored message
        """
        pass
