"""In-memory implementations of the ingest ports.

Used by unit tests and by the SMTP server when it is started without a
database (``--in-memory``).
"""

import asyncio
import uuid
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from ...models.base import utcnow
from ..ingest.pipeline import CandidateMessage
from ..ingest.ports import AddressResolverPort, MessageSinkPort, ResolvedAddress


class InMemoryAddressResolver(AddressResolverPort):
    """Dict-backed address lookup keyed by lower-cased address."""

    def __init__(self):
        self._addresses: Dict[str, ResolvedAddress] = {}

    def add(
        self,
        address: str,
        expires_at: Optional[datetime] = None,
        is_active: bool = True,
        address_id: Optional[UUID] = None,
    ) -> ResolvedAddress:
        """Register an address (live for 24 hours unless told otherwise)."""
        record = ResolvedAddress(
            id=address_id or uuid.uuid4(),
            address=address.strip().lower(),
            expires_at=expires_at or utcnow() + timedelta(hours=24),
            is_active=is_active,
        )
        self._addresses[record.address] = record
        return record

    async def resolve_address(self, address: str) -> Optional[ResolvedAddress]:
        return self._addresses.get(address.strip().lower())


class InMemoryMessageSink(MessageSinkPort):
    """List-backed message store."""

    def __init__(self):
        self.records: List[Tuple[UUID, UUID, CandidateMessage]] = []
        self._lock = asyncio.Lock()

    async def persist_message(self, candidate: CandidateMessage, address_id: UUID) -> UUID:
        message_id = uuid.uuid4()
        async with self._lock:
            self.records.append((message_id, address_id, candidate))
        return message_id

    def messages_for(self, address_id: UUID) -> List[CandidateMessage]:
        return [candidate for _, owner, candidate in self.records if owner == address_id]
