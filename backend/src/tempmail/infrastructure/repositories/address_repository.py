"""SQL-backed address resolver for the SMTP ingest path."""

import logging
from typing import AsyncContextManager, Callable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...models.base import as_utc
from ...models.temp_address import TempAddress
from ..ingest.ports import AddressResolverPort, ResolvedAddress

logger = logging.getLogger(__name__)


class SqlAddressResolver(AddressResolverPort):
    """Look up temp_address rows through an async session.

    Each call opens its own session, so concurrent SMTP sessions never
    share one.
    """

    def __init__(self, get_db_session: Callable[[], AsyncContextManager[AsyncSession]]):
        """Initialize resolver.

        Args:
            get_db_session: Async context manager factory yielding AsyncSession
        """
        self.get_db_session = get_db_session

    async def resolve_address(self, address: str) -> Optional[ResolvedAddress]:
        async with self.get_db_session() as session:
            result = await session.execute(
                select(TempAddress).where(
                    func.lower(TempAddress.email_address) == address.strip().lower()
                )
            )
            record = result.scalar_one_or_none()

        if record is None:
            return None

        return ResolvedAddress(
            id=record.id,
            address=record.email_address,
            expires_at=as_utc(record.expires_at),
            is_active=bool(record.is_active),
        )
