"""SQL-backed message sink for the SMTP ingest path."""

import logging
from typing import AsyncContextManager, Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ...models.inbound_message import InboundMessage
from ..ingest.pipeline import CandidateMessage
from ..ingest.ports import MessageSinkPort

logger = logging.getLogger(__name__)


class SqlMessageSink(MessageSinkPort):
    """Insert accepted messages into inbound_message."""

    def __init__(self, get_db_session: Callable[[], AsyncContextManager[AsyncSession]]):
        self.get_db_session = get_db_session

    async def persist_message(self, candidate: CandidateMessage, address_id: UUID) -> UUID:
        """Insert one row and commit.

        Raises:
            SQLAlchemyError: On database failure (rolled back by the session scope)
        """
        async with self.get_db_session() as session:
            message = InboundMessage(temp_address_id=address_id, **candidate.to_record())
            session.add(message)
            await session.commit()
            logger.debug(
                f"Inserted inbound message {message.id}",
                extra={"temp_address_id": address_id, "message_id": candidate.message_id},
            )
            return message.id
