"""Inbound mail handler for completed SMTP transactions.

Runs the ingest pipeline on a received message, gates the result on the
recipient being a live temporary address, and stores accepted messages.

Flow for one message:
1. Parse raw bytes into a candidate (pipeline)
2. Resolve the candidate's recipient through the AddressResolverPort
3. Drop unknown, inactive and expired recipients alike
4. Persist through the MessageSinkPort

Nothing here is reported back to the SMTP client: the session already
replied ``250`` when DATA completed, so every failure is logged and the
message is dropped.
"""

import logging
from datetime import datetime
from typing import Callable, Optional, Sequence
from uuid import UUID

from ...models.base import utcnow
from ...observability.metrics import inbound_message_size_bytes, inbound_messages_total
from .errors import ExpiryFailure, RoutingFailure
from .pipeline import CandidateMessage, Rejection, ingest_message
from .ports import AddressResolverPort, MessageSinkPort, ResolvedAddress
from .smtp_session import ReceivedMail

logger = logging.getLogger(__name__)


class InboundMailHandler:
    """Deliver completed SMTP transactions to live temporary addresses.

    An expired or deactivated address is treated exactly like an unknown
    one: the message is dropped and only a log line records why.
    """

    def __init__(
        self,
        resolver: AddressResolverPort,
        sink: MessageSinkPort,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize handler.

        Args:
            resolver: Port used to look up temporary addresses
            sink: Port used to store accepted messages
            clock: Returns the current aware datetime (used for liveness)
        """
        self.resolver = resolver
        self.sink = sink
        self.clock = clock

    async def __call__(self, mail: ReceivedMail) -> Optional[UUID]:
        return await self.handle_message(mail.raw, mail.rcpt_tos, session_id=mail.session_id)

    async def resolve_live_address(self, recipient: str) -> ResolvedAddress:
        """Look up a recipient and require it to be live.

        Raises:
            RoutingFailure: No temporary address matches
            ExpiryFailure: The address is inactive or expired
        """
        record = await self.resolver.resolve_address(recipient.lower())
        if record is None:
            raise RoutingFailure(f"No temporary address found for {recipient}")
        if not record.is_live(self.clock()):
            raise ExpiryFailure(f"Temporary address {recipient} is not live")
        return record

    async def handle_message(
        self,
        raw: bytes,
        envelope_recipients: Sequence[str] = (),
        session_id: str = "",
    ) -> Optional[UUID]:
        """Ingest one raw message.

        Args:
            raw: Raw RFC822 bytes as assembled by the SMTP session
            envelope_recipients: RCPT TO addresses of the transaction
            session_id: SMTP session id for log correlation

        Returns:
            UUID of the stored message, or None if it was dropped
        """
        log_extra = {"session_id": session_id, "size_bytes": len(raw)}
        inbound_message_size_bytes.observe(len(raw))

        try:
            result = ingest_message(raw, envelope_recipients, received_at=self.clock())
            if isinstance(result, Rejection):
                logger.warning(
                    f"Dropping message: {result.reason.value} ({result.detail})",
                    extra={**log_extra, "reason": result.reason.value},
                )
                inbound_messages_total.labels(outcome=result.reason.value).inc()
                return None

            return await self._deliver(result, log_extra)

        except Exception as e:
            logger.error(
                f"Unexpected error processing inbound message: {e}",
                extra=log_extra,
                exc_info=True,
            )
            inbound_messages_total.labels(outcome="error").inc()
            return None

    async def _deliver(self, candidate: CandidateMessage, log_extra: dict) -> Optional[UUID]:
        log_extra = {
            **log_extra,
            "sender": candidate.sender_email,
            "recipient": candidate.recipient_email,
            "message_id": candidate.message_id,
        }

        try:
            address = await self.resolve_live_address(candidate.recipient_email)
        except RoutingFailure as e:
            logger.info(f"Dropping message: {e}", extra={**log_extra, "reason": "unknown_recipient"})
            inbound_messages_total.labels(outcome="unknown_recipient").inc()
            return None
        except ExpiryFailure as e:
            logger.info(f"Dropping message: {e}", extra={**log_extra, "reason": "expired"})
            inbound_messages_total.labels(outcome="expired").inc()
            return None

        stored_id = await self.sink.persist_message(candidate, address.id)

        logger.info(
            f"Stored inbound message {stored_id}",
            extra={**log_extra, "temp_address_id": address.id},
        )
        inbound_messages_total.labels(outcome="stored").inc()
        return stored_id
