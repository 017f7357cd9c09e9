"""Asyncio SMTP listener.

Binds a TCP socket and runs one SMTPSession per accepted connection.
The server owns the registry of open connections; it is filled and
drained only as connections start and end, and emptied on stop().
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Set

from ...observability.metrics import (
    smtp_active_connections,
    smtp_commands_total,
    smtp_connections_total,
)
from ...observability.request_id import set_request_id
from .smtp_session import (
    DEFAULT_MAX_LINE_LENGTH,
    DEFAULT_MAX_MESSAGE_SIZE,
    LineBuffer,
    ReceivedMail,
    SMTPSession,
)

logger = logging.getLogger(__name__)

READ_CHUNK_SIZE = 65536

MessageCallback = Callable[[ReceivedMail], Awaitable[object]]


class SMTPServer:
    """Inbound SMTP server.

    Usage:
        server = SMTPServer(handler, host="0.0.0.0", port=2525)
        await server.start()
        ...
        await server.stop()

    or as ``async with SMTPServer(...) as server:``.

    Args:
        on_message: Awaited with each completed ReceivedMail before the
            session reads its next command
        host / port: Bind address (port 0 picks a free port)
        hostname: Name announced in greetings
        max_line_length: Longest accepted protocol line in bytes
        max_message_size: Largest accepted DATA payload in bytes
        idle_timeout: Seconds of client silence before disconnecting
        max_connections: Concurrent connections; extra ones get 421
    """

    def __init__(
        self,
        on_message: MessageCallback,
        host: str = "0.0.0.0",
        port: int = 2525,
        hostname: str = "tempmail.local",
        max_line_length: int = DEFAULT_MAX_LINE_LENGTH,
        max_message_size: int = DEFAULT_MAX_MESSAGE_SIZE,
        idle_timeout: Optional[float] = 300.0,
        max_connections: int = 100,
    ):
        self.on_message = on_message
        self.host = host
        self.port = port
        self.hostname = hostname
        self.max_line_length = max_line_length
        self.max_message_size = max_message_size
        self.idle_timeout = idle_timeout
        self.max_connections = max_connections

        self._server: Optional[asyncio.AbstractServer] = None
        self._connections: Set[asyncio.StreamWriter] = set()

    @property
    def connection_count(self) -> int:
        return len(self._connections)

    @property
    def is_serving(self) -> bool:
        return self._server is not None and self._server.is_serving()

    @property
    def bound_port(self) -> int:
        """Actual listening port (useful when started with port 0)."""
        if self._server is None or not self._server.sockets:
            return self.port
        return self._server.sockets[0].getsockname()[1]

    async def start(self) -> None:
        if self._server is not None:
            logger.info("SMTP server is already running")
            return

        self._server = await asyncio.start_server(
            self._handle_connection, self.host, self.port
        )
        logger.info(f"SMTP server listening on {self.host}:{self.bound_port}")

    async def stop(self) -> None:
        """Stop accepting, close every open connection, wait for teardown."""
        if self._server is None:
            return

        self._server.close()
        for writer in list(self._connections):
            writer.close()
        self._connections.clear()
        await self._server.wait_closed()
        self._server = None
        logger.info("SMTP server stopped")

    async def serve_forever(self) -> None:
        if self._server is None:
            await self.start()
        await self._server.serve_forever()

    async def __aenter__(self) -> "SMTPServer":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.stop()

    async def _handle_connection(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
    ) -> None:
        peer = writer.get_extra_info("peername")

        if len(self._connections) >= self.max_connections:
            logger.warning("Refusing SMTP connection: too many connections", extra={"peer": peer})
            smtp_connections_total.labels(outcome="refused").inc()
            writer.write(f"421 {self.hostname} Too many connections\r\n".encode())
            await self._close(writer)
            return

        session = SMTPSession(
            hostname=self.hostname,
            max_message_size=self.max_message_size,
        )
        set_request_id(session.session_id)
        log_extra = {"session_id": session.session_id, "peer": peer}

        self._connections.add(writer)
        smtp_connections_total.labels(outcome="accepted").inc()
        smtp_active_connections.inc()
        logger.info("SMTP connection opened", extra=log_extra)

        try:
            writer.write(f"{session.greeting()}\r\n".encode())
            await writer.drain()
            await self._run_session(session, reader, writer, log_extra)
        except (ConnectionError, asyncio.IncompleteReadError) as e:
            # Anything buffered for this session is discarded
            logger.info(f"SMTP connection lost: {e}", extra=log_extra)
        finally:
            self._connections.discard(writer)
            smtp_active_connections.dec()
            await self._close(writer)
            logger.info("SMTP connection closed", extra=log_extra)

    async def _run_session(
        self,
        session: SMTPSession,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        log_extra: dict,
    ) -> None:
        lines = LineBuffer(self.max_line_length)

        while not session.closed:
            try:
                data = await asyncio.wait_for(reader.read(READ_CHUNK_SIZE), timeout=self.idle_timeout)
            except asyncio.TimeoutError:
                logger.info("SMTP session idle timeout", extra=log_extra)
                writer.write(f"421 {self.hostname} Timeout, closing connection\r\n".encode())
                await writer.drain()
                return

            if not data:
                return

            for line in lines.feed(data):
                result = session.handle_line(line)
                if result.reply:
                    smtp_commands_total.labels(code=result.reply[:3]).inc()
                    writer.write(f"{result.reply}\r\n".encode())
                if result.mail is not None:
                    await writer.drain()
                    await self._hand_off(result.mail, log_extra)
                if session.closed:
                    break

            await writer.drain()

    async def _hand_off(self, mail: ReceivedMail, log_extra: dict) -> None:
        try:
            await self.on_message(mail)
        except Exception:
            logger.exception("Message hand-off failed", extra=log_extra)

    @staticmethod
    async def _close(writer: asyncio.StreamWriter) -> None:
        writer.close()
        try:
            await writer.wait_closed()
        except (ConnectionError, OSError) as e:
            logger.debug(f"Error while closing SMTP connection: {e}")
