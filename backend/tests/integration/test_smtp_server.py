"""Integration tests for the asyncio SMTP server over real sockets.

Each test starts an SMTPServer on an ephemeral port on 127.0.0.1 wired to
in-memory ports, then talks SMTP to it with asyncio streams.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio

from tempmail.infrastructure.ingest.smtp_handler import InboundMailHandler
from tempmail.infrastructure.ingest.smtp_server import SMTPServer
from tempmail.infrastructure.repositories.in_memory import (
    InMemoryAddressResolver,
    InMemoryMessageSink,
)
from tempmail.models.base import utcnow

HOSTNAME = "mx.test"
TIMEOUT = 5


class SMTPClient:
    """Minimal line-oriented test client."""

    def __init__(self, reader: asyncio.StreamReader, writer: asyncio.StreamWriter):
        self.reader = reader
        self.writer = writer

    @classmethod
    async def connect(cls, port: int) -> "SMTPClient":
        reader, writer = await asyncio.open_connection("127.0.0.1", port)
        return cls(reader, writer)

    async def reply(self) -> str:
        line = await asyncio.wait_for(self.reader.readline(), TIMEOUT)
        return line.decode().rstrip("\r\n")

    async def send(self, line: str) -> None:
        self.writer.write(line.encode() + b"\r\n")
        await self.writer.drain()

    async def command(self, line: str) -> str:
        await self.send(line)
        return await self.reply()

    async def close(self) -> None:
        self.writer.close()
        try:
            await self.writer.wait_closed()
        except ConnectionError:
            pass


@pytest.fixture
def resolver():
    return InMemoryAddressResolver()


@pytest.fixture
def sink():
    return InMemoryMessageSink()


@pytest_asyncio.fixture
async def server(resolver, sink):
    smtp_server = SMTPServer(
        InboundMailHandler(resolver, sink),
        host="127.0.0.1",
        port=0,
        hostname=HOSTNAME,
        idle_timeout=TIMEOUT,
    )
    await smtp_server.start()
    yield smtp_server
    await smtp_server.stop()


async def send_message(client: SMTPClient, sender: str, recipient: str, lines) -> str:
    assert await client.command("HELO client.test") == f"250 {HOSTNAME} Hello"
    assert await client.command(f"MAIL FROM:<{sender}>") == "250 OK"
    assert await client.command(f"RCPT TO:<{recipient}>") == "250 OK"
    assert (await client.command("DATA")).startswith("354")
    for line in lines:
        await client.send(line)
    return await client.command(".")


class TestSMTPConversation:
    """Test complete SMTP conversations"""

    @pytest.mark.asyncio
    async def test_message_for_live_address_is_stored(self, server, resolver, sink):
        address = resolver.add("t@tmp.test", expires_at=utcnow() + timedelta(hours=1))
        client = await SMTPClient.connect(server.bound_port)

        assert await client.reply() == f"220 {HOSTNAME} SMTP Service Ready"
        reply = await send_message(client, "a@x.test", "t@tmp.test", ["Subject: Hi", "", "Hello world"])
        assert reply == "250 OK: Message accepted"
        assert await client.command("QUIT") == "221 Bye"
        await client.close()

        assert len(sink.records) == 1
        _, address_id, candidate = sink.records[0]
        assert address_id == address.id
        assert candidate.subject == "Hi"
        assert candidate.body_text == "Hello world"
        assert candidate.sender_email == "a@x.test"

    @pytest.mark.asyncio
    async def test_unregistered_recipient_gets_same_reply(self, server, sink):
        client = await SMTPClient.connect(server.bound_port)
        await client.reply()

        reply = await send_message(client, "a@x.test", "nobody@tmp.test", ["Subject: Hi", "", "Hello"])
        assert reply == "250 OK: Message accepted"
        assert await client.command("QUIT") == "221 Bye"
        await client.close()

        assert sink.records == []

    @pytest.mark.asyncio
    async def test_fragmented_writes(self, server):
        client = await SMTPClient.connect(server.bound_port)
        await client.reply()

        client.writer.write(b"HE")
        await client.writer.drain()
        await asyncio.sleep(0.05)
        client.writer.write(b"LO c\r")
        await client.writer.drain()
        await asyncio.sleep(0.05)
        client.writer.write(b"\nNOOP\r\n")
        await client.writer.drain()

        assert await client.reply() == f"250 {HOSTNAME} Hello"
        assert await client.reply() == "500 Command not recognized"
        await client.close()

    @pytest.mark.asyncio
    async def test_interleaved_connections_are_isolated(self, server, resolver, sink):
        expires_at = utcnow() + timedelta(hours=1)
        first_address = resolver.add("one@tmp.test", expires_at=expires_at)
        second_address = resolver.add("two@tmp.test", expires_at=expires_at)

        first = await SMTPClient.connect(server.bound_port)
        second = await SMTPClient.connect(server.bound_port)
        await first.reply()
        await second.reply()

        for client, recipient in ((first, "one@tmp.test"), (second, "two@tmp.test")):
            await client.command("HELO c")
            await client.command("MAIL FROM:<a@x.test>")
            await client.command(f"RCPT TO:<{recipient}>")
            await client.command("DATA")

        await first.send("Subject: first")
        await second.send("Subject: second")
        await first.send("")
        await second.send("")
        await second.send("body two")
        await first.send("body one")

        assert await second.command(".") == "250 OK: Message accepted"
        assert await first.command(".") == "250 OK: Message accepted"
        assert await first.command("QUIT") == "221 Bye"
        assert await second.command("QUIT") == "221 Bye"
        await first.close()
        await second.close()

        by_address = {address_id: candidate for _, address_id, candidate in sink.records}
        assert by_address[first_address.id].subject == "first"
        assert by_address[first_address.id].body_text == "body one"
        assert by_address[second_address.id].subject == "second"
        assert by_address[second_address.id].body_text == "body two"

    @pytest.mark.asyncio
    async def test_disconnect_mid_data_discards_message(self, server, resolver, sink):
        resolver.add("t@tmp.test", expires_at=utcnow() + timedelta(hours=1))
        client = await SMTPClient.connect(server.bound_port)
        await client.reply()
        await client.command("HELO c")
        await client.command("MAIL FROM:<a@x.test>")
        await client.command("RCPT TO:<t@tmp.test>")
        await client.command("DATA")
        await client.send("Subject: never finished")
        await client.close()

        for _ in range(50):
            if server.connection_count == 0:
                break
            await asyncio.sleep(0.02)

        assert server.connection_count == 0
        assert sink.records == []


class TestHandOffFailures:
    """Test that hand-off errors never reach the client"""

    @pytest.mark.asyncio
    async def test_failing_callback_keeps_session_open(self):
        callback = AsyncMock(side_effect=RuntimeError("sink exploded"))
        async with SMTPServer(callback, host="127.0.0.1", port=0, hostname=HOSTNAME) as smtp_server:
            client = await SMTPClient.connect(smtp_server.bound_port)
            await client.reply()

            reply = await send_message(client, "a@x.test", "t@tmp.test", ["hello"])
            assert reply == "250 OK: Message accepted"
            assert await client.command("RSET") == "250 OK"
            assert await client.command("QUIT") == "221 Bye"
            await client.close()

        callback.assert_awaited_once()


class TestResourceLimits:
    """Test idle timeout, connection cap and line length limit"""

    @pytest.mark.asyncio
    async def test_idle_timeout(self):
        async with SMTPServer(
            AsyncMock(), host="127.0.0.1", port=0, hostname=HOSTNAME, idle_timeout=0.2,
        ) as smtp_server:
            client = await SMTPClient.connect(smtp_server.bound_port)
            await client.reply()

            assert await client.reply() == f"421 {HOSTNAME} Timeout, closing connection"
            assert await asyncio.wait_for(client.reader.read(), TIMEOUT) == b""
            await client.close()

    @pytest.mark.asyncio
    async def test_connection_limit(self):
        async with SMTPServer(
            AsyncMock(), host="127.0.0.1", port=0, hostname=HOSTNAME, max_connections=1,
        ) as smtp_server:
            first = await SMTPClient.connect(smtp_server.bound_port)
            assert (await first.reply()).startswith("220")

            second = await SMTPClient.connect(smtp_server.bound_port)
            assert await second.reply() == f"421 {HOSTNAME} Too many connections"
            await second.close()

            assert await first.command("QUIT") == "221 Bye"
            await first.close()

    @pytest.mark.asyncio
    async def test_overlong_line(self):
        async with SMTPServer(
            AsyncMock(), host="127.0.0.1", port=0, hostname=HOSTNAME, max_line_length=32,
        ) as smtp_server:
            client = await SMTPClient.connect(smtp_server.bound_port)
            await client.reply()

            assert await client.command("HELO " + "x" * 100) == "500 Line too long"
            assert await client.command("HELO c") == f"250 {HOSTNAME} Hello"
            await client.close()


class TestLifecycle:
    """Test start/stop and the connection registry"""

    @pytest.mark.asyncio
    async def test_stop_closes_open_connections(self):
        smtp_server = SMTPServer(AsyncMock(), host="127.0.0.1", port=0, hostname=HOSTNAME)
        await smtp_server.start()
        assert smtp_server.is_serving

        client = await SMTPClient.connect(smtp_server.bound_port)
        await client.reply()
        assert smtp_server.connection_count == 1

        await smtp_server.stop()

        assert smtp_server.connection_count == 0
        assert not smtp_server.is_serving
        assert await asyncio.wait_for(client.reader.read(), TIMEOUT) == b""
        await client.close()

    @pytest.mark.asyncio
    async def test_stop_without_start_is_noop(self):
        await SMTPServer(AsyncMock(), port=0).stop()
