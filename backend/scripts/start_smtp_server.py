#!/usr/bin/env python3
"""SMTP Server Startup Script for the temporary mail service.

Starts the asyncio SMTPServer with an InboundMailHandler that stores
mail for live temporary addresses.

Usage:
    python scripts/start_smtp_server.py
    python scripts/start_smtp_server.py --in-memory --port 2525

Environment Variables:
    SMTP_HOST: Bind address (default: 0.0.0.0)
    SMTP_PORT: Listen port (default: 2525)
    SMTP_HOSTNAME: Name announced in greetings (default: tempmail.local)
    SMTP_MAX_LINE_LENGTH: Max protocol line length in bytes (default: 4096)
    SMTP_MAX_MESSAGE_SIZE: Max email size in bytes (default: 26214400 = 25MB)
    SMTP_MAX_CONNECTIONS: Max concurrent connections (default: 100)
    SMTP_IDLE_TIMEOUT: Idle timeout in seconds (default: 300)
    DATABASE_URL / ASYNC_DATABASE_URL: Database connection strings
"""

import argparse
import asyncio
import logging
import os
import signal
import sys

# Add backend/src to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from tempmail.config import settings
from tempmail.database import async_session_scope, create_async_session_factory
from tempmail.infrastructure.ingest.smtp_handler import InboundMailHandler
from tempmail.infrastructure.ingest.smtp_server import SMTPServer
from tempmail.infrastructure.repositories import (
    InMemoryAddressResolver,
    InMemoryMessageSink,
    SqlAddressResolver,
    SqlMessageSink,
)
from tempmail.observability.logging_config import configure_logging

logger = logging.getLogger(__name__)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the inbound SMTP server")
    parser.add_argument("--host", default=settings.SMTP_HOST)
    parser.add_argument("--port", type=int, default=settings.SMTP_PORT)
    parser.add_argument(
        "--in-memory",
        action="store_true",
        help="Use in-memory address and message stores instead of the database",
    )
    return parser.parse_args(argv)


def build_handler(in_memory: bool) -> InboundMailHandler:
    """Wire the handler to in-memory or SQL ports."""
    if in_memory:
        logger.warning("Using in-memory stores; received mail is not persisted")
        return InboundMailHandler(InMemoryAddressResolver(), InMemoryMessageSink())

    # Hide credentials
    logger.info(f"Database: {settings.async_database_url.split('@')[-1]}")
    get_db_session = async_session_scope(create_async_session_factory())
    return InboundMailHandler(
        resolver=SqlAddressResolver(get_db_session),
        sink=SqlMessageSink(get_db_session),
    )


async def main(argv=None) -> None:
    """Start SMTP server and run until SIGINT/SIGTERM."""
    args = parse_args(argv)
    configure_logging(level=settings.LOG_LEVEL, json_format=settings.LOG_JSON)

    logger.info("=== Temporary Mail SMTP Server Starting ===")
    logger.info(f"SMTP Bind: {args.host}:{args.port}")
    logger.info(f"SMTP Hostname: {settings.SMTP_HOSTNAME}")
    logger.info(f"Max Message Size: {settings.SMTP_MAX_MESSAGE_SIZE} bytes")
    logger.info(f"Max Connections: {settings.SMTP_MAX_CONNECTIONS}")
    logger.info(f"Idle Timeout: {settings.SMTP_IDLE_TIMEOUT}s")

    handler = build_handler(args.in_memory)

    server = SMTPServer(
        handler,
        host=args.host,
        port=args.port,
        hostname=settings.SMTP_HOSTNAME,
        max_line_length=settings.SMTP_MAX_LINE_LENGTH,
        max_message_size=settings.SMTP_MAX_MESSAGE_SIZE,
        idle_timeout=settings.SMTP_IDLE_TIMEOUT,
        max_connections=settings.SMTP_MAX_CONNECTIONS,
    )

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; rely on KeyboardInterrupt
            pass

    async with server:
        logger.info(f"Accepting mail for: <address>@{settings.EMAIL_DOMAIN}")
        logger.info("Press Ctrl+C to stop")
        await stop_event.wait()
        logger.info("Shutting down SMTP server...")


if __name__ == '__main__':
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, exiting")
        sys.exit(0)
    except Exception as e:
        logger.error(f"SMTP server failed: {e}", exc_info=True)
        sys.exit(1)
