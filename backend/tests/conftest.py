"""Shared pytest fixtures.

Provides reusable test fixtures for:
- Sync database session on an in-memory SQLite database
- Async session scope on a per-test SQLite file (aiosqlite)
- FastAPI TestClient with rate limiting disabled
- Temporary address factory

Usage:
    def test_list_emails(client, make_address):
        address = make_address()
        response = client.get(f"/api/temp-email/{address.access_token}/emails")
        assert response.status_code == 200
"""

import sys
import os
from datetime import timedelta
from pathlib import Path
from typing import Callable, Generator

# Set environment variables BEFORE any imports to ensure they take effect
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6399/0")
os.environ.setdefault("EMAIL_DOMAIN", "tempmail.test")
os.environ.setdefault("LOG_JSON", "false")

backend_src = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(backend_src))

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from tempmail.database import (
    SessionLocal,
    async_session_scope,
    create_async_session_factory,
    engine,
    init_db,
)
from tempmail.models import Base, InboundMessage, TempAddress
from tempmail.models.base import utcnow
from tempmail.rate_limit import RateLimiter, get_rate_limiter


@pytest.fixture(scope="function")
def db_session() -> Generator[Session, None, None]:
    """Create a fresh database session for each test.

    Creates all tables before the test and drops them after.
    Each test gets a clean database state.
    """
    init_db(engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def client(db_session: Session) -> Generator[TestClient, None, None]:
    """TestClient sharing the test database, with rate limiting disabled."""
    from tempmail.main import app

    app.dependency_overrides[get_rate_limiter] = lambda: RateLimiter(redis_client=None)
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_address(db_session: Session) -> Callable[..., TempAddress]:
    """Factory inserting a TempAddress row (live for one hour by default)."""

    def _make(
        email_address: str = "inbox@tempmail.test",
        expires_in: timedelta = timedelta(hours=1),
        is_active: bool = True,
    ) -> TempAddress:
        now = utcnow()
        address = TempAddress(
            email_address=email_address,
            created_at=now,
            expires_at=now + expires_in,
            is_active=is_active,
        )
        db_session.add(address)
        db_session.commit()
        db_session.refresh(address)
        return address

    return _make


@pytest.fixture
def make_message(db_session: Session) -> Callable[..., InboundMessage]:
    """Factory inserting an InboundMessage row for an address."""

    def _make(address: TempAddress, **overrides) -> InboundMessage:
        values = {
            "message_id": "<test@example.com>",
            "sender_email": "sender@example.com",
            "sender_name": "Sender",
            "recipient_email": address.email_address,
            "subject": "Hello",
            "body_text": "Hello world",
            "body_html": "",
            "attachments": [],
            "headers": {"subject": "Hello"},
            "received_at": utcnow(),
            "size_bytes": 42,
        }
        values.update(overrides)
        message = InboundMessage(temp_address_id=address.id, **values)
        db_session.add(message)
        db_session.commit()
        db_session.refresh(message)
        return message

    return _make


@pytest_asyncio.fixture
async def async_session_getter(tmp_path):
    """Async session scope on a fresh SQLite file with all tables created."""
    factory = create_async_session_factory(f"sqlite+aiosqlite:///{tmp_path / 'ingest.db'}")
    async_engine = factory.kw["bind"]
    async with async_engine.begin() as connection:
        await connection.run_sync(Base.metadata.create_all)

    yield async_session_scope(factory)

    await async_engine.dispose()
