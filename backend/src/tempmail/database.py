"""Database session factory and configuration.

Provides database connectivity for the temporary mail service:
- Sync engine and sessions for the REST API and retention jobs
- Async session factories for the SMTP ingest path
"""

from contextlib import asynccontextmanager, contextmanager
from typing import AsyncIterator, Callable, Generator, Optional

from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from .config import settings
from .models.base import Base

DATABASE_URL = settings.DATABASE_URL


def _engine_kwargs(url: str) -> dict:
    """Engine options for the given URL.

    Pool settings only apply to PostgreSQL (not SQLite).
    """
    kwargs = {
        "pool_pre_ping": True,  # Verify connections before using
        "echo": False,  # Set to True for SQL query logging
    }
    if url.startswith("sqlite"):
        kwargs["connect_args"] = {"check_same_thread": False}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite:"):
            # One shared connection so every session sees the same in-memory db
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_size"] = 5
        kwargs["max_overflow"] = 10
    return kwargs


engine = create_engine(DATABASE_URL, **_engine_kwargs(DATABASE_URL))

# Create session factory
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
)


def init_db(bind=None) -> None:
    """Create all tables. Used for local development and tests;
    production schemas are managed by the Alembic migrations."""
    Base.metadata.create_all(bind=bind or engine)


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """Context manager for database sessions.

    Usage:
        with get_db_session() as session:
            session.query(TempAddress).all()

    Automatically commits on success, rolls back on exception.
    """
    session = SessionLocal()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_db() -> Generator[Session, None, None]:
    """Dependency for FastAPI endpoints.

    Usage:
        @router.get("/{token}/emails")
        def list_emails(db: Session = Depends(get_db)):
            ...
    """
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def create_async_session_factory(
    database_url: Optional[str] = None,
) -> async_sessionmaker:
    """Build an async session factory for the SMTP ingest path.

    Args:
        database_url: Async driver URL (defaults to settings.async_database_url)

    Returns:
        async_sessionmaker bound to a fresh async engine
    """
    url = database_url or settings.async_database_url
    kwargs = {"pool_pre_ping": True, "echo": False}
    if url.startswith("sqlite") and (":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:")):
        kwargs["poolclass"] = StaticPool
    async_engine = create_async_engine(url, **kwargs)
    return async_sessionmaker(
        async_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


def async_session_scope(
    factory: async_sessionmaker,
) -> Callable[[], "AsyncIterator[AsyncSession]"]:
    """Wrap an async session factory in an async context manager.

    Usage:
        get_session = async_session_scope(create_async_session_factory())
        async with get_session() as session:
            ...
    """

    @asynccontextmanager
    async def get_async_session() -> AsyncIterator[AsyncSession]:
        async with factory() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise
            finally:
                await session.close()

    return get_async_session
