"""Database configuration and session management.

Reconciliation passes are one-shot batch jobs, so everything here is
synchronous: one engine per storage URL, sessions opened by the caller.
"""

from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from uuid import uuid4

from sqlalchemy import DateTime, Engine, String, create_engine, func
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from app.core.config import settings

# Lazy initialized default engine
_sync_engine: Engine | None = None


def create_storage_engine(url: str) -> Engine:
    """Create an engine for a storage URL."""
    return create_engine(
        url,
        echo=settings.debug,
        future=True,
        pool_pre_ping=True,
    )


def get_sync_engine() -> Engine:
    """Get or create the engine for the default database.

    Lazily creates the engine on first use to avoid import errors
    when psycopg2 is not installed (e.g., in test environments).
    """
    global _sync_engine
    if _sync_engine is None:
        _sync_engine = create_storage_engine(settings.database_url)
    return _sync_engine


def get_session_factory(engine: Engine) -> sessionmaker[Session]:
    """Session factory bound to an engine."""
    return sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models.

    Provides common columns and configuration for all models:
    - id: UUID primary key stored as its 36-character string form
    - created_at: Timestamp when record was created
    """

    id: Mapped[str] = mapped_column(
        String(36),
        primary_key=True,
        default=lambda: str(uuid4()),
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )


@contextmanager
def session_scope(engine: Engine) -> Iterator[Session]:
    """Provide a session that commits on success and rolls back on error.

    Usage:
        with session_scope(engine) as session:
            ...
    """
    session = get_session_factory(engine)()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def init_db(engine: Engine) -> None:
    """Create all tables.

    For development and tests only - use Alembic migrations in production.
    """
    import app.models  # noqa: F401  registers the mapped tables

    Base.metadata.create_all(engine)


def close_db() -> None:
    """Dispose the default engine."""
    global _sync_engine
    if _sync_engine is not None:
        _sync_engine.dispose()
        _sync_engine = None
