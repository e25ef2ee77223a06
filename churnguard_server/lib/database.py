"""Database Connection Module

Provides the SQLAlchemy declarative base, a lazily created global engine and
session helpers for FastAPI dependency injection and background workers.

The engine URL comes from DATABASE_URL (see `churnguard_server.lib.settings`):
SQLite for local development and tests, PostgreSQL (psycopg) in production.
"""

from datetime import datetime, timezone
from typing import Any, Generator

from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from churnguard_server.lib.settings import get_settings

Base = declarative_base()


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (the storage convention for all columns)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def create_database_engine(database_url: str, **engine_kwargs: Any) -> Engine:
    """Create SQLAlchemy engine for the given URL.

    SQLite URLs get `check_same_thread=False` because FastAPI resolves sync
    dependencies in a threadpool; in-memory SQLite additionally uses a
    StaticPool so every session sees the same database.

    Args:
        database_url: SQLAlchemy database URL
        **engine_kwargs: Extra keyword arguments for `create_engine`

    Returns:
        Configured SQLAlchemy engine
    """
    if database_url.startswith('sqlite'):
        connect_args = engine_kwargs.pop('connect_args', {})
        connect_args.setdefault('check_same_thread', False)
        engine_kwargs['connect_args'] = connect_args
        if database_url in ('sqlite://', 'sqlite:///:memory:'):
            engine_kwargs.setdefault('poolclass', StaticPool)
    else:
        engine_kwargs.setdefault('pool_size', 10)
        engine_kwargs.setdefault('max_overflow', 10)
        engine_kwargs.setdefault('pool_pre_ping', True)  # Detect stale connections
        engine_kwargs.setdefault('pool_recycle', 3600)

    return create_engine(database_url, echo=False, **engine_kwargs)


# Global engine and session factory (lazy-initialized)
_engine: Engine | None = None
_session_factory: sessionmaker | None = None


def configure_engine(database_url: str | None = None, **engine_kwargs: Any) -> Engine:
    """Replace the global engine (application startup and tests).

    Args:
        database_url: Database URL (defaults to settings.database_url)
        **engine_kwargs: Extra keyword arguments for `create_engine`

    Returns:
        The new global engine
    """
    global _engine, _session_factory
    if _engine is not None:
        _engine.dispose()
    _engine = create_database_engine(database_url or get_settings().database_url, **engine_kwargs)
    _session_factory = sessionmaker(autocommit=False, autoflush=False, bind=_engine)
    return _engine


def is_engine_configured() -> bool:
    """True once `configure_engine` has run (explicitly or lazily)."""
    return _engine is not None


def get_engine() -> Engine:
    """Get or create global engine instance.

    Usage:
        engine = get_engine()
        with engine.connect() as conn:
            conn.execute(text('SELECT 1'))
    """
    if _engine is None:
        configure_engine()
    return _engine


def get_session_factory() -> sessionmaker:
    """Get session factory bound to the global engine.

    Usage:
        SessionFactory = get_session_factory()
        with SessionFactory() as session:
            session.query(Prediction).filter_by(client_id=client_id).all()
    """
    if _session_factory is None:
        configure_engine()
    return _session_factory


def create_tables() -> None:
    """Create all tables known to the declarative base (idempotent)."""
    # Import models so they register on Base.metadata
    import churnguard_server.models  # noqa: F401

    Base.metadata.create_all(bind=get_engine())


def get_db_session() -> Generator[Session, None, None]:
    """Get database session for dependency injection.

    Yields:
        Database session, committed on success and rolled back on error

    Usage (FastAPI):
        @router.post('/track-event')
        async def track_event(db: Session = Depends(get_db_session)):
            ...
    """
    SessionFactory = get_session_factory()
    session = SessionFactory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
