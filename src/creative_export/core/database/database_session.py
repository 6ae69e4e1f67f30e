"""
Database session management for the SQL document store.

Engines are created lazily from ``DATABASE_URL`` and shared process-wide;
``reset_engine()`` tears everything down for tests.
"""

import logging
from collections.abc import Generator
from contextlib import contextmanager

from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DisconnectionError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session, scoped_session, sessionmaker

from creative_export.core.config import get_config
from creative_export.core.database.models import Base

logger = logging.getLogger(__name__)

# Module-level globals for lazy initialization
_engine: Engine | None = None
_session_factory = None
_scoped_session = None


def get_engine() -> Engine:
    """Get or create the database engine (lazy initialization)."""
    global _engine, _session_factory, _scoped_session

    if _engine is None:
        connection_string = get_config().database.url
        if not connection_string:
            raise RuntimeError("DATABASE_URL is not configured")

        if connection_string.startswith("sqlite"):
            logger.info("SQLite document store - single-writer connection settings")
            _engine = create_engine(connection_string, connect_args={"check_same_thread": False}, echo=False)
        else:
            logger.info("Server database document store - standard connection pool settings")
            _engine = create_engine(
                connection_string,
                pool_size=5,
                max_overflow=10,
                pool_recycle=3600,
                pool_pre_ping=True,
                echo=False,
            )

        _session_factory = sessionmaker(bind=_engine)
        _scoped_session = scoped_session(_session_factory)

    return _engine


def init_db() -> None:
    """Create the document table if it does not exist."""
    Base.metadata.create_all(get_engine())


def reset_engine() -> None:
    """Reset engine for testing - closes existing connections and clears global state."""
    global _engine, _session_factory, _scoped_session

    if _scoped_session is not None:
        _scoped_session.remove()
        _scoped_session = None

    if _engine is not None:
        _engine.dispose()
        _engine = None

    _session_factory = None


def get_scoped_session():
    get_engine()
    return _scoped_session


@contextmanager
def get_db_session() -> Generator[Session, None, None]:
    """
    Context manager for database sessions with automatic cleanup.

    Usage:
        with get_db_session() as session:
            row = session.get(StoredDocument, (collection, doc_id))
            session.commit()  # Explicit commit needed

    The session rolls back on exception and is always closed.
    """
    scoped = get_scoped_session()
    session = scoped()
    try:
        yield session
    except (OperationalError, DisconnectionError) as e:
        logger.error(f"Database connection error: {e}")
        session.rollback()
        raise
    except SQLAlchemyError as e:
        logger.error(f"Database error: {e}")
        session.rollback()
        raise
    finally:
        session.close()
        scoped.remove()
