"""
Database Configuration and Session Management
"""

from contextlib import contextmanager
from typing import Iterator, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import declarative_base, sessionmaker, Session
from vehicle_completion.config import settings
import logging

logger = logging.getLogger(__name__)

# Create SQLAlchemy engine
engine = None
SessionLocal = None


def normalize_database_url(url: str) -> str:
    """Convert postgresql:// to postgresql+psycopg:// for the psycopg3 driver"""
    if url.startswith("postgresql://"):
        return url.replace("postgresql://", "postgresql+psycopg://", 1)
    return url


def init_db():
    """Initialize database connection"""
    global engine, SessionLocal

    if not settings.database_url:
        logger.warning("DATABASE_URL not configured - database features disabled")
        return

    logger.info("Connecting to database...")
    url = normalize_database_url(settings.database_url)
    if url.startswith("sqlite"):
        engine = create_engine(url, connect_args={"check_same_thread": False})
    else:
        engine = create_engine(
            url,
            pool_pre_ping=True,  # Verify connections before using them
            pool_size=5,
            max_overflow=10
        )

    SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    logger.info("Database connection established")


def get_db():
    """
    Dependency for getting database session (optional)

    Returns None if the database is not configured.
    """
    if SessionLocal is None:
        logger.warning("Database not configured")
        yield None
        return

    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction_scope(
    session_factory: sessionmaker,
    session: Optional[Session] = None
) -> Iterator[Session]:
    """
    Unit of work for writes that must succeed or fail together.

    With a caller-supplied session the work runs inside a SAVEPOINT and is
    NOT committed - the caller owns the outer transaction and commits it as
    part of a larger workflow. Without one, a fresh session is opened and
    committed on success.

    Any exception rolls back everything done inside the block.

    Args:
        session_factory: Factory used when no session is supplied
        session: Optional externally managed session

    Yields:
        Session to perform the writes with
    """
    if session is not None:
        with session.begin_nested():
            yield session
        return

    with session_factory() as own_session:
        with own_session.begin():
            yield own_session


# Base class for all models
Base = declarative_base()
