"""
Shared fixtures: file-backed SQLite store and fake collaborators.
"""

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from vehicle_completion.database import Base
from vehicle_completion import models  # noqa: F401  (registers tables on Base)

from factories import FakeFetcher, RecordingExecutor


@pytest.fixture
def engine(tmp_path):
    """SQLite file database with working SAVEPOINTs across threads."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'vehicles.db'}",
        connect_args={"check_same_thread": False, "timeout": 10},
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; let SQLAlchemy emit BEGIN
    @event.listens_for(engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def fake_fetcher():
    return FakeFetcher()


@pytest.fixture
def executor():
    return RecordingExecutor()
