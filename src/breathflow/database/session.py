"""Database session management for breathflow."""

import os
import threading

from collections.abc import Generator
from contextlib import contextmanager
from typing import Any

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from breathflow.constants import DEFAULT_DATABASE_PATH
from breathflow.database.models import Base

# Global engine and session factory
_engine: Engine | None = None
_SessionFactory: sessionmaker[Session] | None = None
_database_path: str | None = None
_init_lock = threading.Lock()


def create_sqlite_engine(database_path: str) -> Engine:
    """
    Create a SQLite engine usable from the training and frame threads.

    Args:
        database_path: Path to the SQLite file, or ":memory:"

    Returns:
        Configured engine with all tables created
    """
    if database_path == ":memory:":
        from sqlalchemy.pool import StaticPool

        engine = create_engine(
            "sqlite://",
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    else:
        engine = create_engine(
            f"sqlite:///{database_path}",
            echo=False,
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )

    @event.listens_for(engine, "connect")
    def set_sqlite_pragma(dbapi_conn: Any, connection_record: Any) -> None:
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.close()

    Base.metadata.create_all(engine)
    return engine


def init_database(database_path: str | None = None) -> None:
    """
    Initialize the database connection in a thread-safe manner.

    Args:
        database_path: Path to the SQLite database file.
                      Defaults to DEFAULT_DATABASE_PATH.

    Raises:
        PermissionError: If directory cannot be created
        ValueError: If database path is invalid
    """
    global _engine, _SessionFactory, _database_path

    with _init_lock:
        if _engine is not None and _SessionFactory is not None:
            return

        if database_path is None:
            database_path = DEFAULT_DATABASE_PATH

        if not database_path or not isinstance(database_path, str):
            raise ValueError(f"Invalid database path: {database_path}")

        if database_path != ":memory:":
            db_dir = os.path.dirname(database_path)
            if db_dir:
                try:
                    os.makedirs(db_dir, exist_ok=True)
                except PermissionError as e:
                    raise PermissionError(
                        f"Cannot create database directory {db_dir}: {e}"
                    ) from e

        _engine = create_sqlite_engine(database_path)
        _SessionFactory = sessionmaker(bind=_engine)
        _database_path = database_path


def get_session_factory() -> sessionmaker[Session]:
    """
    Session factory bound to the global engine.

    Raises:
        RuntimeError: If the database has not been initialized
    """
    if _SessionFactory is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _SessionFactory


@contextmanager
def session_scope(factory: sessionmaker[Session] | None = None) -> Generator[Session]:
    """
    Transactional scope: commit on success, roll back on error, always close.

    Args:
        factory: Session factory for a specific engine (the global one if omitted)

    Yields:
        A database session
    """
    session = (factory or get_session_factory())()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()


def get_engine() -> Engine:
    """Get the database engine."""
    if _engine is None:
        raise RuntimeError("Database not initialized. Call init_database() first.")
    return _engine


def get_database_path() -> str | None:
    """Path the global engine was initialized with, if any."""
    return _database_path


def cleanup_database() -> None:
    """
    Clean up database connections and reset global state.

    This function should be called during test cleanup to prevent resource warnings.
    It properly disposes of the SQLAlchemy engine and resets global variables.
    """
    global _engine, _SessionFactory, _database_path

    with _init_lock:
        if _engine is not None:
            _engine.dispose()
            _engine = None
        _SessionFactory = None
        _database_path = None
