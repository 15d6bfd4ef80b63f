"""
Database configuration and session management for the Credential Core service.

This module provides SQLAlchemy setup, session management, and database
initialization functionality. The database is the single synchronization
point of the service: every rotation decision runs inside one session scope.
"""
import sqlite3
from contextlib import contextmanager
from typing import Any, Generator, Optional

from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from credential_core.config import settings

# Create SQLAlchemy base class for models
Base = declarative_base()


# Configure SQLite to enforce foreign key constraints
@event.listens_for(Engine, "connect")
def set_sqlite_pragma(dbapi_connection, connection_record):
    """Enable foreign key constraints for SQLite."""
    if not isinstance(dbapi_connection, sqlite3.Connection):
        return
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def _is_memory_sqlite(db_url: str) -> bool:
    return db_url in ("sqlite://", "sqlite:///:memory:")


class Database:
    """Database connection and session management."""

    def __init__(self, db_url: Optional[str] = None, echo: Optional[bool] = None):
        """
        Initialize the database connection.

        Args:
            db_url: Database URL. If None, uses the URL from settings.
            echo: Whether to log SQL statements. If None, uses the settings value.
        """
        if db_url is None:
            db_url = settings.DATABASE_URL
        if echo is None:
            echo = settings.DATABASE_ECHO

        engine_args = {}
        if db_url.startswith("sqlite"):
            engine_args["connect_args"] = {"check_same_thread": False}
            if _is_memory_sqlite(db_url):
                # One shared connection, otherwise every session sees an empty database
                engine_args["poolclass"] = StaticPool

        self.url = db_url
        self.engine = create_engine(db_url, echo=echo, **engine_args)
        self.SessionLocal = sessionmaker(
            autoflush=False,
            expire_on_commit=False,
            bind=self.engine,
        )

    def create_all(self) -> None:
        """Create all tables defined in the models."""
        Base.metadata.create_all(bind=self.engine)

    def drop_all(self) -> None:
        """Drop all tables. Use with caution, primarily for testing."""
        Base.metadata.drop_all(bind=self.engine)

    def dispose(self) -> None:
        """Release every pooled connection."""
        self.engine.dispose()

    def get_session(self) -> Session:
        """
        Get a new database session.

        Returns:
            A new SQLAlchemy session.
        """
        return self.SessionLocal()

    @contextmanager
    def session_scope(self) -> Generator[Session, Any, None]:
        """
        Context manager for database sessions.

        Provides automatic commit/rollback and session closing.

        Yields:
            An active SQLAlchemy session.
        """
        session = self.get_session()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()


# Default database instance
db = Database()


# PUBLIC_INTERFACE
def init_db(db_url: Optional[str] = None) -> Database:
    """
    Initialize the database with all required tables.

    Args:
        db_url: Optional database URL. If None, uses the URL from settings.

    Returns:
        The newly installed default database.
    """
    global db
    # Import models so every table is registered on Base.metadata
    from credential_core import models  # noqa: F401

    db = Database(db_url)
    db.create_all()
    return db


# PUBLIC_INTERFACE
def get_database() -> Database:
    """
    Get the default database instance.

    Returns:
        The database installed by the most recent ``init_db`` call.
    """
    return db

