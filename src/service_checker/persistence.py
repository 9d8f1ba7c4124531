"""
Service registry backed by SQLAlchemy.
Provides the database engine, session management, and the load/save pair
the check orchestrator uses once per run.
"""

import os
from contextlib import contextmanager
from typing import Generator, Iterable, List, Optional

from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from service_checker.logging import EventType, get_logger
from service_checker.models import Base, Result, ServiceRecord

logger = get_logger("service_checker.persistence")


class DatabaseManager:
    """Manages database connection and sessions."""

    def __init__(self, database_url: Optional[str] = None):
        if database_url is None:
            if os.getenv("TESTING") == "1":
                database_url = "sqlite:///:memory:"
            else:
                database_url = "sqlite:///service_checker.db"

        self.database_url = database_url

        engine_kwargs = {"echo": os.getenv("SQL_DEBUG") == "1"}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if ":memory:" in database_url:
                # One shared connection, otherwise every thread gets an empty database
                engine_kwargs["poolclass"] = StaticPool

        self.engine = create_engine(database_url, **engine_kwargs)
        self.SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=self.engine)
        self._initialized = False

    def initialize_database(self) -> None:
        """Create all tables if they don't exist."""
        if not self._initialized:
            Base.metadata.create_all(bind=self.engine)
            self._initialized = True

    @contextmanager
    def get_session(self) -> Generator[Session, None, None]:
        """Get a database session with automatic cleanup."""
        session = self.SessionLocal()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def reset_database(self) -> None:
        """Drop and recreate all tables (mainly for testing)."""
        Base.metadata.drop_all(bind=self.engine)
        Base.metadata.create_all(bind=self.engine)
        self._initialized = True

    def close(self) -> None:
        self.engine.dispose()


class ServiceRegistry:
    """Loads the service snapshot and writes the mutated snapshot back."""

    def __init__(self, db_manager: DatabaseManager):
        self.db_manager = db_manager

    def load(self) -> List[ServiceRecord]:
        """Return every service record, detached from its session."""
        with self.db_manager.get_session() as session:
            records = session.query(ServiceRecord).order_by(ServiceRecord.id).all()
            session.expunge_all()

        logger.info(
            f"Loaded {len(records)} service(s) from registry",
            event_type=EventType.REGISTRY_LOADED,
            metadata={"count": len(records)},
        )
        return records

    def save(self, records: Iterable[ServiceRecord]) -> Result:
        """Write the whole snapshot back in one transaction."""
        records = list(records)
        try:
            with self.db_manager.get_session() as session:
                for record in records:
                    session.merge(record)
        except Exception as e:
            return Result.failure(e)

        logger.info(
            f"Saved {len(records)} service(s) to registry",
            event_type=EventType.REGISTRY_SAVED,
            metadata={"count": len(records)},
        )
        return Result.success()


# Global database manager instance
_db_manager: Optional[DatabaseManager] = None


def get_database_manager() -> DatabaseManager:
    """Get the global database manager instance."""
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager()
        _db_manager.initialize_database()
    return _db_manager


def init_database(database_url: Optional[str] = None) -> DatabaseManager:
    """Initialize the global database with optional custom URL."""
    global _db_manager
    _db_manager = DatabaseManager(database_url)
    _db_manager.initialize_database()
    return _db_manager


def reset_database_for_testing() -> DatabaseManager:
    """Reset the global database to a fresh in-memory SQLite."""
    return init_database("sqlite:///:memory:")
