"""
Database connection management.

Provides engine creation with connection pooling, transactional session
scopes and health checks for the SQL test store. PostgreSQL is the
production target; SQLite URLs are accepted for local runs and tests.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Generator

from sqlalchemy import create_engine, event, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import QueuePool, StaticPool

from ..config.settings import Settings, get_settings

logger = logging.getLogger(__name__)


class DatabaseManager:
    """Manages database connections and sessions."""

    def __init__(self, settings: Settings | None = None) -> None:
        """Initialize database manager.

        Args:
            settings: Application settings. Uses default if not provided.
        """
        self._settings = settings or get_settings()
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def url(self) -> str:
        return self._settings.database.url

    @property
    def engine(self) -> Engine:
        """Get or create the SQLAlchemy engine."""
        if self._engine is None:
            self._engine = self._create_engine()
        return self._engine

    def _create_engine(self) -> Engine:
        """Create a new SQLAlchemy engine.

        SQLite in-memory databases share one connection across threads so
        every session sees the same data.
        """
        db_settings = self._settings.database
        url = db_settings.url
        echo = db_settings.echo or self._settings.debug

        if url.startswith("sqlite"):
            engine = create_engine(
                url,
                poolclass=StaticPool,
                connect_args={"check_same_thread": False},
                echo=echo,
            )
        else:
            engine = create_engine(
                url,
                poolclass=QueuePool,
                pool_size=db_settings.pool_size,
                max_overflow=db_settings.max_overflow,
                pool_pre_ping=True,
                pool_recycle=3600,
                echo=echo,
            )

        @event.listens_for(engine, "connect")
        def on_connect(dbapi_conn, connection_record):
            logger.debug("New database connection established")

        logger.info(f"Database engine created: {engine.url.render_as_string(hide_password=True)}")
        return engine

    @property
    def session_factory(self) -> sessionmaker:
        """Get or create the session factory."""
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """Context manager for database sessions.

        Yields:
            SQLAlchemy session that commits on success, rolls back on error.
        """
        session = self.session_factory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.error(f"Database session error: {e}")
            raise
        finally:
            session.close()

    def create_tables(self) -> None:
        """Create the experiment tables if they do not exist."""
        from .models import Base

        Base.metadata.create_all(self.engine)

    def health_check(self) -> bool:
        """Check database connectivity.

        Returns:
            True if database is healthy, False otherwise.
        """
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return False

    def close(self) -> None:
        """Close all database connections."""
        if self._engine is not None:
            self._engine.dispose()
            self._engine = None
            self._session_factory = None
            logger.info("Database engine disposed")


_db_manager: DatabaseManager | None = None


def get_db_manager(settings: Settings | None = None) -> DatabaseManager:
    """Get the global database manager instance.

    Args:
        settings: Optional settings to use.

    Returns:
        Database manager instance.
    """
    global _db_manager
    if _db_manager is None:
        _db_manager = DatabaseManager(settings)
    return _db_manager


def reset_managers() -> None:
    """Reset global manager instances (for testing)."""
    global _db_manager
    if _db_manager:
        _db_manager.close()
    _db_manager = None
