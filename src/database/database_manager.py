"""
Database Manager Module
Engine and session management for the maintenance engine tables
"""

import logging
from contextlib import contextmanager
from typing import Optional, Iterator

from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import QueuePool, NullPool, StaticPool

from config.settings import settings, DatabaseConfig
from src.database.models import Base

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Main database manager
    Supports PostgreSQL and SQLite (file or in-memory)
    """

    def __init__(self,
                 config: Optional[DatabaseConfig] = None,
                 echo: bool = False,
                 pool_timeout: float = 30.0,
                 create_tables: bool = True):
        """
        Initialize database manager

        Args:
            config: Database configuration object
            echo: Whether to echo SQL statements
            pool_timeout: Pool timeout in seconds
            create_tables: Whether to create tables on init
        """
        self.config = config or settings.get_database_config()
        self.echo = echo
        self.pool_timeout = pool_timeout

        self.engine = self._create_engine()

        # Objects stay readable after the session that loaded them closes
        self.SessionFactory = sessionmaker(bind=self.engine, expire_on_commit=False)

        if create_tables:
            self.create_tables()

        logger.info(f"DatabaseManager initialized with {self.config.type} backend")

    def _create_engine(self):
        """Create SQLAlchemy engine"""
        connection_string = self.config.connection_string

        if self.config.is_memory:
            # One shared connection, otherwise every checkout sees an empty database
            engine = create_engine(
                connection_string,
                echo=self.echo,
                poolclass=StaticPool,
                connect_args={'check_same_thread': False}
            )
        elif self.config.is_sqlite:
            engine = create_engine(
                connection_string,
                echo=self.echo,
                poolclass=NullPool,  # No pooling for SQLite
                connect_args={
                    'check_same_thread': False,
                    'timeout': 30
                }
            )
        else:
            engine = create_engine(
                connection_string,
                echo=self.echo,
                poolclass=QueuePool,
                pool_size=self.config.pg_pool_size,
                max_overflow=self.config.pg_max_overflow,
                pool_timeout=self.pool_timeout,
                pool_pre_ping=True
            )

        return engine

    def create_tables(self):
        """Create all database tables"""
        try:
            Base.metadata.create_all(self.engine)
            logger.info("Database tables created successfully")
        except Exception as e:
            logger.error(f"Error creating tables: {e}")
            raise

    def drop_tables(self):
        """Drop all database tables"""
        try:
            Base.metadata.drop_all(self.engine)
            logger.info("Database tables dropped")
        except Exception as e:
            logger.error(f"Error dropping tables: {e}")
            raise

    @contextmanager
    def get_session(self) -> Iterator[Session]:
        """
        Get database session with automatic cleanup

        Yields:
            Database session
        """
        session = self.SessionFactory()
        try:
            yield session
            session.commit()
        except Exception as e:
            session.rollback()
            logger.debug(f"Session rolled back: {e}")
            raise
        finally:
            session.close()

    def close(self):
        """Dispose of the engine's connections"""
        self.engine.dispose()
        logger.info("Database connections closed")
