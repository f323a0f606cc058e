"""
Base SQLAlchemy models and database setup.
"""
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.exc import (
    DBAPIError,
    DisconnectionError,
    InterfaceError,
    OperationalError,
    SQLAlchemyError,
)
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from khm.core.config import Settings
from khm.core.exceptions import DatabaseConnectionLost, PersistenceError

logger = logging.getLogger(__name__)


# SQLAlchemy 2.0 style declarative base
class Base(DeclarativeBase):
    """Base class for all database models."""
    pass


def is_connection_error(exc: BaseException) -> bool:
    """True for failures that mean the database connection itself is unusable."""
    if isinstance(exc, DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, (OperationalError, InterfaceError, DisconnectionError, OSError))


class Database:
    """
    Owns the async engine and session factory.

    Every unit of work goes through :meth:`session`, which centralizes the
    fail-fast policy: connection-class failures become
    ``DatabaseConnectionLost``, anything else from SQLAlchemy becomes
    ``PersistenceError``. There is no reconnect or retry.
    """

    def __init__(self, settings: Settings):
        url = settings.DATABASE_URL
        engine_args = {"echo": settings.DB_ECHO, "pool_pre_ping": True}
        if not url.startswith("sqlite"):
            engine_args["pool_size"] = settings.DB_POOL_SIZE
            engine_args["max_overflow"] = settings.DB_MAX_OVERFLOW

        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, **engine_args)
        self.session_factory = async_sessionmaker(
            self.engine,
            class_=AsyncSession,
            expire_on_commit=False,
            autocommit=False,
            autoflush=False,
        )

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Open a session for one transaction.

        The caller commits; anything left uncommitted is rolled back on exit.
        """
        try:
            async with self.session_factory() as session:
                try:
                    yield session
                except BaseException:
                    await session.rollback()
                    raise
        except (DatabaseConnectionLost, PersistenceError):
            raise
        except SQLAlchemyError as e:
            if is_connection_error(e):
                logger.critical(f"Database connection failed: {e}")
                raise DatabaseConnectionLost(str(e)) from e
            logger.error(f"Database error: {e}")
            raise PersistenceError(str(e)) from e
        except OSError as e:
            logger.critical(f"Database connection failed: {e}")
            raise DatabaseConnectionLost(str(e)) from e

    async def dispose(self) -> None:
        await self.engine.dispose()
