"""
Schema creation and forward migration, run on server startup.
"""
import logging
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy.exc import SQLAlchemyError

from khm.core.exceptions import DatabaseConnectionLost, PersistenceError
from khm.models.base import Database, is_connection_error

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = Path(__file__).resolve().parent.parent / "migrations"


def alembic_config() -> Config:
    """Alembic configuration pointing at the packaged migration scripts."""
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    return config


async def run_migrations(database: Database) -> None:
    """Upgrade the database to the latest revision. Safe to call on every start."""

    def upgrade(connection) -> None:
        config = alembic_config()
        config.attributes["connection"] = connection
        command.upgrade(config, "head")

    logger.info("Checking database schema")
    try:
        async with database.engine.begin() as connection:
            await connection.run_sync(upgrade)
    except SQLAlchemyError as e:
        if is_connection_error(e):
            raise DatabaseConnectionLost(str(e)) from e
        raise PersistenceError(f"Schema migration failed: {e}") from e
    except OSError as e:
        raise DatabaseConnectionLost(str(e)) from e
    logger.info("Database schema is up to date")
