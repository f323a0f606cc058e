"""
Main FastAPI application.

Run with ``khm server`` or ``uvicorn khm.main:create_app --factory``.
"""
import logging
import os
import signal
from contextlib import asynccontextmanager
from typing import Callable, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from khm.api import keys, system
from khm.core.config import Settings, get_settings
from khm.core.exceptions import (
    DatabaseConnectionLost,
    FlowNotAllowedError,
    FlowNotFoundError,
    InvalidKeyFormatError,
    PersistenceError,
)
from khm.core.logging_handler import setup_file_logging, setup_logging
from khm.models.base import Database
from khm.models.migrate import run_migrations
from khm.services.flows import FlowService
from khm.services.snapshot import FlowSnapshot

logger = logging.getLogger(__name__)


def terminate_process(exc: BaseException) -> None:
    """Ask the server to shut down gracefully."""
    os.kill(os.getpid(), signal.SIGTERM)


def create_app(
    settings: Optional[Settings] = None,
    on_fatal: Optional[Callable[[BaseException], None]] = None
) -> FastAPI:
    """
    Build the application with its own database, snapshot and flow service.

    Args:
        settings: configuration; loaded from the environment when omitted
        on_fatal: called once the database connection is found broken
    """
    settings = settings or get_settings()
    database = Database(settings)
    snapshot = FlowSnapshot(settings.FLOWS)

    # Lifespan context manager for startup/shutdown
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings.LOG_LEVEL)
        if settings.LOG_DIR:
            setup_file_logging(
                settings.LOG_DIR,
                settings.LOG_MAX_BYTES,
                settings.LOG_BACKUP_COUNT,
                settings.LOG_LEVEL
            )

        logger.info(f"Starting {settings.APP_NAME} v{settings.APP_VERSION}")
        logger.info(f"Allowed flows: {', '.join(settings.FLOWS)}")

        await run_migrations(database)
        await snapshot.refresh(database)

        yield

        logger.info("Shutting down...")
        await database.dispose()

    app = FastAPI(
        title=settings.APP_NAME,
        version=settings.APP_VERSION,
        description="Central store keeping SSH known_hosts consistent across machines",
        lifespan=lifespan
    )

    app.state.settings = settings
    app.state.database = database
    app.state.snapshot = snapshot
    app.state.flow_service = FlowService(database, snapshot, settings)
    app.state.on_fatal = on_fatal or terminate_process

    @app.exception_handler(InvalidKeyFormatError)
    async def invalid_key_format(request: Request, exc: InvalidKeyFormatError):
        logger.error(f"{exc} (client '{request.headers.get('X-Client-Hostname', 'unknown-client')}')")
        return JSONResponse(status_code=400, content={"detail": str(exc)})

    @app.exception_handler(FlowNotAllowedError)
    async def flow_not_allowed(request: Request, exc: FlowNotAllowedError):
        logger.error(str(exc))
        return JSONResponse(status_code=403, content={"detail": "Flow ID not allowed"})

    @app.exception_handler(FlowNotFoundError)
    async def flow_not_found(request: Request, exc: FlowNotFoundError):
        logger.error(str(exc))
        return JSONResponse(status_code=404, content={"detail": "Flow ID not found"})

    @app.exception_handler(PersistenceError)
    async def persistence_error(request: Request, exc: PersistenceError):
        logger.error(f"Persistence failure on {request.method} {request.url.path}: {exc}")
        return JSONResponse(status_code=500, content={"detail": "Database operation failed"})

    @app.exception_handler(DatabaseConnectionLost)
    async def database_connection_lost(request: Request, exc: DatabaseConnectionLost):
        logger.critical(f"Database connection lost, shutting down: {exc}")
        request.app.state.on_fatal(exc)
        return JSONResponse(status_code=503, content={"detail": "Database connection lost"})

    # Include routers
    app.include_router(system.router, tags=["System"])
    app.include_router(keys.router, tags=["Keys"])

    return app
