"""
Logging setup for the server and the CLI: console output and rotating files.
"""
import logging
import sys
from logging.handlers import RotatingFileHandler as BaseRotatingFileHandler
from pathlib import Path
from typing import Optional

# Application loggers that receive our handlers. The root and uvicorn loggers
# are left alone so uvicorn keeps its own formatting.
APP_LOGGERS = ["khm"]

CONSOLE_FORMAT = '%(asctime)s - %(levelname)s - %(name)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(module)s:%(funcName)s:%(lineno)d - %(message)s'

# Global handler instances
_console_handler: Optional[logging.Handler] = None
_file_log_handler: Optional[BaseRotatingFileHandler] = None


def _attach(handler: logging.Handler, level: str) -> list:
    loggers_configured = []
    for logger_name in APP_LOGGERS:
        logger = logging.getLogger(logger_name)
        logger.setLevel(level.upper())
        if handler not in logger.handlers:
            logger.addHandler(handler)
            loggers_configured.append(logger_name)
    return loggers_configured


def get_console_handler() -> logging.Handler:
    """Get the global console handler instance."""
    global _console_handler
    if _console_handler is None:
        _console_handler = logging.StreamHandler(sys.stderr)
        _console_handler.setFormatter(
            logging.Formatter(CONSOLE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
        )
    return _console_handler


def setup_logging(level: str = "INFO") -> None:
    """Attach the console handler to the application loggers."""
    _attach(get_console_handler(), level)


def get_file_log_handler(
    log_dir: str,
    max_bytes: int = 100 * 1024 * 1024,  # 100 MB
    backup_count: int = 10
) -> BaseRotatingFileHandler:
    """Get the global file log handler instance."""
    global _file_log_handler
    if _file_log_handler is None:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)

        _file_log_handler = BaseRotatingFileHandler(
            filename=str(log_path / "khm.log"),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding='utf-8'
        )
        _file_log_handler.setFormatter(
            logging.Formatter(FILE_FORMAT, datefmt='%Y-%m-%d %H:%M:%S')
        )

    return _file_log_handler


def setup_file_logging(
    log_dir: str,
    max_bytes: int = 100 * 1024 * 1024,
    backup_count: int = 10,
    level: str = "INFO"
) -> bool:
    """Setup file logging with rotation."""
    try:
        file_handler = get_file_log_handler(log_dir, max_bytes, backup_count)
    except OSError as e:
        logging.getLogger(__name__).warning(f"Failed to setup file logging in {log_dir}: {e}")
        return False

    configured = _attach(file_handler, level)
    logging.getLogger(__name__).info(
        f"File logging attached to {', '.join(configured) or 'none (already configured)'} "
        f"(dir={log_dir}, max={max_bytes / (1024 * 1024):.1f} MB, backups={backup_count})"
    )
    return True
