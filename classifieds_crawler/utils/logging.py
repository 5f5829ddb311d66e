"""
Logging configuration and utilities.

Every concern of the crawler (orchestrator, worker, checkpoint, sink, ...)
gets its own business logger writing to ``logs/<name>.log`` with daily
rotation, on top of the root console handler installed by ``setup_logging``.
"""

import logging
import logging.handlers
import os
import sys
from pathlib import Path
from typing import Optional
from datetime import datetime, timedelta

import structlog


CONSOLE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
FILE_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s'


def get_logs_dir() -> Path:
    """Directory holding business log files (``CRAWLER_LOG_DIR`` or ./logs)."""
    return Path(os.getenv("CRAWLER_LOG_DIR", "logs"))


def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    retention_days: int = 7
) -> None:
    """
    Set up logging for the application.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional log file path
        retention_days: Number of days to retain log files
    """
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, log_level.upper()))

    # Clear existing handlers
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(CONSOLE_FORMAT))
    root_logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.TimedRotatingFileHandler(
            log_file,
            when='midnight',
            interval=1,
            backupCount=retention_days,
            encoding='utf-8'
        )
        file_handler.suffix = "%Y-%m-%d"
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        root_logger.addHandler(file_handler)

        cleanup_old_logs(log_path.parent, retention_days)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance.

    Args:
        name: Logger name (typically __name__)
    """
    return logging.getLogger(name)


def get_structured_logger(name: str):
    """
    Get a structlog logger emitting JSON events through the stdlib handlers.

    Used for machine-readable records such as the end-of-run summary.
    """
    return structlog.get_logger(name)


def get_business_logger(business_name: str, log_level: Optional[str] = None) -> logging.Logger:
    """
    Get the logger for one concern of the crawler.

    Records propagate to the root logger (console); the business file
    handler keeps a per-concern history.

    Args:
        business_name: Concern name (e.g. 'orchestrator', 'worker')
        log_level: Logging level for the business logger; by default it
            follows the root level set by setup_logging

    Returns:
        Configured logger
    """
    logger = logging.getLogger(f"business.{business_name}")

    # Already configured
    if logger.handlers:
        return logger

    if log_level:
        logger.setLevel(getattr(logging, log_level.upper()))

    log_path = get_logs_dir() / f"{business_name}.log"
    try:
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            log_path,
            when='midnight',
            interval=1,
            backupCount=7,
            encoding='utf-8',
            delay=True
        )
    except OSError as e:
        # Read-only working directory: console logging still works
        logging.getLogger(__name__).warning(f"Cannot create log file {log_path}: {e}")
        return logger

    file_handler.suffix = "%Y-%m-%d"
    file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
    logger.addHandler(file_handler)

    return logger


def cleanup_old_logs(logs_dir: Optional[Path] = None, retention_days: int = 7) -> int:
    """
    Remove log files older than the retention period.

    Args:
        logs_dir: Log directory
        retention_days: Number of days to keep

    Returns:
        Number of files removed
    """
    if logs_dir is None:
        logs_dir = get_logs_dir()

    if not logs_dir.exists():
        return 0

    cleaned_count = 0
    cutoff_date = datetime.now() - timedelta(days=retention_days)

    for log_file in logs_dir.glob("*.log*"):
        if not log_file.is_file():
            continue
        try:
            file_mtime = datetime.fromtimestamp(log_file.stat().st_mtime)
            if file_mtime < cutoff_date:
                log_file.unlink()
                cleaned_count += 1
        except OSError as e:
            logging.getLogger(__name__).warning(f"Failed to remove old log {log_file}: {e}")

    if cleaned_count > 0:
        logging.getLogger(__name__).info(f"Removed {cleaned_count} expired log files from {logs_dir}")

    return cleaned_count
