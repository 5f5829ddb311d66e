"""
Custom exception classes and error handling utilities.
"""

from typing import Optional, Dict, Any
import traceback


class ClassifiedsCrawlerError(Exception):
    """Base exception for all classifieds crawler errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class CrawlerError(ClassifiedsCrawlerError):
    """Exception raised during crawling operations."""
    pass


class RenderError(CrawlerError):
    """Exception raised when a page cannot be rendered (navigation, wait, block)."""
    pass


class SinkError(ClassifiedsCrawlerError):
    """Exception raised when extracted records cannot be stored."""
    pass


class ReplicationError(SinkError):
    """Exception raised when the remote copy of the output cannot be updated."""
    pass


class ConfigurationError(ClassifiedsCrawlerError):
    """Exception raised for configuration-related issues."""
    pass


class CheckpointError(ClassifiedsCrawlerError):
    """Exception raised when crawl progress cannot be persisted."""
    pass


class CrawlInterrupted(BaseException):
    """
    Raised from the signal handler when the crawl is asked to stop.

    Derives from BaseException so that ``except Exception`` blocks between the
    signal and the orchestrator do not swallow it.
    """

    def __init__(self, signum: int):
        super().__init__(f"Interrupted by signal {signum}")
        self.signum = signum


def handle_error(
    error: Exception,
    logger,
    context: Optional[Dict[str, Any]] = None,
    reraise: bool = True
) -> None:
    """
    Handle and log errors with context information.

    Args:
        error: The exception that occurred
        logger: Logger instance to use for logging
        context: Additional context information
        reraise: Whether to reraise the exception after logging
    """
    error_context = {
        "error_type": type(error).__name__,
        "error_message": str(error),
        **(context or {})
    }

    if isinstance(error, ClassifiedsCrawlerError):
        error_context.update(error.details)

    summary = ", ".join(f"{key}={value}" for key, value in error_context.items())
    logger.error(f"Error occurred: {summary}")
    logger.debug(traceback.format_exc())

    if reraise:
        raise error
