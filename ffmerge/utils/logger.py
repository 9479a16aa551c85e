"""Logging utilities for ffmerge."""

import logging
from pathlib import Path
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler


class FFMergeLogger:
    """Custom logger with rich formatting."""

    _handlers_setup = False  # Class variable to track if handlers are set up

    def __init__(self, name: str = "ffmerge", level: str = "INFO"):
        """Initialize logger with rich formatting.

        Args:
            name: Logger name
            level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        """
        self.logger = logging.getLogger(name)
        self.logger.setLevel(getattr(logging, level.upper()))

        # Only set up handlers on the root "ffmerge" logger once
        if not FFMergeLogger._handlers_setup:
            root_logger = logging.getLogger("ffmerge")
            if not root_logger.handlers:
                self._setup_handlers(root_logger)
                FFMergeLogger._handlers_setup = True

        # Child loggers propagate to the root "ffmerge" logger
        if name != "ffmerge" and not self.logger.handlers:
            self.logger.propagate = True

    def _setup_handlers(self, logger: logging.Logger) -> None:
        """Setup console and file handlers."""
        console = Console(stderr=True)

        console_handler = RichHandler(
            console=console,
            show_time=False,
            show_path=False,
            rich_tracebacks=True,
        )
        console_handler.setLevel(logging.WARNING)
        logger.addHandler(console_handler)

        # File handler for debug logs; a read-only home just means no log file
        log_dir = Path.home() / ".ffmerge" / "logs"
        try:
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_dir / "ffmerge.log")
        except OSError:
            return

        file_handler.setLevel(logging.DEBUG)
        file_formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    def debug(self, message: str, **kwargs) -> None:
        """Log debug message."""
        self.logger.debug(message, **kwargs)

    def info(self, message: str, **kwargs) -> None:
        """Log info message."""
        self.logger.info(message, **kwargs)

    def warning(self, message: str, **kwargs) -> None:
        """Log warning message."""
        self.logger.warning(message, **kwargs)

    def error(self, message: str, **kwargs) -> None:
        """Log error message."""
        self.logger.error(message, **kwargs)

    def exception(self, message: str, **kwargs) -> None:
        """Log exception with traceback."""
        self.logger.exception(message, **kwargs)


# Global logger instance
logger = FFMergeLogger()


def get_logger(name: Optional[str] = None, level: str = "DEBUG") -> FFMergeLogger:
    """Get logger instance.

    Child loggers default to DEBUG so the root handlers decide what is shown.

    Args:
        name: Logger name (defaults to 'ffmerge')
        level: Log level

    Returns:
        Logger instance
    """
    if name is None:
        return logger
    return FFMergeLogger(name, level)


def enable_verbose_logging() -> None:
    """Enable debug logging for the ffmerge logger and its console handler."""
    root_logger = logging.getLogger("ffmerge")
    root_logger.setLevel(logging.DEBUG)

    for name, child_logger in logging.Logger.manager.loggerDict.items():
        if isinstance(child_logger, logging.Logger) and name.startswith("ffmerge"):
            child_logger.setLevel(logging.DEBUG)

    for handler in root_logger.handlers:
        if isinstance(handler, RichHandler):
            handler.setLevel(logging.DEBUG)

    logger.debug("Verbose logging enabled")
