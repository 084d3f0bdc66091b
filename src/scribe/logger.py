"""
Centralized logging for Scribe.

One ``scribe`` logger for the whole package: console output at the configured
level, plus an optional log file that always receives errors with tracebacks.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

LOGGER_NAME = "scribe"

# Format: [2024-01-15 14:30:25] ERROR scribe.server - message
LOG_FORMAT = "[%(asctime)s] %(levelname)s %(name)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ScribeLogger:
    """Centralized logger for the Scribe package (singleton)."""

    _instance = None
    _logger = None

    def __init__(self):
        if ScribeLogger._logger is None:
            ScribeLogger._logger = self._setup_logger()

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Get the singleton package logger."""
        if cls._instance is None:
            cls._instance = cls()
        return cls._logger

    @classmethod
    def configure(cls, level: Union[str, int] = "INFO",
                  log_file: Optional[Union[str, Path]] = None) -> logging.Logger:
        """Apply level and file settings from the configuration.

        Args:
            level: Console log level name or number
            log_file: Optional path; errors and above are always written there
        """
        logger = cls.get_logger()
        if isinstance(level, str):
            level = logging.getLevelName(level.upper())
            if not isinstance(level, int):
                level = logging.INFO

        for handler in logger.handlers:
            if isinstance(handler, logging.StreamHandler) and not isinstance(handler, logging.FileHandler):
                handler.setLevel(level)
        logger.setLevel(min(level, logging.ERROR))

        if log_file:
            log_path = Path(log_file)
            log_path.parent.mkdir(parents=True, exist_ok=True)
            if not any(isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_path.resolve()
                       for h in logger.handlers):
                file_handler = logging.FileHandler(log_path, mode='a', encoding='utf-8')
                file_handler.setLevel(min(level, logging.ERROR))
                file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
                logger.addHandler(file_handler)
        return logger

    def _setup_logger(self) -> logging.Logger:
        """Set up the console logger."""
        logger = logging.getLogger(LOGGER_NAME)
        logger.setLevel(logging.INFO)
        logger.propagate = False

        # Remove any existing handlers
        logger.handlers = []

        console_handler = logging.StreamHandler(sys.stderr)
        console_handler.setLevel(logging.INFO)
        console_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        logger.addHandler(console_handler)

        return logger


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """Get the package logger or a child of it.

    ``get_logger("scribe.server")`` and ``get_logger("server")`` both return
    the ``scribe.server`` logger.
    """
    root = ScribeLogger.get_logger()
    if not name or name == LOGGER_NAME:
        return root
    if name.startswith(LOGGER_NAME + "."):
        name = name[len(LOGGER_NAME) + 1:]
    return root.getChild(name)


def log_exception(exception, context=""):
    """
    Log an exception with full traceback.

    Args:
        exception: Exception object
        context: Optional context string (e.g., "in /upload-chunk")
    """
    logger = ScribeLogger.get_logger()
    if context:
        logger.error(f"Exception {context}", exc_info=exception)
    else:
        logger.error("Exception occurred", exc_info=exception)


# Initialize logger on import
ScribeLogger.get_logger()
