"""
Logging configuration for the library RAG pipeline.

Provides structured logging with proper formatting and levels.
"""

import logging
import sys
from typing import Optional

from library_rag.config.settings import LoggingConfig


def setup_logging(
    name: str,
    config: Optional[LoggingConfig] = None,
    level: Optional[str] = None,
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Set up logging configuration for a module or the whole package.

    Args:
        name: Logger name (typically "library_rag" or __name__)
        config: Logging configuration section
        level: Logging level override
        log_file: Optional log file path

    Returns:
        Configured logger instance
    """
    config = config or LoggingConfig()

    logger = logging.getLogger(name)

    log_level = level or config.level
    logger.setLevel(getattr(logging, log_level.upper()))

    # Avoid duplicate handlers
    if logger.handlers:
        return logger

    formatter = logging.Formatter(
        fmt=config.format,
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file or config.file_path:
        file_path = log_file or config.file_path
        file_handler = logging.FileHandler(file_path)
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger instance for a module."""
    return logging.getLogger(name)
