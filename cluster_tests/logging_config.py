"""Centralized logging configuration for the cluster-tests harness.

Provides structured logging for the bootstrap planner, the test-identity
issuer and the helpers that drive the cluster under test.
"""

import logging
import logging.handlers
import os
from pathlib import Path
from typing import Optional

# Environment variables
DEBUG_MODE = os.getenv("CLUSTER_TESTS_DEBUG", "0") == "1"
LOG_LEVEL = os.getenv("CLUSTER_TESTS_LOG_LEVEL", "DEBUG" if DEBUG_MODE else "INFO")

# Log directory configuration
HARNESS_LOG_DIR = Path(os.getenv("CLUSTER_TESTS_LOG_DIR", "logs/cluster-tests"))

ROOT_LOGGER_NAME = "cluster_tests"

DETAILED_FORMAT = (
    "[%(asctime)s] [%(levelname)-8s] [%(name)s] [%(filename)s:%(lineno)d] %(message)s"
)
SIMPLE_FORMAT = "[%(asctime)s] [%(levelname)-8s] [%(name)s] %(message)s"

# Use detailed format in debug mode
LOG_FORMAT = DETAILED_FORMAT if DEBUG_MODE else SIMPLE_FORMAT


def _get_file_handler(log_file: Path, level: int) -> logging.FileHandler:
    """Create a rotating file handler for the given log file."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
    )
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def _get_console_handler(level: int) -> logging.StreamHandler:
    """Create a console handler for streaming logs."""
    handler = logging.StreamHandler()
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    return handler


def configure_harness_logging(
    log_level: Optional[str] = None,
    include_console: bool = True,
    include_file: bool = True,
) -> logging.Logger:
    """
    Configure logging for the harness and all of its modules.

    Args:
        log_level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        include_console: Whether to also log to console
        include_file: Whether to write to the rotating log file

    Returns:
        Configured logger instance
    """
    if log_level is None:
        log_level = LOG_LEVEL

    level = getattr(logging, log_level.upper(), logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(level)

    # Remove existing handlers to avoid duplicates
    logger.handlers.clear()

    if include_file:
        logger.addHandler(
            _get_file_handler(HARNESS_LOG_DIR / "cluster-tests.log", level)
        )

    if include_console:
        logger.addHandler(_get_console_handler(level))

    logger.debug(f"Debug mode: {DEBUG_MODE}")
    logger.debug(f"Log level: {log_level}")
    return logger


def configure_module_logging(module_name: str) -> logging.Logger:
    """
    Configure logging for a specific module.

    This creates a child logger under the "cluster_tests" namespace that
    inherits the harness handlers and configuration.

    Args:
        module_name: Module name (e.g., "planner", "issuer")

    Returns:
        Configured logger instance
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{module_name}")


def get_harness_logger() -> logging.Logger:
    """Get the main harness logger (creates if doesn't exist)."""
    return logging.getLogger(ROOT_LOGGER_NAME)


class StructuredLogContext:
    """Helper for adding context to log messages."""

    def __init__(self, **context):
        self.context = context

    def __str__(self):
        items = [f"{k}={v}" for k, v in self.context.items()]
        return " | ".join(items)
