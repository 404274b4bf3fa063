"""
Logging utility for PoseTracking

Provides centralized logging configuration with file and console output support.
All algorithm modules log below the "PoseTracking" namespace so a single call to
configure_root_logger() controls the whole package.
"""

import logging
import sys
from pathlib import Path
from typing import Optional


ROOT_LOGGER_NAME = "PoseTracking"


def setup_logger(
    name: str = ROOT_LOGGER_NAME,
    level: str = "INFO",
    log_file: Optional[str] = None,
    console: bool = True,
    force: bool = False
) -> logging.Logger:
    """
    Setup logger with file and/or console output

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Optional path to log file
        console: Whether to output to console
        force: Force reconfiguration even if already configured

    Returns:
        Configured logger

    Example:
        >>> logger = setup_logger('PoseTracking', level='DEBUG', log_file='tracking.log')
        >>> logger.info("Tracking started")
    """
    logger = logging.getLogger(name)

    # Only configure if not already configured (unless force=True)
    if logger.handlers and not force:
        return logger

    logger.setLevel(getattr(logging, level.upper()))
    logger.handlers = []

    # Format: [2025-10-31 10:15:30] [INFO] [PoseTracking.registration] Message
    formatter = logging.Formatter(
        '[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )

    if console:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setFormatter(formatter)
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode='a')
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get logger for a specific module

    Args:
        name: Module name (e.g., 'pose.ransac', 'registration.fast_icp', 'tracking')

    Returns:
        Logger instance

    Example:
        >>> from PoseTracking.logger import get_logger
        >>> logger = get_logger("tracking.lk")
        >>> logger.info("Tracker initialised")
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")


def configure_root_logger(level: str = "INFO", log_file: Optional[str] = None):
    """
    Configure the root PoseTracking logger

    This should be called once by the application embedding the library.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Optional path to log file
    """
    setup_logger(
        name=ROOT_LOGGER_NAME,
        level=level,
        log_file=log_file,
        console=True,
        force=True
    )


def disable_console_logging():
    """Disable console output, keep only file logging"""
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    for handler in logger.handlers[:]:
        if isinstance(handler, logging.StreamHandler) and handler.stream == sys.stdout:
            logger.removeHandler(handler)


def set_level(level: str):
    """
    Change logging level dynamically

    Args:
        level: New logging level (DEBUG, INFO, WARNING, ERROR)
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))
