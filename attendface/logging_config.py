"""Logging configuration for the attendance pipeline.

Every line names the capture station it came from and the sampling
session (scan, enrollment) whose worker thread emitted it, so logs from
several kiosks or interleaved sessions can be told apart:

    2026-03-02 09:30:00 | INFO     | lobby-1/scan | attendface.matcher | ...
"""

from __future__ import annotations

import logging
import sys
import threading
from typing import Dict, Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(station)s/%(session)s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Sampler workers are named "attendface-<session>"
SESSION_THREAD_PREFIX = "attendface-"

# One handler per log file, shared by every module logger
_file_handlers: Dict[str, logging.FileHandler] = {}


class StationFilter(logging.Filter):
    """Stamps records with the capture station and the emitting session.

    Attributes:
        station: Device descriptor of this capture station
    """

    def __init__(self, station: str = "attendface"):
        super().__init__()
        self.station = station

    def filter(self, record: logging.LogRecord) -> bool:
        record.station = self.station
        thread_name = record.threadName or threading.current_thread().name
        if thread_name.startswith(SESSION_THREAD_PREFIX):
            record.session = thread_name[len(SESSION_THREAD_PREFIX):]
        else:
            record.session = "main"
        return True


class ColoredFormatter(logging.Formatter):
    """Colors the level name and session on a terminal."""

    COLORS = {
        "DEBUG": "\033[36m",  # Cyan
        "INFO": "\033[32m",  # Green
        "WARNING": "\033[33m",  # Yellow
        "ERROR": "\033[31m",  # Red
        "CRITICAL": "\033[35m",  # Magenta
    }
    RESET = "\033[0m"
    BOLD = "\033[1m"

    def format(self, record: logging.LogRecord) -> str:
        if not (hasattr(sys.stdout, "isatty") and sys.stdout.isatty()):
            return super().format(record)

        # Color a copy so the file handler sees the plain record
        record = logging.makeLogRecord(record.__dict__)
        if record.levelname in self.COLORS:
            record.levelname = f"{self.COLORS[record.levelname]}{self.BOLD}{record.levelname}{self.RESET}"
        if getattr(record, "session", "main") != "main":
            record.session = f"{self.BOLD}{record.session}{self.RESET}"
        return super().format(record)


def setup_logging(
    name: str = "attendface",
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    station: Optional[str] = None,
) -> logging.Logger:
    """Setup and configure a logger with consistent formatting.

    Args:
        name: Logger name (usually module name or 'attendface' for root)
        level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
               If None, reads from environment via Config.
        log_file: Optional file path to also log to a file.
               If None, reads LOG_FILE via Config.
        station: Capture station shown on every line.
               If None, reads DEVICE_DESCRIPTOR via Config.

    Returns:
        Configured logger instance.

    Example:
        >>> logger = setup_logging(__name__)
        >>> logger.info("Scan session started")
    """
    logger = logging.getLogger(name)

    # Already configured; avoid duplicate handlers
    if logger.handlers:
        return logger

    if level is None or log_file is None or station is None:
        try:
            from attendface.config import get_config

            config = get_config()
            level = level or config.log_level
            log_file = log_file or config.log_file
            station = station or config.device_descriptor
        except ValueError:
            level = level or "INFO"

    logger.setLevel(getattr(logging, level.upper(), logging.INFO))
    station_filter = StationFilter(station or "attendface")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logger.level)
    console_handler.addFilter(station_filter)
    console_handler.setFormatter(ColoredFormatter(LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        file_handler = _file_handlers.get(log_file)
        if file_handler is None:
            file_handler = logging.FileHandler(log_file)
            file_handler.addFilter(station_filter)
            file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
            _file_handlers[log_file] = file_handler
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """Get logger for a specific module.

    Args:
        name: Module name (typically __name__)
    """
    return setup_logging(name)
