# -*- coding: utf-8 -*-
"""
Logging configuration for the payment core process.

Routes logs by severity:
- DEBUG, INFO, WARNING → STDOUT
- ERROR, CRITICAL → STDERR

Uses QueueHandler + QueueListener so request handlers never block on
stdout/stderr writes; only the listener thread does.
"""

import atexit
import logging
import queue
import sys
from logging.handlers import QueueHandler, QueueListener
from typing import Optional

import config

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

# Chatty third-party loggers capped at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "asyncpg", "uvicorn.access")


class MaxLevelFilter(logging.Filter):
    """Pass only records up to max_level (inclusive)."""

    def __init__(self, max_level):
        super().__init__()
        self.max_level = max_level

    def filter(self, record):
        return record.levelno <= self.max_level


_log_listener: Optional[QueueListener] = None


def setup_logging(level: Optional[str] = None) -> None:
    """
    Install the queue-backed root handler.

    Args:
        level: Root level name; defaults to config.LOG_LEVEL

    Call once at process start, before the first request is served.
    Calling again replaces the previous listener.
    """
    global _log_listener

    if _log_listener is not None:
        _stop_log_listener()

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, (level or config.LOG_LEVEL), logging.INFO))
    root_logger.handlers.clear()

    formatter = logging.Formatter(LOG_FORMAT)

    stdout_handler = logging.StreamHandler(sys.stdout)
    stdout_handler.setLevel(logging.DEBUG)
    stdout_handler.addFilter(MaxLevelFilter(logging.WARNING))
    stdout_handler.setFormatter(formatter)

    stderr_handler = logging.StreamHandler(sys.stderr)
    stderr_handler.setLevel(logging.ERROR)
    stderr_handler.setFormatter(formatter)

    log_queue = queue.Queue()
    root_logger.addHandler(QueueHandler(log_queue))

    _log_listener = QueueListener(
        log_queue,
        stdout_handler,
        stderr_handler,
        respect_handler_level=True,
    )
    _log_listener.start()
    atexit.register(_stop_log_listener)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    # uvicorn runs with log_config=None; its loggers go through the root queue
    for name in ("uvicorn", "uvicorn.error"):
        uvicorn_logger = logging.getLogger(name)
        uvicorn_logger.handlers.clear()
        uvicorn_logger.propagate = True


def _stop_log_listener():
    """Flush and stop the queue listener."""
    global _log_listener
    if _log_listener is not None:
        _log_listener.stop()
        _log_listener = None
