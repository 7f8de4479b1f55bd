#!/usr/bin/env python3
"""
ReconCore - Logging setup
Copyright (C) 2026  Dorin Badea
GPLv3 License
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime
from logging.handlers import RotatingFileHandler
from typing import Callable, Optional

from reconcore.utils.config import get_config_paths

LOGGER_NAME = "reconcore"
FILE_FORMAT = "%(asctime)s - [%(levelname)s] - %(funcName)s:%(lineno)d - %(message)s"
CONSOLE_FORMAT = "%(levelname)s: %(message)s"

_VERBOSITY_LEVELS = {0: logging.ERROR, 1: logging.INFO}


class _NoTracebackFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        exc_info = record.exc_info
        stack_info = record.stack_info
        record.exc_info = None
        record.stack_info = None
        try:
            return super().format(record)
        finally:
            record.exc_info = exc_info
            record.stack_info = stack_info


class _UIAwareStreamHandler(logging.StreamHandler):
    """Console handler that stays quiet while a progress display owns the terminal."""

    def __init__(self, *, ui_active: Optional[Callable[[], bool]] = None, stream=None):
        super().__init__(stream=stream)
        self._ui_active = ui_active

    def emit(self, record: logging.LogRecord) -> None:
        if self._ui_active is not None and self._ui_active():
            return
        super().emit(record)


def default_log_dir() -> str:
    config_dir, _ = get_config_paths()
    return os.path.join(config_dir, "logs")


def setup_logging(
    verbosity: int = 0,
    log_dir: Optional[str] = None,
    ui_active: Optional[Callable[[], bool]] = None,
) -> logging.Logger:
    """
    Configure the `reconcore` logger with rotation.

    The file handler records everything at DEBUG; the console only shows
    errors unless verbosity is raised (-v INFO, -vv DEBUG). When the log
    directory is not writable, logging continues on the console alone.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logging.getLogger("scapy.runtime").setLevel(logging.ERROR)

    log_dir = log_dir or default_log_dir()
    file_handler = None
    try:
        os.makedirs(log_dir, exist_ok=True)
        log_file = os.path.join(log_dir, f"reconcore_{datetime.now().strftime('%Y%m%d')}.log")
        file_handler = RotatingFileHandler(log_file, maxBytes=10 * 1024 * 1024, backupCount=5)
        file_handler.setFormatter(logging.Formatter(FILE_FORMAT))
        file_handler.setLevel(logging.DEBUG)
    except OSError:
        file_handler = None

    console = _UIAwareStreamHandler(ui_active=ui_active, stream=sys.stderr)
    console.setLevel(_VERBOSITY_LEVELS.get(verbosity, logging.DEBUG))
    console.setFormatter(_NoTracebackFormatter(CONSOLE_FORMAT))

    # Re-running setup (tests, repeated CLI calls) replaces our own handlers.
    for handler in list(logger.handlers):
        if isinstance(handler, (RotatingFileHandler, _UIAwareStreamHandler)):
            logger.removeHandler(handler)
            handler.close()
    if file_handler:
        logger.addHandler(file_handler)
    logger.addHandler(console)

    if file_handler is None:
        logger.warning("File logging disabled (permission or path issue)")
    logger.info("=" * 60)
    logger.info("ReconCore session start")
    logger.info("User: %s", os.getenv("SUDO_USER", os.getenv("USER", "unknown")))
    logger.info("PID: %s", os.getpid())
    return logger
