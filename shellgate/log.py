"""Logging setup."""

import socket
import sys
from pathlib import Path

from loguru import logger

LOG_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss},{extra[host]},{process},{level},{name},{message}"
)


def setup_logging(log_file: Path | None = None, verbose: bool = False) -> None:
    """
    Send logs to stderr and, if given, to a log file.

    Both sinks share one comma-separated layout: time, host, pid, level,
    logger name, message.
    """
    logger.remove()
    logger.configure(extra={"host": socket.gethostname()})
    logger.add(sys.stderr, level="DEBUG" if verbose else "INFO", format=LOG_FORMAT)
    if log_file:
        logger.add(
            str(log_file),
            level="DEBUG",
            format=LOG_FORMAT,
            encoding="utf-8",
        )
