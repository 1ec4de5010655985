"""
Centralized logging setup for Webwallet Core.

Configures the root logger with UTC timestamps and a consistent formatter,
and installs a filter that masks wallet passwords should one ever end up in
a log line (e.g. a Docker API error echoing the container command).

Usage:
    from webwallet_core.logging_setup import setup_logging

    setup_logging(level="DEBUG", log_file="/var/log/webwallet/core.log")
"""

from __future__ import annotations

import logging
import logging.handlers
import os
import re
from datetime import datetime, timezone
from typing import List, Optional, Union


class UTCFormatter(logging.Formatter):
    """Custom formatter that uses UTC timestamps in ISO format."""

    def formatTime(self, record: logging.LogRecord, datefmt: Optional[str] = None) -> str:
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat()


class SecretRedactingFilter(logging.Filter):
    """
    Masks the value of secret-bearing command line flags in log records.

    The satellite command carries the wallet password as
    ``--container-password=<value>``; any record containing one of the
    configured flags gets the value replaced with ``***``.
    """

    def __init__(self, flags: Optional[List[str]] = None):
        super().__init__()
        self.flags = flags or ["--container-password"]
        alternatives = "|".join(re.escape(f) for f in self.flags)
        self._pattern = re.compile(rf"({alternatives})=(\S+)")

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        if self._pattern.search(message):
            record.msg = self._pattern.sub(r"\1=***", message)
            record.args = None
        return True


def setup_logging(
    level: Union[int, str] = logging.INFO,
    log_file: Optional[str] = None,
    handlers: Optional[List[logging.Handler]] = None,
    secret_flags: Optional[List[str]] = None,
    max_log_bytes: int = 10 * 1024 * 1024,
    log_backup_count: int = 3,
) -> None:
    """
    Configure logging with UTC timestamps and consistent formatting.

    Args:
        level: Logging level, numeric or name (default: INFO)
        log_file: Optional path of a rotating log file
        handlers: Additional handlers to add
        secret_flags: Command line flags whose values must never be logged
        max_log_bytes: Max size of the rotating log file (default: 10MB)
        log_backup_count: Number of rotated backup files to keep (default: 3)
    """
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    root = logging.getLogger()
    root.setLevel(level)

    formatter = UTCFormatter("%(asctime)s %(levelname)s:%(name)s:%(message)s")
    redactor = SecretRedactingFilter(secret_flags)

    # Remove existing handlers to avoid double-logging
    for h in list(root.handlers):
        root.removeHandler(h)

    all_handlers: List[logging.Handler] = []

    stream_h = logging.StreamHandler()
    stream_h.setLevel(level)
    all_handlers.append(stream_h)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_h = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_log_bytes,
            backupCount=log_backup_count,
            encoding="utf-8",
        )
        file_h.setLevel(level)
        all_handlers.append(file_h)

    all_handlers.extend(handlers or [])

    for h in all_handlers:
        h.setFormatter(formatter)
        h.addFilter(redactor)
        root.addHandler(h)


__all__ = [
    "setup_logging",
    "UTCFormatter",
    "SecretRedactingFilter",
]
