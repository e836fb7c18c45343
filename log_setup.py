# log_setup.py
"""
Root logger configuration for the backup tool.

Importing this module configures logging once for the whole process:
console output, a tool log rotated at midnight and an error-only log.
The settings below can be overridden through the environment so that a
systemd unit or cron entry can redirect the logs without a code change:

    FSA_BACKUP_LOG_DIR        directory for both log files (default .logs)
    FSA_BACKUP_LOG_LEVEL      DEBUG, INFO, WARNING, ... (default INFO)
    FSA_BACKUP_LOG_RETENTION  number of rotated tool logs kept (default 30)

The tool log is separate from the durable backup log that receives the
fsarchiver output (see backup_log.py).
"""

import logging
import os
import sys
from logging.handlers import TimedRotatingFileHandler

# --- Configuration ---
LOG_DIR = os.environ.get("FSA_BACKUP_LOG_DIR", ".logs")
LOG_LEVEL = os.environ.get("FSA_BACKUP_LOG_LEVEL", "INFO").upper()
LOG_FILE = os.path.join(LOG_DIR, "fsarchiver-backup.log")
ERROR_LOG_FILE = os.path.join(LOG_DIR, "fsarchiver-backup.err")

DEFAULT_LOG_RETENTION = 30

FORMATTER = logging.Formatter("%(asctime)s | %(module)s | %(levelname)s | %(message)s")

_CONFIGURED_FLAG = "_fsa_backup_configured"


def resolve_level(name: str) -> int:
    """Maps a level name to its number, falling back to INFO for unknown names."""
    level = logging.getLevelName(name)
    return level if isinstance(level, int) else logging.INFO


def resolve_retention(value: str) -> int:
    """Parses the rotated-log count, falling back to the default for invalid values."""
    try:
        retention = int(value)
    except (TypeError, ValueError):
        return DEFAULT_LOG_RETENTION
    return retention if retention >= 0 else DEFAULT_LOG_RETENTION


LOG_RETENTION = resolve_retention(os.environ.get("FSA_BACKUP_LOG_RETENTION", ""))


def get_console_handler():
    """Returns a handler that prints to the console (stdout)."""
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(FORMATTER)
    return console_handler


def get_file_handler(log_file: str = LOG_FILE, retention: int = LOG_RETENTION):
    """Returns a midnight-rotating handler for the tool log."""
    file_handler = TimedRotatingFileHandler(log_file, when="midnight", backupCount=retention)
    file_handler.setFormatter(FORMATTER)
    return file_handler


def get_error_file_handler(error_log_file: str = ERROR_LOG_FILE):
    """
    Returns a handler that records only ERROR and CRITICAL messages.
    The file is opened lazily, so it only appears once an error occurs.
    """
    error_handler = logging.FileHandler(error_log_file, delay=True)
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(FORMATTER)
    return error_handler


def configure_logging(log_dir: str = LOG_DIR, level: str = LOG_LEVEL) -> logging.Logger:
    """
    Attaches the console, tool-log and error-log handlers to the root logger.

    Calling it again is a no-op, so modules may import log_setup freely.
    """
    logger = logging.getLogger()
    if getattr(logger, _CONFIGURED_FLAG, False):
        return logger

    os.makedirs(log_dir, exist_ok=True)
    logger.setLevel(resolve_level(level))
    logger.addHandler(get_console_handler())
    logger.addHandler(get_file_handler(os.path.join(log_dir, os.path.basename(LOG_FILE))))
    logger.addHandler(get_error_file_handler(os.path.join(log_dir, os.path.basename(ERROR_LOG_FILE))))
    setattr(logger, _CONFIGURED_FLAG, True)
    return logger


configure_logging()
