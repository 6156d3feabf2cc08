"""
Configure logging for the application.

This module sets up the portal's logging infrastructure with both console and file output.
It configures:
- A rotating file handler to manage log files
- A console handler for immediate feedback
- Log level from portal_settings (debug_mode forces DEBUG)
- Custom log format with timestamps and source information
"""

import logging
import logging.handlers
import os
import sys

from portal.config import get_config_value

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(module)s.%(funcName)s:%(lineno)d - %(message)s"


def _resolve_log_level() -> int:
    if get_config_value("portal_settings.debug_mode", False):
        return logging.DEBUG
    level_name = str(get_config_value("portal_settings.log_level", "INFO")).upper()
    level = getattr(logging, level_name, None)
    return level if isinstance(level, int) else logging.INFO


def setup_logging() -> None:
    """
    Configure logging with rotating file and stream handlers.

    The file handler rotates at 5MB and keeps 5 backups. If the log file cannot be
    opened, logging continues on the console only.
    """
    log_level = _resolve_log_level()
    log_formatter = logging.Formatter(LOG_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    log_file = get_config_value("portal_settings.log_file_name", "portal.log")
    if not isinstance(log_file, str) or not log_file:
        log_file = "fallback_portal.log"

    log_dir = os.path.dirname(log_file)
    if log_dir and not os.path.exists(log_dir):
        try:
            os.makedirs(log_dir)
        except OSError as e:
            print(
                f"Could not create log directory {log_dir}: {e}. Using current directory for logs.",
                file=sys.stderr,
            )
            log_file = os.path.basename(log_file)

    try:
        file_handler = logging.handlers.RotatingFileHandler(
            log_file, maxBytes=5 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(log_formatter)
        root_logger.addHandler(file_handler)
    except PermissionError:
        print(
            f"Error: Permission denied writing log file to {log_file}. Check permissions.",
            file=sys.stderr,
        )
    except OSError as e:
        print(f"Error setting up file logger: {e}", file=sys.stderr)

    stream_handler = logging.StreamHandler(sys.stdout)
    stream_handler.setFormatter(log_formatter)
    root_logger.addHandler(stream_handler)

    logging.info(
        f"Logging setup complete. Level: {logging.getLevelName(log_level)}, File: {log_file}"
    )
