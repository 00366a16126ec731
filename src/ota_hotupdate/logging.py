"""
Structured logging for OTA hot update.

Every update flow logs its stage transitions and failures through loggers
obtained from get_logger(). Output is JSON by default so that update
attempts on a fleet of hosts can be collected and queried.

setup_logging() can add a file handler for unattended devices, or switch
to plain text when debugging interactively.
"""

from __future__ import annotations

import json
import logging
import sys
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from ota_hotupdate.config import LoggingConfig

ROOT_LOGGER_NAME = "ota_hotupdate"

# Used when json_format is False
DEFAULT_LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_RESERVED_RECORD_KEYS = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    }
)


class JSONFormatter(logging.Formatter):
    """
    Render each record as a single-line JSON document.

    Records carry `timestamp` (UTC, ISO 8601), `level`, `logger` and
    `message`, an `exception` traceback when exc_info is set, and every
    non-None field passed through `extra`. Values json cannot encode, such
    as Path objects, are written with str().
    """

    def format(self, record: logging.LogRecord) -> str:
        log_entry: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        # Fields passed through the `extra` parameter of logging calls
        for key in set(record.__dict__.keys()) - _RESERVED_RECORD_KEYS:
            value = getattr(record, key, None)
            if value is not None:
                log_entry[key] = value

        return json.dumps(log_entry, default=str)


def _make_formatter(json_format: bool) -> logging.Formatter:
    if json_format:
        return JSONFormatter()
    return logging.Formatter(DEFAULT_LOG_FORMAT)


def setup_logging(
    config: LoggingConfig | None = None,
    *,
    level: str = "INFO",
    json_format: bool = True,
    log_to_stdout: bool = True,
    log_file: Path | str | None = None,
) -> logging.Logger:
    """
    Install handlers on the "ota_hotupdate" logger.

    Calling it again replaces the handlers installed by the previous call.
    Records do not propagate to the root logger, so a host application's
    own logging setup is left alone.

    Args:
        config: Logging section of AppConfig. When given, its values win
            over the keyword arguments.
        level: Level name used without a config.
        json_format: Emit JSON lines instead of plain text.
        log_to_stdout: Attach a stdout handler.
        log_file: Also append records to this file, creating its directory.

    Returns:
        The configured "ota_hotupdate" logger.

    Example:
        >>> logger = setup_logging(level="DEBUG", log_file="/var/log/ota.log")
        >>> logger.info("Updater started", extra={"bundle_dir": "/opt/app"})
    """
    if config is not None:
        log_level = "DEBUG" if config.debug_mode else config.level.upper()
        json_format = config.json_format
        log_to_stdout = config.log_to_stdout
        log_file = config.log_file
    else:
        log_level = level.upper()

    numeric_level = getattr(logging, log_level, logging.INFO)

    logger = logging.getLogger(ROOT_LOGGER_NAME)
    logger.setLevel(numeric_level)

    # Repeated setup must not stack handlers
    logger.handlers.clear()

    if log_to_stdout:
        handler: logging.Handler = logging.StreamHandler(sys.stdout)
        handler.setLevel(numeric_level)
        handler.setFormatter(_make_formatter(json_format))
        logger.addHandler(handler)

    if log_file:
        path = Path(log_file)
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(_make_formatter(json_format))
        logger.addHandler(file_handler)

    logger.propagate = False

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Return a logger below "ota_hotupdate".

    Module names inside the package (__name__) are used as-is. Any other
    name, e.g. "orchestrator", is nested under the package logger so that
    setup_logging() handlers apply to it.
    """
    if name != ROOT_LOGGER_NAME and not name.startswith(f"{ROOT_LOGGER_NAME}."):
        name = f"{ROOT_LOGGER_NAME}.{name}"

    return logging.getLogger(name)
