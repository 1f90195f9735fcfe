# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Structured JSON logger for foundry-overlay.

Every log entry is a single JSON line on stdout (and optionally a file), so the
scheduled update job produces output that CI log search can filter on.

How this works:
  - We use Python's standard `logging` module under the hood, but replace the
    default formatter with JsonFormatter, which serializes every log record
    into a single JSON line.
  - The factory function `get_logger` is the only way to create loggers.

The JSON structure looks like:
  {"ts": "2026-...", "level": "INFO", "module": "foundry_overlay.sync.release", "msg": "Release resolved", ...}
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional

_STANDARD_ATTRS: frozenset[str] = frozenset(
    {
        "name",
        "msg",
        "args",
        "created",
        "relativeCreated",
        "exc_info",
        "exc_text",
        "stack_info",
        "lineno",
        "funcName",
        "pathname",
        "filename",
        "module",
        "levelno",
        "levelname",
        "processName",
        "process",
        "threadName",
        "thread",
        "message",
        "msecs",
        "taskName",
    }
)


class JsonFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Each entry carries ts, level, module and msg. Anything the caller passed
    through `extra=` is merged in as additional fields (platform, tag, url...).
    Exceptions logged with exc_info end up under "exc".
    """

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "msg": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in _STANDARD_ATTRS and not key.startswith("_"):
                entry[key] = value

        if record.exc_info:
            entry["exc"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


_VALID_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def _resolve_log_level(level_name: str) -> int:
    """Turn a level name string into the corresponding logging constant."""
    upper = level_name.upper()
    if upper not in _VALID_LOG_LEVELS:
        raise ValueError(
            f"Invalid log level '{level_name}'. Must be one of: {', '.join(sorted(_VALID_LOG_LEVELS))}"
        )
    return getattr(logging, upper)


# Package-wide settings applied by configure_logging; loggers created later
# (lazily imported modules) pick them up too.
_package_level: Optional[str] = None
_package_log_file: Optional[Path] = None


def _make_handler(handler: logging.Handler, level: int) -> logging.Handler:
    handler.setLevel(level)
    handler.setFormatter(JsonFormatter())
    return handler


def _attach_file_handler(logger: logging.Logger, log_file: Path, level: int) -> None:
    target = str(log_file.resolve())
    for handler in logger.handlers:
        if isinstance(handler, logging.FileHandler) and handler.baseFilename == target:
            return
    log_file.parent.mkdir(parents=True, exist_ok=True)
    logger.addHandler(_make_handler(logging.FileHandler(str(log_file), encoding="utf-8"), level))


def get_logger(
    name: str,
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Create a structured JSON logger.

    Every module calls this once at the top and keeps the returned instance.
    Calling it again for the same name updates the level and adds the file
    handler if one is requested, without stacking duplicate handlers.

    Args:
        name: Logger name, typically __name__ of the calling module.
        log_level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL. Defaults to
                   the package level set by configure_logging, else INFO.
        log_file: Optional path to a log file. If provided, logs go to both
                  stdout and the file.

    Returns:
        A configured logging.Logger that outputs structured JSON.
    """
    logger = logging.getLogger(name)
    level = _resolve_log_level(log_level or _package_level or "INFO")
    logger.setLevel(level)

    if not logger.handlers:
        logger.addHandler(_make_handler(logging.StreamHandler(stream=sys.stdout), level))
    for handler in logger.handlers:
        handler.setLevel(level)

    file_target = log_file or _package_log_file
    if file_target is not None:
        _attach_file_handler(logger, file_target, level)

    # Don't propagate to root logger, we handle all output ourselves.
    logger.propagate = False

    return logger


def configure_logging(log_level: str, log_file: Optional[Path] = None) -> None:
    """
    Apply a level (and optional log file) to every foundry_overlay logger,
    both the ones that already exist and the ones created afterwards.
    """
    global _package_level, _package_log_file
    _resolve_log_level(log_level)
    _package_level = log_level
    _package_log_file = log_file

    for name, existing in list(logging.Logger.manager.loggerDict.items()):
        if not isinstance(existing, logging.Logger):
            continue
        if name == "foundry_overlay" or name.startswith("foundry_overlay."):
            get_logger(name)
