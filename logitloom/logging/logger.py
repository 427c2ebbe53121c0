# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Structured JSON logger for logitloom.

Every log entry is a single JSON line: timestamped, leveled, and tagged
with the module that produced it. Subsystems attach structured context
(strategy names, token counts, file names) through the `extra` kwarg
instead of formatting it into the message.

How this works:
  - We use Python's standard `logging` module under the hood, but replace the
    default formatter with JsonFormatter, which serializes every log record
    into a single JSON line.
  - Log lines go to stderr. Stdout belongs to generated text, so a user can
    pipe `logitloom run ... > out.txt` and get only the model's output.
  - The factory function `get_logger` is the only way to create loggers.

The JSON structure looks like:
  {"ts": "2026-...", "level": "INFO", "module": "logitloom.hub.core", "msg": "model cached", ...}
"""

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

_ROOT_LOGGER_NAME = "logitloom"

# level and shared file handler applied to logitloom loggers created later
_state: dict[str, Any] = {"level": logging.INFO, "file_handler": None}


class JsonFormatter(logging.Formatter):
    """
    Formats log records as single-line JSON objects.

    Each log entry contains four mandatory fields:
      ts    : ISO 8601 UTC timestamp
      level : log level name
      module: the logger name (usually the Python module path)
      msg   : the formatted message string

    If the log call includes `extra` keyword args, those get merged into the
    JSON object as additional context fields.
    """

    _STANDARD_ATTRS = frozenset(
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

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.now(tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "module": record.name,
            "msg": record.getMessage(),
        }

        for key, value in record.__dict__.items():
            if key not in self._STANDARD_ATTRS and not key.startswith("_"):
                entry[key] = value

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

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


def get_logger(
    name: str,
    log_level: Optional[str] = None,
    log_file: Optional[Path] = None,
) -> logging.Logger:
    """
    Create a structured JSON logger.

    Every module should call this once at the top and use the returned
    logger instance.

    Args:
        name: Logger name, typically __name__ of the calling module.
        log_level: One of DEBUG, INFO, WARNING, ERROR, CRITICAL. When omitted,
                   the level set by `configure_logging` applies (INFO before
                   that).
        log_file: Optional path to a log file. If provided, logs go to both
                  stderr and the file.

    Returns:
        A configured logging.Logger that outputs structured JSON.
    """
    logger = logging.getLogger(name)
    if log_level is not None:
        logger.setLevel(_resolve_log_level(log_level))
    else:
        logger.setLevel(_state["level"])

    # get_logger is called repeatedly for the same name in tests
    if logger.handlers:
        return logger

    formatter = JsonFormatter()

    stream_handler = logging.StreamHandler(stream=sys.stderr)
    stream_handler.setFormatter(formatter)
    logger.addHandler(stream_handler)

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(str(log_file), encoding="utf-8")
        file_handler.setFormatter(formatter)
        logger.addHandler(file_handler)
    elif _state["file_handler"] is not None and _is_ours(name):
        logger.addHandler(_state["file_handler"])

    logger.propagate = False

    return logger


def _is_ours(name: str) -> bool:
    return name == _ROOT_LOGGER_NAME or name.startswith(_ROOT_LOGGER_NAME + ".")


def _our_loggers() -> list[logging.Logger]:
    return [
        candidate
        for name, candidate in logging.Logger.manager.loggerDict.items()
        if isinstance(candidate, logging.Logger) and _is_ours(name)
    ]


def set_log_level(level_name: str) -> None:
    """
    Re-level every logitloom logger, including ones created later.

    Module loggers are created at import time, so the CLI calls this after
    parsing `--log-level` to make the flag reach loggers that were created
    before the flag was known.
    """
    level = _resolve_log_level(level_name)
    _state["level"] = level
    for candidate in _our_loggers():
        candidate.setLevel(level)


def configure_logging(level_name: str, log_file: Optional[Path] = None) -> None:
    """
    Apply the `global` config section to every logitloom logger.

    With a log file, one shared file handler is attached to every existing
    logitloom logger, and to every one created afterwards. Calling this again
    with a different file swaps the handler.
    """
    set_log_level(level_name)
    if log_file is None:
        return

    old = _state["file_handler"]
    if isinstance(old, logging.FileHandler) and Path(old.baseFilename) == log_file.resolve():
        return

    log_file.parent.mkdir(parents=True, exist_ok=True)
    handler = logging.FileHandler(str(log_file), encoding="utf-8")
    handler.setFormatter(JsonFormatter())

    for candidate in _our_loggers():
        if old is not None:
            candidate.removeHandler(old)
        candidate.addHandler(handler)
    if old is not None:
        old.close()
    _state["file_handler"] = handler
