"""
Structured JSON Logging.

Each record is written as one JSON object per line.  The auth services
tag their records through ``extra`` with an ``event`` name and, where one
applies, the ``account_id`` and ``error_code``; those three are lifted to
top-level keys so a session's history can be filtered with a plain
``jq 'select(.account_id == "...")'``.  Any other ``extra`` keys land
under ``context``.

Services never call ``logging.getLogger`` themselves: a
:class:`StructuredLogger` is built once at the composition root and
injected.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Optional, TextIO

# Keys promoted from ``extra`` to the top level of each entry.
PROMOTED_FIELDS: tuple[str, ...] = ("event", "account_id", "error_code")

_RESERVED_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
    "taskName",
}


class JSONFormatter(logging.Formatter):
    """Render a record as ``{"ts", "level", "logger", "msg", ...}``."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(
                timespec="milliseconds",
            ),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }

        context = {
            key: value
            for key, value in vars(record).items()
            if key not in _RESERVED_ATTRS
        }
        for field in PROMOTED_FIELDS:
            value = context.pop(field, None)
            if value is not None:
                entry[field] = str(value)
        if context:
            entry["context"] = {key: str(value) for key, value in context.items()}

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, ensure_ascii=False)


class StructuredLogger:
    """Injectable wrapper around a ``logging.Logger`` with JSON output.

    Constructing a ``StructuredLogger`` (re)installs its JSON handlers on
    the named logger, so building a second one for the same name replaces
    the first one's output instead of duplicating every line.

    Parameters
    ----------
    name:
        Logger name.
    level:
        Minimum level; defaults to ``LOG_LEVEL`` from the configuration.
    stream:
        Console stream; defaults to ``sys.stdout``.
    log_file:
        Path of a rotating log file; defaults to ``LOG_FILE``.  Empty
        disables file output.
    """

    def __init__(
        self,
        name: str = "vitalsync",
        level: Optional[int] = None,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
    ) -> None:
        self._logger: logging.Logger = logging.getLogger(name)

        if level is None or log_file is None:
            # Imported here: config logs through the stdlib logger at import.
            from vitalsync_auth.config import get_config

            cfg = get_config()
            level = cfg.log_level if level is None else level
            log_file = cfg.LOG_FILE if log_file is None else log_file
            max_bytes, backup_count = cfg.LOG_MAX_BYTES, cfg.LOG_BACKUP_COUNT
        else:
            max_bytes, backup_count = 5_242_880, 3

        self._logger.setLevel(level)
        for handler in list(self._logger.handlers):
            if isinstance(handler.formatter, JSONFormatter):
                self._logger.removeHandler(handler)
                handler.close()

        formatter = JSONFormatter()
        console = logging.StreamHandler(stream or sys.stdout)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        if log_file:
            try:
                path = Path(log_file)
                path.parent.mkdir(parents=True, exist_ok=True)
                rotating = RotatingFileHandler(
                    path, maxBytes=max_bytes, backupCount=backup_count, encoding="utf-8",
                )
            except OSError as exc:
                self._logger.warning(
                    "Log file %s unavailable (%s); logging to console only.", log_file, exc,
                )
            else:
                rotating.setFormatter(formatter)
                self._logger.addHandler(rotating)

    @property
    def name(self) -> str:
        return self._logger.name

    def debug(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: Any) -> None:
        self._logger.error(msg, *args, **kwargs)


def get_logger(name: str) -> StructuredLogger:
    """Logger under the ``vitalsync`` namespace, configured from settings."""
    return StructuredLogger(name=f"vitalsync.{name}")
