"""
Structured JSON Logging.

One JSON object per line, to stdout and to a size-rotated file.  Ledger
context passed through ``extra`` (``actor_id``, ``transaction_id``,
``transfer_id``, ...) is lifted to the top level of the entry so log
shippers can index it; anything else lands under ``"extra"``.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional, TextIO, Union

# ``extra`` keys promoted to top-level fields.
CONTEXT_FIELDS: tuple[str, ...] = (
    "actor_id",
    "transaction_id",
    "transaction_number",
    "transfer_id",
    "status",
)

_LogValue = Union[str, dict[str, str]]


class JSONFormatter(logging.Formatter):
    """Render a record as ``{timestamp, level, logger, thread, message, ...}``."""

    _RESERVED: frozenset[str] = frozenset(
        logging.LogRecord(
            name="", level=0, pathname="", lineno=0, msg="", args=(), exc_info=None
        ).__dict__
    ) | {"message", "asctime"}

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, _LogValue] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "thread": record.threadName or "",
            "message": record.getMessage(),
        }

        leftovers: dict[str, str] = {}
        for key, value in record.__dict__.items():
            if key in self._RESERVED:
                continue
            if key in CONTEXT_FIELDS:
                entry[key] = str(value)
            else:
                leftovers[key] = str(value)
        if leftovers:
            entry["extra"] = leftovers

        if record.exc_info and not record.exc_text:
            record.exc_text = self.formatException(record.exc_info)
        if record.exc_text:
            entry["exception"] = record.exc_text

        return json.dumps(entry, ensure_ascii=False)


class StructuredLogger:
    """Injectable wrapper around a named ``logging.Logger``.

    Handlers are attached once per logger name, so building several
    ``StructuredLogger`` objects for the same name is cheap and never
    duplicates output.

    Usage::

        log = StructuredLogger(name="pettycash")
        log.info("Funds added", extra={"transfer_id": "FT2024050001"})
    """

    def __init__(
        self,
        name: str = "pettycash",
        level: int = logging.INFO,
        stream: Optional[TextIO] = None,
        log_file: Optional[str] = None,
        max_bytes: Optional[int] = None,
        backup_count: Optional[int] = None,
    ) -> None:
        self._logger: logging.Logger = logging.getLogger(name)
        self._logger.setLevel(level)
        if self._logger.handlers:
            return

        # Deferred: config imports the models package.
        from pettycash.config import get_config

        cfg = get_config()
        formatter = JSONFormatter()

        console = logging.StreamHandler(stream or sys.stdout)
        console.setLevel(level)
        console.setFormatter(formatter)
        self._logger.addHandler(console)

        target = log_file or cfg.LOG_FILE
        try:
            self._logger.addHandler(
                self._file_handler(
                    Path(target),
                    max_bytes if max_bytes is not None else cfg.LOG_MAX_BYTES,
                    backup_count if backup_count is not None else cfg.LOG_BACKUP_COUNT,
                    level,
                    formatter,
                )
            )
        except OSError as exc:
            self._logger.warning(
                "Log file '%s' unavailable (%s); logging to console only.", target, exc,
            )

    @staticmethod
    def _file_handler(
        path: Path,
        max_bytes: int,
        backup_count: int,
        level: int,
        formatter: logging.Formatter,
    ) -> RotatingFileHandler:
        path.parent.mkdir(parents=True, exist_ok=True)
        handler = RotatingFileHandler(
            filename=str(path),
            maxBytes=max_bytes,
            backupCount=backup_count,
            encoding="utf-8",
        )
        handler.setLevel(level)
        handler.setFormatter(formatter)
        return handler

    @property
    def logger(self) -> logging.Logger:
        return self._logger

    def debug(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.debug(msg, *args, **kwargs)

    def info(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.info(msg, *args, **kwargs)

    def warning(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.warning(msg, *args, **kwargs)

    def error(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.error(msg, *args, **kwargs)

    def critical(self, msg: str, *args: object, **kwargs: object) -> None:
        self._logger.critical(msg, *args, **kwargs)


def get_logger(name: str = "pettycash") -> StructuredLogger:
    """Return a ``StructuredLogger`` for *name* using the configured file and rotation."""
    return StructuredLogger(name=name)
