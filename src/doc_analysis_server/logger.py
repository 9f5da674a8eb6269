"""Structured JSON logger.

Every record is written to stdout as a single JSON object:
{"time":"2026-10-18T14:06:20.829529+00:00","level":"INFO","source":{"function":"decode_document","file":"decoder.py","line":43},"msg":"document decoded","encoding":"utf-8"}
"""

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from typing import Any

# Fields attached to every record emitted inside the current job
_log_context: ContextVar[dict[str, Any]] = ContextVar("log_context", default={})


class StructuredFormatter(logging.Formatter):
    """Render a LogRecord as one JSON line."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, Any] = {
            "time": datetime.now(timezone.utc).astimezone().isoformat(),
            "level": record.levelname,
            "source": {
                "function": record.funcName,
                "file": os.path.basename(record.pathname),
                "line": record.lineno,
            },
            "msg": record.getMessage(),
        }

        entry.update(_log_context.get())

        fields = getattr(record, "fields", None)
        if fields:
            entry.update(fields)

        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        # Chinese text must stay readable in the log stream
        return json.dumps(entry, ensure_ascii=False, default=str)


class StructuredLogger:
    """Logger that accepts keyword fields alongside the message."""

    def __init__(self, name: str = "app", level: str | None = None):
        self._logger = logging.getLogger(name)
        level_name = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
        self._logger.setLevel(getattr(logging, level_name, logging.INFO))

        self._logger.handlers.clear()
        handler = logging.StreamHandler(sys.stdout)
        handler.setFormatter(StructuredFormatter())
        self._logger.addHandler(handler)
        self._logger.propagate = False

    def _log(self, level: int, msg: str, exc_info: bool = False, **fields: Any) -> None:
        extra = {"fields": fields} if fields else {}
        # stacklevel 3 points the source at the caller of debug()/info()/...
        self._logger.log(level, msg, stacklevel=3, exc_info=exc_info, extra=extra)

    def debug(self, msg: str, **fields: Any) -> None:
        self._log(logging.DEBUG, msg, **fields)

    def info(self, msg: str, **fields: Any) -> None:
        self._log(logging.INFO, msg, **fields)

    def warn(self, msg: str, **fields: Any) -> None:
        self._log(logging.WARNING, msg, **fields)

    def error(self, msg: str, **fields: Any) -> None:
        self._log(logging.ERROR, msg, **fields)

    def exception(self, msg: str, **fields: Any) -> None:
        """Log at ERROR level with the active exception's traceback."""
        self._log(logging.ERROR, msg, exc_info=True, **fields)


def set_context(**fields: Any) -> None:
    """Attach fields to every subsequent record in the current context.

    Example:
        set_context(document_id="1718000000000", file_name="report.docx")
        logger.info("parsing document")  # includes document_id and file_name
    """
    _log_context.set({**_log_context.get(), **fields})


def clear_context() -> None:
    _log_context.set({})


def get_context() -> dict[str, Any]:
    return _log_context.get().copy()


logger = StructuredLogger("doc_analysis_server")
