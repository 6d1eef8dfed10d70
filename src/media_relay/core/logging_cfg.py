"""Logging configuration utilities.

Every record is emitted as one JSON line. Context passed through ``extra=`` (the
extractor pid, argv, exit code, stderr tail, bytes relayed, ...) becomes top-level
keys, so relay events can be filtered per request or per child process.
"""
from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from typing import Any

# Attributes every LogRecord carries; anything else on a record came from ``extra=``.
_STANDARD_ATTRS: frozenset[str] = frozenset(
    vars(logging.LogRecord("", logging.INFO, "", 0, "", None, None))
) | {"message", "asctime", "taskName"}


class JsonFormatter(logging.Formatter):
    """JSON log formatter that carries ``extra=`` context.

    Parameters
    ----------
    max_field_chars: int
        String context values longer than this keep only their tail; extractor
        stderr can be long and the end holds the error.
    """

    def __init__(self, max_field_chars: int = 4000) -> None:
        super().__init__()
        self.max_field_chars: int = max_field_chars

    def _context(self, record: logging.LogRecord) -> dict[str, Any]:
        context: dict[str, Any] = {}
        for key, value in vars(record).items():
            if key in _STANDARD_ATTRS or key.startswith("_") or value is None:
                continue
            if isinstance(value, str) and len(value) > self.max_field_chars:
                value = "..." + value[-self.max_field_chars :]
            context[key] = value
        return context

    def format(self, record: logging.LogRecord) -> str:
        """Format a log record as a JSON string.

        Parameters
        ----------
        record: logging.LogRecord
            The log record to format.

        Returns
        -------
        str
            The formatted JSON log line.
        """

        payload: dict[str, Any] = {
            "level": record.levelname,
            "time": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "message": record.getMessage(),
            "name": record.name,
            "function": record.funcName,
            "line": record.lineno,
        }
        payload.update(self._context(record))
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False, default=str)


def setup_logging(debug: bool) -> None:
    """Initialize application logging with JSON formatting.

    Parameters
    ----------
    debug: bool
        Whether to set the root logger to DEBUG level. Per-line extractor stderr
        is logged at INFO, spawned argv at DEBUG.
    """

    level: int = logging.DEBUG if debug else logging.INFO
    handler: logging.Handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger: logging.Logger = logging.getLogger()
    root_logger.setLevel(level)
    # Remove default handlers uvicorn might add in certain run modes
    for h in list(root_logger.handlers):
        root_logger.removeHandler(h)
    root_logger.addHandler(handler)

    # Tweak noisy loggers
    logging.getLogger("uvicorn").setLevel(level)
    logging.getLogger("uvicorn.error").setLevel(level)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING if not debug else level)
