"""
Logging setup

All modules log through the shared ``logger`` exported here. ``setup_logging``
is called once by the entry point; until then records propagate to whatever
the host process configured.
"""

import json
import logging
import sys
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

from .trace_context import TraceLogFilter

LOGGER_NAME = "moltbot_lark"

TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s%(trace_suffix)s: %(message)s"

# "warn" is accepted for parity with the config schema
LEVELS = {
    "error": logging.ERROR,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "info": logging.INFO,
    "debug": logging.DEBUG,
}

logger = logging.getLogger(LOGGER_NAME)


class JsonFormatter(logging.Formatter):
    """One JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "name": record.name,
            "msg": record.getMessage(),
        }
        trace_id = getattr(record, "trace_id", "")
        if trace_id:
            payload["trace_id"] = trace_id
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, ensure_ascii=False)


class TextFormatter(logging.Formatter):
    """Plain text formatter that appends the trace id when one is set."""

    def format(self, record: logging.LogRecord) -> str:
        trace_id = getattr(record, "trace_id", "")
        record.trace_suffix = f" [{trace_id}]" if trace_id else ""
        return super().format(record)


def setup_logging(
    level: str = "info",
    fmt: str = "json",
    log_file: Optional[str] = None,
) -> logging.Logger:
    """
    Configure the project logger.

    Args:
        level: One of error / warn / info / debug
        fmt: "json" or "text"
        log_file: Optional path of a rotating log file

    Returns:
        The configured project logger
    """
    logger.setLevel(LEVELS.get(level.lower(), logging.INFO))
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = JsonFormatter() if fmt == "json" else TextFormatter(TEXT_FORMAT)
    trace_filter = TraceLogFilter()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(formatter)
    console.addFilter(trace_filter)
    logger.addHandler(console)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(
            log_file, maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
        )
        file_handler.setFormatter(formatter)
        file_handler.addFilter(trace_filter)
        logger.addHandler(file_handler)

    return logger
