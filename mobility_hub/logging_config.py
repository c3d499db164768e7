"""
Structured JSON logging configuration.

Every record carries the provider and query it belongs to when available,
so the output of concurrent provider calls can be told apart.
"""

import json
import logging
import sys
from datetime import UTC, datetime
from typing import TextIO

from mobility_hub.config import get_config

# Optional LogRecord attributes copied into the JSON entry
CONTEXT_FIELDS = ("correlation_id", "query_id", "provider_id")

# Loggers of the HTTP stack, limited to WARNING
QUIET_LOGGERS = ("httpx", "httpcore")


class JSONFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Example:
        >>> handler = logging.StreamHandler()
        >>> handler.setFormatter(JSONFormatter())
        >>> logger = logging.getLogger(__name__)
        >>> logger.addHandler(handler)
        >>> logger.info("Options stream stopping", extra={"query_id": "a1b2c3"})
    """

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON.

        Args:
            record: Python logging.LogRecord

        Returns:
            JSON string with structured log data
        """
        entry = {
            "timestamp": datetime.now(UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }
        entry.update(
            (name, getattr(record, name)) for name in CONTEXT_FIELDS if hasattr(record, name)
        )
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)

        return json.dumps(entry, default=str)


def setup_logging(level: str | None = None, stream: TextIO | None = None):
    """
    Send all log records to ``stream`` as JSON lines.

    Args:
        level: Log level name; defaults to ``LOG_LEVEL`` from the configuration
        stream: Output stream (stdout if omitted)

    Example:
        >>> setup_logging()
        >>> logging.getLogger("mobility_hub").info("Registry loaded")
    """
    level = (level or get_config().log_level).upper()

    handler = logging.StreamHandler(stream or sys.stdout)
    handler.setFormatter(JSONFormatter())

    root_logger = logging.getLogger()
    root_logger.setLevel(level)
    root_logger.handlers[:] = [handler]

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).debug(f"JSON logging configured at {level}")
