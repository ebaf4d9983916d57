"""Logging configuration for the file server.

All aplos loggers hang off the ``aplos`` root logger, which gets exactly one
handler: stdout or a rotating file, rendering either JSON lines or plain text.
Only whitelisted ``extra`` fields are rendered, and string values that look like
credentials or key material are replaced before they reach the output.
"""

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from aplos.domain.correlation_id import LOGGER_ROOT, CorrelationLoggerAdapter

LOG_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s :: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
MAX_BYTES = 10 * 1024 * 1024
BACKUP_COUNT = 5
REDACTED = "[REDACTED]"

SENSITIVE_PATTERNS = [
    re.compile(r"(?i)(authorization|token|signature|password|secret|api[_-]?key)"),
    re.compile(r"-----BEGIN [A-Z ]*PRIVATE KEY-----"),
    re.compile(r"\b[A-Fa-f0-9]{64,}\b"),
]

EXTRA_KEYS = frozenset(
    {
        "client",
        "commit",
        "destination",
        "directory",
        "error",
        "error_type",
        "grace_seconds",
        "healthcheck_endpoint",
        "host",
        "log_format",
        "port",
        "remaining_connections",
        "signal",
        "state",
        "tls",
        "tls_cert_file",
        "tls_key_file",
        "value",
        "var",
        "version",
    }
)


def redact_sensitive(value: str) -> str:
    """Replace credentials, private key blocks and long hex digests."""
    if value and any(pattern.search(value) for pattern in SENSITIVE_PATTERNS):
        return REDACTED
    return value


def extract_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Collect the whitelisted extra fields of a record, redacting strings."""
    extras = {}
    for key in sorted(EXTRA_KEYS.intersection(record.__dict__)):
        value = record.__dict__[key]
        extras[key] = redact_sensitive(value) if isinstance(value, str) else value
    return extras


class CorrelationIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Ensure correlation_id field exists in log records."""

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, "correlation_id"):
            record.correlation_id = "-"
        return True


class JsonFormatter(logging.Formatter):
    """One JSON object per line with sorted keys."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "correlation_id": getattr(record, "correlation_id", "-"),
            "component": getattr(record, "component", "unknown"),
            "message": record.getMessage(),
        }
        if hasattr(record, "event"):
            payload["event"] = record.event
        payload.update(extract_extras(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        return json.dumps(payload, sort_keys=True, default=str)


class TextFormatter(logging.Formatter):
    """Human-readable lines with the event and extras appended as key=value."""

    def __init__(self, datefmt: Optional[str] = DATE_FORMAT) -> None:
        super().__init__(LOG_FORMAT, datefmt)

    def formatMessage(self, record: logging.LogRecord) -> str:
        line = super().formatMessage(record)
        fields = extract_extras(record)
        if hasattr(record, "event"):
            fields = {"event": record.event, **fields}
        if fields:
            line += " " + " ".join(f"{key}={value}" for key, value in fields.items())
        return line


FORMATTERS = {"json": JsonFormatter, "text": TextFormatter}


def _resolve_level(level_name: str) -> int:
    level = getattr(logging, level_name.upper(), None)
    return level if isinstance(level, int) else logging.INFO


def _build_handler(
    destination: Optional[str], level: int, log_format: str = "json"
) -> logging.Handler:
    """Create a stdout or rotating file handler for the configured logger."""
    if destination and destination.lower() != "stdout":
        target_path = Path(destination)
        target_path.parent.mkdir(parents=True, exist_ok=True)
        handler: logging.Handler = RotatingFileHandler(
            target_path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT
        )
    else:
        handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(level)
    handler.setFormatter(FORMATTERS.get(log_format, JsonFormatter)(datefmt=DATE_FORMAT))
    handler.addFilter(CorrelationIdFilter())
    return handler


def configure_logging(
    level: str = "INFO", destination: Optional[str] = None, log_format: str = "json"
) -> CorrelationLoggerAdapter:
    """Point the ``aplos`` logger at a single fresh handler and return an adapter."""
    logger = logging.getLogger(LOGGER_ROOT)
    numeric_level = _resolve_level(level)
    logger.setLevel(numeric_level)
    logger.propagate = False

    for handler in list(logger.handlers):
        handler.close()
    logger.handlers.clear()
    logger.addHandler(_build_handler(destination, numeric_level, log_format))

    adapter = CorrelationLoggerAdapter(logger, {})
    adapter.info(
        "Logging configured",
        extra={
            "event": "logging_configured",
            "destination": destination or "stdout",
            "log_format": log_format,
        },
    )
    return adapter
