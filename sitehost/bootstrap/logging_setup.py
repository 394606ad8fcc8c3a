"""Process-wide logging for the site host.

Everything the host logs goes through the ``sitehost`` logger tree. Records
are written as one JSON object per line (or a plain text line when asked),
to stdout or to a size-rotated file.
"""

import json
import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from sitehost.domain.correlation_id import NO_CORRELATION_ID, CorrelationLoggerAdapter

LOGGER_NAME = "sitehost"
TEXT_FORMAT = "%(asctime)s %(levelname)s [%(correlation_id)s] %(name)s :: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"
ROTATE_AT_BYTES = 10 * 1024 * 1024
ROTATED_FILES_KEPT = 5
REDACTED = "[REDACTED]"

# Credential-looking words, long hex digests, long base64 blobs.
SENSITIVE_PATTERNS = (
    re.compile(r"(?i)(authorization|token|signature|password|secret|api[_-]?key)"),
    re.compile(r"\b[A-Fa-f0-9]{32,}\b"),
    re.compile(r"\b[A-Za-z0-9+/]{32,}={0,2}\b"),
)

# Record attributes copied into JSON output when a call site sets them.
EXTRA_KEYS = (
    # request handling
    "client",
    "method",
    "route",
    "path",
    "mount",
    "status_code",
    "bytes_out",
    "duration_ms",
    "protocol",
    # failures
    "error",
    "error_type",
    "errno",
    # listener
    "host",
    "port",
    "tls",
    # configuration resolution
    "field",
    "tier",
    "source",
    "config_file",
    "configuration",
    "log_level",
    "log_destination",
    # lifecycle
    "state",
    "remaining_connections",
    "timeout_seconds",
    "signal",
)


def redact_sensitive(value: str) -> str:
    """Return ``[REDACTED]`` when *value* looks like a credential."""
    if value and any(pattern.search(value) for pattern in SENSITIVE_PATTERNS):
        return REDACTED
    return value


class CorrelationIdFilter(logging.Filter):  # pylint: disable=too-few-public-methods
    """Give records logged outside an adapter a placeholder correlation ID."""

    def filter(self, record: logging.LogRecord) -> bool:
        if getattr(record, "correlation_id", None) is None:
            record.correlation_id = NO_CORRELATION_ID
        return True


class JsonFormatter(logging.Formatter):
    """One sorted-key JSON object per record."""

    def format(self, record: logging.LogRecord) -> str:
        payload: Dict[str, Any] = {
            "timestamp": self.formatTime(record, self.datefmt),
            "level": record.levelname,
            "component": getattr(record, "component", "unknown"),
            "correlation_id": getattr(record, "correlation_id", NO_CORRELATION_ID),
            "message": record.getMessage(),
        }
        event = getattr(record, "event", None)
        if event is not None:
            payload["event"] = event
        payload.update(self._extras(record))
        if record.exc_info:
            payload["exception"] = self.formatException(record.exc_info)
        # default=str covers Path values inside the configuration dump
        return json.dumps(payload, sort_keys=True, default=str)

    @staticmethod
    def _extras(record: logging.LogRecord) -> Dict[str, Any]:
        fields: Dict[str, Any] = {}
        for key in EXTRA_KEYS:
            if not hasattr(record, key):
                continue
            value = getattr(record, key)
            fields[key] = redact_sensitive(value) if isinstance(value, str) else value
        return fields


def _level_number(level_name: str) -> int:
    level = getattr(logging, level_name.upper(), None)
    return level if isinstance(level, int) else logging.INFO


def _open_handler(destination: Optional[str]) -> logging.Handler:
    """stdout when *destination* is empty or ``stdout``, otherwise a rotating file."""
    if not destination or destination.lower() == "stdout":
        return logging.StreamHandler(sys.stdout)
    log_path = Path(destination)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    return RotatingFileHandler(
        log_path, maxBytes=ROTATE_AT_BYTES, backupCount=ROTATED_FILES_KEPT
    )


def configure_logging(
    level: str = "INFO", destination: Optional[str] = None, use_json: bool = True
) -> CorrelationLoggerAdapter:
    """Replace the ``sitehost`` handlers with one writing to *destination*.

    Called once at startup with a permissive level; the resolved ``LogLevel``
    setting is applied afterwards through :func:`apply_log_level`.
    """
    root = logging.getLogger(LOGGER_NAME)
    for stale in list(root.handlers):
        root.removeHandler(stale)
        stale.close()

    handler = _open_handler(destination)
    if use_json:
        handler.setFormatter(JsonFormatter(datefmt=DATE_FORMAT))
    else:
        handler.setFormatter(logging.Formatter(TEXT_FORMAT, DATE_FORMAT))
    handler.addFilter(CorrelationIdFilter())

    root.addHandler(handler)
    root.propagate = False
    apply_log_level(level)
    return CorrelationLoggerAdapter(root, {})


def apply_log_level(level: str) -> None:
    """Set *level* on the ``sitehost`` logger and each of its handlers."""
    numeric = _level_number(level)
    root = logging.getLogger(LOGGER_NAME)
    root.setLevel(numeric)
    for handler in root.handlers:
        handler.setLevel(numeric)
