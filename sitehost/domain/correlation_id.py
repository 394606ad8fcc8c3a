"""Per-request correlation IDs carried through contextvars.

Each connection worker sets an ID when a request arrives; every record logged
through :func:`component_logger` adapters picks it up without threading the
value through call signatures.
"""

import contextvars
import logging
import uuid
from typing import Any, MutableMapping, Optional

LOGGER_PREFIX = "sitehost."
NO_CORRELATION_ID = "-"

_current_request_id: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "sitehost_request_id", default=None
)


def generate_correlation_id() -> str:
    return str(uuid.uuid4())


def get_correlation_id() -> Optional[str]:
    return _current_request_id.get()


def set_correlation_id(correlation_id: str) -> None:
    _current_request_id.set(correlation_id)


def clear_correlation_id() -> None:
    _current_request_id.set(None)


def _component_name(logger_name: str) -> str:
    """``sitehost.transport.http1`` -> ``transport.http1``; foreign names pass through."""
    if logger_name.startswith(LOGGER_PREFIX):
        return logger_name[len(LOGGER_PREFIX) :]
    return logger_name


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Stamps ``correlation_id`` and ``component`` onto every record it emits."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        request_id = get_correlation_id()
        extra = dict(kwargs.get("extra") or {})
        extra["correlation_id"] = request_id or NO_CORRELATION_ID
        extra["component"] = _component_name(self.logger.name)
        kwargs["extra"] = extra
        return msg, kwargs


def component_logger(component: str) -> CorrelationLoggerAdapter:
    """Adapter for ``sitehost.<component>``, e.g. ``component_logger("config")``."""
    return CorrelationLoggerAdapter(logging.getLogger(LOGGER_PREFIX + component), {})
