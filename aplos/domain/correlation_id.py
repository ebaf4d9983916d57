"""Per-connection correlation IDs carried in a context variable."""

import contextvars
import logging
import uuid
from typing import Any, MutableMapping, Optional

LOGGER_ROOT = "aplos"
NO_CORRELATION_ID = "-"

_correlation_id_var: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "correlation_id", default=None
)


def new_correlation_id() -> str:
    """Return a fresh random ID for an accepted connection."""
    return uuid.uuid4().hex


def current_correlation_id() -> Optional[str]:
    return _correlation_id_var.get()


def bind_correlation_id(correlation_id: str) -> contextvars.Token:
    """Bind an ID to the current context; pass the token to reset_correlation_id."""
    return _correlation_id_var.set(correlation_id)


def reset_correlation_id(token: contextvars.Token) -> None:
    _correlation_id_var.reset(token)


def component_name(logger_name: str) -> str:
    """Strip the ``aplos.`` prefix from a logger name."""
    prefix = LOGGER_ROOT + "."
    return logger_name[len(prefix) :] if logger_name.startswith(prefix) else logger_name


class CorrelationLoggerAdapter(logging.LoggerAdapter):
    """Adds ``correlation_id`` and ``component`` to every record's extras."""

    def process(
        self, msg: str, kwargs: MutableMapping[str, Any]
    ) -> tuple[str, MutableMapping[str, Any]]:
        extra = dict(kwargs.get("extra") or {})
        extra["correlation_id"] = current_correlation_id() or NO_CORRELATION_ID
        extra["component"] = component_name(self.logger.name)
        kwargs["extra"] = extra
        return msg, kwargs
