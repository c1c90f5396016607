"""Structured logging for construct-core.

Every record goes to the standard library logger ``construct_core``. The
structured fields are rendered as a ``[key=value ...]`` suffix so they
survive plain formatters, and are also attached to the record as
``record.fields`` for handlers that emit JSON.

Example:
    >>> from construct_core import log_debug, LogContext
    >>>
    >>> log_debug("Resolving dependency 'user'", {"kind": "greet", "depth": 1})
    >>> log_debug("Fetch pending", LogContext(cache_key="GET https://api/u/1"))
"""

from __future__ import annotations

import logging
from typing import Any

from .types import LogContext

Fields = dict[str, Any] | LogContext | None

# Below DEBUG; continuation hops and other per-call noise
TRACE = 5
logging.addLevelName(TRACE, "TRACE")

_logger = logging.getLogger("construct_core")


def log_error(message: str, fields: Fields = None) -> None:
    """Log at ERROR: a run failed and nobody will see the exception otherwise.

    Args:
        message: The log message.
        fields: Structured context, as a dict or a LogContext.
    """
    _emit(logging.ERROR, message, fields)


def log_warn(message: str, fields: Fields = None) -> None:
    """Log at WARNING: failed fetches, contained handler errors, dropped events."""
    _emit(logging.WARNING, message, fields)


def log_info(message: str, fields: Fields = None) -> None:
    """Log at INFO: bridge lifecycle, settled fetches, finished runs."""
    _emit(logging.INFO, message, fields)


def log_debug(message: str, fields: Fields = None) -> None:
    _emit(logging.DEBUG, message, fields)


def log_trace(message: str, fields: Fields = None) -> None:
    _emit(TRACE, message, fields)


def _emit(level: int, message: str, fields: Fields) -> None:
    if not _logger.isEnabledFor(level):
        return
    context = _stringify(fields)
    if context:
        message = "{} [{}]".format(message, " ".join(f"{key}={value}" for key, value in context.items()))
    _logger.log(level, message, extra={"fields": context})


def _stringify(fields: Fields) -> dict[str, str]:
    """Flatten fields to strings, leaving out unset LogContext values."""
    if fields is None:
        return {}
    if isinstance(fields, LogContext):
        fields = fields.model_dump(exclude_none=True)
    return {key: str(value) for key, value in fields.items()}


__all__ = [
    "log_error",
    "log_warn",
    "log_info",
    "log_debug",
    "log_trace",
    "TRACE",
]
