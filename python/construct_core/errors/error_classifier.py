"""Retryability of failures reaching the chain as StepFailure values.

A StepFailure carries a ``retryable`` flag so that a handler receiving one
(a contained handler error, or a failed fetch cache entry) can decide
whether invalidating the cache entry and rendering again is worthwhile.

Decisions are made in this order:

1. an explicit ``retryable`` attribute on the exception (all fetch errors)
2. an HTTP status carried by the exception (``httpx.HTTPStatusError``)
3. engine and bad-input errors, which never succeed on retry
4. transport and OS level errors, which might
5. the classifier default

Example:
    >>> from construct_core.errors.error_classifier import ErrorClassifier
    >>>
    >>> classifier = ErrorClassifier()
    >>> classifier.retryable(NetworkError("connection refused"))
    True
    >>> classifier.classify(KeyError("url"))["classification"]
    'permanent_class'
"""

from __future__ import annotations

import httpx

from ..exceptions import (
    ConfigurationError,
    ContinuationReusedError,
    CyclicDependencyError,
    UnresolvedKindError,
)
from . import RETRYABLE_STATUS_CODES, PermanentFetchError, RetryableFetchError

# Mistakes in definitions, resolvers or handler code
_PERMANENT: tuple[type[BaseException], ...] = (
    PermanentFetchError,
    ConfigurationError,
    UnresolvedKindError,
    CyclicDependencyError,
    ContinuationReusedError,
    ValueError,
    TypeError,
    KeyError,
    AttributeError,
    IndexError,
    LookupError,
    AssertionError,
    NotImplementedError,
)

# Failures of the outside world
_TRANSIENT: tuple[type[BaseException], ...] = (
    RetryableFetchError,
    httpx.TransportError,
    ConnectionError,
    TimeoutError,
    OSError,
)


class ErrorClassifier:
    """Decides whether a failure might succeed on a later render.

    Args:
        default_retryable: Verdict for exceptions matching no rule.

    Example:
        >>> ErrorClassifier().retryable(ConnectionError("reset by peer"))
        True
        >>> ErrorClassifier(default_retryable=False).retryable(RuntimeError("boom"))
        False
    """

    def __init__(self, *, default_retryable: bool = True) -> None:
        self._default_retryable = default_retryable

    @property
    def default_retryable(self) -> bool:
        return self._default_retryable

    def retryable(self, exception: BaseException) -> bool:
        return bool(self.classify(exception)["retryable"])

    def permanent(self, exception: BaseException) -> bool:
        return not self.retryable(exception)

    def classify(self, exception: BaseException) -> dict[str, bool | str]:
        """Classify ``exception`` and report which rule decided.

        Returns:
            Mapping with ``error_type``, ``retryable`` and ``classification``
            (``explicit_attribute``, ``http_status``, ``permanent_class``,
            ``retryable_class`` or ``default``).

        Example:
            >>> ErrorClassifier().classify(HttpStatusError(404))
            {'error_type': 'HttpStatusError', 'retryable': False, 'classification': 'explicit_attribute'}
        """
        explicit = getattr(exception, "retryable", None)
        if isinstance(explicit, bool):
            return _verdict(exception, explicit, "explicit_attribute")

        if isinstance(exception, httpx.HTTPStatusError):
            status = exception.response.status_code
            return _verdict(
                exception,
                status in RETRYABLE_STATUS_CODES or status >= 500,
                "http_status",
            )

        # Permanent wins for classes matching both tuples
        if isinstance(exception, _PERMANENT):
            return _verdict(exception, False, "permanent_class")
        if isinstance(exception, _TRANSIENT):
            return _verdict(exception, True, "retryable_class")
        return _verdict(exception, self._default_retryable, "default")


def _verdict(exception: BaseException, retryable: bool, classification: str) -> dict[str, bool | str]:
    return {
        "error_type": type(exception).__name__,
        "retryable": retryable,
        "classification": classification,
    }


_shared: ErrorClassifier | None = None


def get_classifier() -> ErrorClassifier:
    """Return the classifier used by StepFailure.from_exception()."""
    global _shared
    if _shared is None:
        _shared = ErrorClassifier()
    return _shared


def is_retryable(exception: BaseException) -> bool:
    """Classify ``exception`` with the shared classifier."""
    return get_classifier().retryable(exception)


__all__ = [
    "ErrorClassifier",
    "get_classifier",
    "is_retryable",
]
