"""Custom exceptions for the construct-core pipeline engine.

This module provides a hierarchy of exceptions for error handling
in pipeline construction, execution, and the fetch cache.
"""

from __future__ import annotations

from typing import Any


class ConstructError(Exception):
    """Base exception for all construct-core errors.

    All exceptions raised by construct-core inherit from this class,
    making it easy to catch all engine-related errors.

    Example:
        >>> try:
        ...     result = run({"definition": [], "resolvers": []})
        ... except ConstructError as e:
        ...     print(f"Construct error: {e}")
    """

    pass


class ConfigurationError(ConstructError):
    """Raised when a top-level invocation or definition is malformed.

    Raised before any handler runs, so no partial execution occurs.

    Attributes:
        field: Name of the offending configuration field, if known.

    Example:
        >>> try:
        ...     run({"resolvers": []})
        ... except ConfigurationError as e:
        ...     print(e.field)
        definition
    """

    def __init__(self, message: str, *, field: str | None = None) -> None:
        super().__init__(message)
        self.field = field


class UnresolvedKindError(ConstructError):
    """Raised when a step's kind has no matching resolver.

    Only raised when the registry uses the fail-fast unknown kind policy.

    Attributes:
        kind: The step kind that could not be resolved.
    """

    def __init__(self, kind: str, known: list[str] | None = None) -> None:
        known_hint = f" (known kinds: {', '.join(sorted(known))})" if known else ""
        super().__init__(f"Can't find resolver for kind: {kind!r}{known_hint}")
        self.kind = kind
        self.known = list(known or [])


class HandlerError(ConstructError):
    """Raised when a handler fails while executing a step.

    The original exception is available as ``__cause__``.

    Attributes:
        kind: Kind of the step whose handler failed.
    """

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(f"Handler for kind {kind!r} failed: {message}")
        self.kind = kind


class CyclicDependencyError(ConstructError):
    """Raised when nested dependency resolution exceeds the depth limit.

    A dependency that (transitively) references its own enclosing step
    recurses without bound; the depth guard turns that into this error
    instead of a stack overflow.

    Attributes:
        depth: Depth at which the guard tripped.
        kind: Kind of the step whose dependencies were being resolved.
    """

    def __init__(self, depth: int, kind: str | None = None) -> None:
        where = f" while resolving dependencies of {kind!r}" if kind else ""
        super().__init__(f"Dependency depth limit {depth} exceeded{where}")
        self.depth = depth
        self.kind = kind


class ContinuationReusedError(ConstructError):
    """Raised when a continuation is invoked more than once.

    Attributes:
        kind: Kind of the step owning the continuation, or None for
            the terminal continuation.
    """

    def __init__(self, kind: str | None = None) -> None:
        owner = f"step {kind!r}" if kind else "terminal"
        super().__init__(f"Continuation for {owner} was invoked more than once")
        self.kind = kind


class AsyncSourceError(ConstructError):
    """Raised (or stored) when an asynchronous fetch fails.

    Failed fetches are kept in the cache in the ``failed`` state and
    surfaced to handlers as a StepFailure value rather than raised.

    Attributes:
        key: Cache key of the failed request.
        retryable: Whether a later retry might succeed.
        metadata: Additional error context.
    """

    retryable: bool = True

    def __init__(
        self,
        message: str,
        *,
        key: str | None = None,
        retryable: bool | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.key = key
        if retryable is not None:
            self.retryable = retryable
        self.metadata = metadata or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a serializable dictionary.

        Returns:
            Dictionary with error details.
        """
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "key": self.key,
            "retryable": self.retryable,
            "metadata": self.metadata,
        }


__all__ = [
    "ConstructError",
    "ConfigurationError",
    "UnresolvedKindError",
    "HandlerError",
    "CyclicDependencyError",
    "ContinuationReusedError",
    "AsyncSourceError",
]
