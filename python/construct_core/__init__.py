"""
Construct Core

This package resolves declarative, serializable lists of steps into a
single computed result. Each step is handed to the resolver registered
for its ``kind`` together with the value produced by the previous step
and a continuation for the rest of the pipeline.

Example:
    >>> import construct_core
    >>> construct_core.run({
    ...     "definition": [{"kind": "start"}, {"kind": "increment"}],
    ...     "resolvers": [
    ...         {"kind": "start", "handler": lambda previous, current, next: next(10)},
    ...         {"kind": "increment", "handler": lambda previous, current, next: next(previous + 1)},
    ...     ],
    ... })
    11

    >>> # Nested dependencies and argument gating
    >>> from construct_core import enhance
    >>> resolvers = [{"kind": "greet", "handler": enhance(greet)}]

    >>> # Asynchronous fetches re-run the pipeline when they settle
    >>> from construct_core import ConstructDriver, FetchCache, builtin_resolvers
    >>> cache = FetchCache()
    >>> driver = ConstructDriver(
    ...     {"definition": definition, "resolvers": builtin_resolvers(cache)},
    ...     cache=cache,
    ... )
    >>> driver.render()
"""

from __future__ import annotations

from construct_core.cache import CacheEntry, FetchCache, request_key
from construct_core.continuation import CancellationToken, Continuation, RunContext
from construct_core.definition_loader import DefinitionPath, load_definition, load_document
from construct_core.driver import ConstructDriver
from construct_core.enhancers import enhance, with_dependencies, with_required_args

# Import fetch error classification
from construct_core.errors import (
    FetchTimeoutError,
    HttpStatusError,
    InvalidResponseError,
    NetworkError,
    PermanentFetchError,
    RetryableFetchError,
)
from construct_core.errors.error_classifier import (
    ErrorClassifier,
    get_classifier,
    is_retryable,
)
from construct_core.event_bridge import EventBridge, EventNames
from construct_core.exceptions import (
    AsyncSourceError,
    ConfigurationError,
    ConstructError,
    ContinuationReusedError,
    CyclicDependencyError,
    HandlerError,
    UnresolvedKindError,
)

# Import logging functions
from construct_core.logging import (
    log_debug,
    log_error,
    log_info,
    log_trace,
    log_warn,
)
from construct_core.pipeline import Pipeline, build, identity, run
from construct_core.registry import ResolverRegistry, discover_resolvers, resolver
from construct_core.resolvers import (
    builtin_resolvers,
    dumb_fetch,
    fetch_resolver,
    identity_resolver,
    property_resolver,
    value_resolver,
)
from construct_core.types import (
    CacheState,
    ConstructConfig,
    Dependency,
    EngineConfig,
    ErrorPolicy,
    LogContext,
    ResolverSpec,
    Step,
    StepFailure,
    Suspended,
    UnknownKindPolicy,
)

__version__ = "0.1.0"

__all__ = [
    "__version__",
    "version",
    # Entry points
    "run",
    "build",
    "identity",
    "Pipeline",
    # Registry
    "ResolverRegistry",
    "resolver",
    "discover_resolvers",
    # Continuations
    "Continuation",
    "RunContext",
    "CancellationToken",
    # Enhancers
    "enhance",
    "with_dependencies",
    "with_required_args",
    # Async source and re-runs
    "FetchCache",
    "CacheEntry",
    "request_key",
    "ConstructDriver",
    "EventBridge",
    "EventNames",
    # Built-in resolvers
    "builtin_resolvers",
    "fetch_resolver",
    "dumb_fetch",
    "identity_resolver",
    "property_resolver",
    "value_resolver",
    # Definition files
    "DefinitionPath",
    "load_definition",
    "load_document",
    # Types
    "Step",
    "Dependency",
    "ResolverSpec",
    "ConstructConfig",
    "EngineConfig",
    "UnknownKindPolicy",
    "ErrorPolicy",
    "CacheState",
    "StepFailure",
    "Suspended",
    "LogContext",
    # Exceptions
    "ConstructError",
    "ConfigurationError",
    "UnresolvedKindError",
    "HandlerError",
    "CyclicDependencyError",
    "ContinuationReusedError",
    "AsyncSourceError",
    # Error classification
    "RetryableFetchError",
    "PermanentFetchError",
    "NetworkError",
    "FetchTimeoutError",
    "HttpStatusError",
    "InvalidResponseError",
    "ErrorClassifier",
    "get_classifier",
    "is_retryable",
    # Logging
    "log_error",
    "log_warn",
    "log_info",
    "log_debug",
    "log_trace",
]


def version() -> str:
    """Return the package version.

    Example:
        >>> import construct_core
        >>> construct_core.version()
        '0.1.0'
    """
    return __version__
