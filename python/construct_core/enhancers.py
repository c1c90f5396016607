"""Handler enhancers: cross-cutting behavior wrapped around handlers.

An enhancer takes a handler and returns a handler with the same
``(previous, current, next)`` signature.

- with_required_args: skip the handler (continuing with None) unless every
  name in the step's ``requiredArgs`` is available.
- with_dependencies: resolve the step's dependency sub-pipelines first and
  hand the handler a copy of the step with each result merged in.
- enhance: both, dependencies first, so the gate sees merged values.

Example:
    >>> def greet(previous, current, next):
    ...     return next(f"Hello {current['user']['name']}")
    >>>
    >>> resolvers = [
    ...     {"kind": "greet", "handler": enhance(greet)},
    ...     {"kind": "fetch", "handler": fetch_resolver(cache)},
    ... ]
    >>> definition = [{
    ...     "kind": "greet",
    ...     "requiredArgs": ["user"],
    ...     "dependencies": [
    ...         {"name": "user", "subSteps": [{"kind": "fetch", "url": "https://api/u/1"}]},
    ...     ],
    ... }]
"""

from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import TYPE_CHECKING, Any

from .continuation import RunContext
from .exceptions import ConfigurationError
from .logging import log_debug
from .pipeline import build
from .types import (
    EngineConfig,
    dependencies_of,
    merge_step,
    required_args_of,
    step_keys,
    step_kind,
)

if TYPE_CHECKING:
    from .registry import Handler, ResolverRegistry


def with_required_args(handler: Handler) -> Handler:
    """Gate ``handler`` on the step's required arguments.

    Available names are the keys of ``current`` plus ``previous`` when
    ``previous`` is not None. If any required name is missing the handler
    is skipped and the chain continues with ``next(None)``.
    """

    @wraps(handler)
    def gated(previous: Any, current: Any, next: Callable[[Any], Any]) -> Any:
        required = required_args_of(current)
        if not required:
            return handler(previous, current, next)

        available = step_keys(current)
        if previous is not None:
            available.add("previous")
        missing = [name for name in required if name not in available]
        if missing:
            log_debug(
                f"Skipping '{step_kind(current)}': missing required args {missing}",
            )
            return next(None)
        return handler(previous, current, next)

    return gated


def with_dependencies(
    handler: Handler,
    registry: ResolverRegistry | None = None,
) -> Handler:
    """Resolve the step's dependencies before calling ``handler``.

    Dependencies are resolved sequentially and depth-first: each one runs
    its own sub-pipeline (seeded with None) whose terminal merges the result
    into a copy of the step and moves on to the next dependency. Only once
    all of them produced a result is ``handler`` called with the merged step.
    If a sub-pipeline stops without producing a result, ``handler`` is not
    called and the sub-pipeline's return value is returned instead.

    Args:
        handler: Handler to wrap.
        registry: Registry for sub-pipelines when the handler is called
            without a pipeline Continuation as ``next``.

    Raises:
        CyclicDependencyError: If nesting exceeds the configured depth.
    """

    @wraps(handler)
    def resolving(previous: Any, current: Any, next: Callable[[Any], Any]) -> Any:
        dependencies = dependencies_of(current)
        if not dependencies:
            return handler(previous, current, next)

        context = _context_of(next, registry)
        kind = step_kind(current)

        def resolve_from(index: int, merged: Any) -> Any:
            if index == len(dependencies):
                return handler(previous, merged, next)

            name, sub_steps = dependencies[index]
            child = context.child(kind)
            log_debug(
                f"Resolving dependency '{name}' of '{kind}'",
                {"kind": kind, "depth": child.depth, "generation": child.generation},
            )

            def capture(result: Any) -> Any:
                return resolve_from(index + 1, merge_step(merged, name, result))

            sub_pipeline = build(sub_steps, child.registry, capture, config=child.config)
            return sub_pipeline.invoke(None, context=child)

        return resolve_from(0, current)

    return resolving


def enhance(handler: Handler, registry: ResolverRegistry | None = None) -> Handler:
    """Apply dependency resolution and the required-argument gate."""
    return with_dependencies(with_required_args(handler), registry)


def _context_of(next: Callable[[Any], Any], registry: ResolverRegistry | None) -> RunContext:
    context = getattr(next, "context", None)
    if isinstance(context, RunContext):
        return context
    if registry is None:
        raise ConfigurationError(
            "Dependencies can only be resolved inside a pipeline or with an explicit registry",
            field="registry",
        )
    return RunContext(registry=registry, config=EngineConfig(unknown_kind=registry.unknown_kind))


__all__ = ["with_required_args", "with_dependencies", "enhance"]
