"""Pipeline builder and top-level entry point.

A pipeline is an ordered list of steps composed right-to-left into a
single chain of continuations. Each step's continuation looks up its
handler and calls ``handler(previous, step, downstream)``, where
``downstream`` is the continuation built for everything after it. The
handler therefore decides whether and when the rest of the pipeline runs,
which is what allows conditional, asynchronous and branching handlers.

Example:
    >>> from construct_core import run
    >>>
    >>> run({
    ...     "definition": [{"kind": "start"}, {"kind": "increment"}, {"kind": "increment"}],
    ...     "resolvers": [
    ...         {"kind": "start", "handler": lambda previous, current, next: next(10)},
    ...         {"kind": "increment", "handler": lambda previous, current, next: next(previous + 1)},
    ...     ],
    ... })
    12
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping, Sequence
from typing import Any

from pydantic import ValidationError

from .continuation import Continuation, RunContext
from .exceptions import (
    ConfigurationError,
    ContinuationReusedError,
    CyclicDependencyError,
    HandlerError,
    UnresolvedKindError,
)
from .logging import log_debug, log_warn
from .registry import Handler, ResolverRegistry
from .types import (
    ConstructConfig,
    Dependency,
    EngineConfig,
    ErrorPolicy,
    Step,
    StepFailure,
    dependencies_of,
    step_kind,
)

# Errors that always abort the invocation, whatever the error policy
FATAL_ERRORS: tuple[type[Exception], ...] = (
    ConfigurationError,
    UnresolvedKindError,
    CyclicDependencyError,
    ContinuationReusedError,
    HandlerError,
)


def identity(value: Any) -> Any:
    """Default terminal continuation."""
    return value


class Pipeline:
    """A composed chain of steps.

    Handlers are looked up when the pipeline is built, so an unknown kind
    fails before any handler runs. Each invocation composes a fresh set of
    single-use continuations, so the same pipeline can be re-run.

    Example:
        >>> pipeline = build(steps, registry, render)
        >>> pipeline()          # seed defaults to None
        >>> pipeline(seed=5)
    """

    def __init__(
        self,
        steps: Sequence[Any],
        registry: ResolverRegistry,
        terminal: Callable[[Any], Any] | None = None,
        *,
        config: EngineConfig | None = None,
    ) -> None:
        self._steps = list(steps)
        self._registry = registry
        self._terminal = terminal or identity
        self._config = config or EngineConfig(unknown_kind=registry.unknown_kind)
        self._handlers: list[tuple[Any, str, Handler]] = []
        for step in self._steps:
            kind = step_kind(step)
            self._handlers.append((step, kind, registry.lookup(kind)))

    @property
    def steps(self) -> list[Any]:
        return list(self._steps)

    @property
    def registry(self) -> ResolverRegistry:
        return self._registry

    @property
    def config(self) -> EngineConfig:
        return self._config

    def __len__(self) -> int:
        return len(self._steps)

    def __call__(self, seed: Any = None, *, context: RunContext | None = None) -> Any:
        return self.invoke(seed, context=context)

    def invoke(self, seed: Any = None, *, context: RunContext | None = None) -> Any:
        """Drive the chain with ``seed`` as the first handler's ``previous``.

        Args:
            seed: Initial value.
            context: Invocation context; a fresh top-level context is
                created when omitted.

        Returns:
            Whatever the chain returns: the terminal's result if every
            handler continued, otherwise the value returned by the handler
            that stopped.
        """
        if context is None:
            context = RunContext(registry=self._registry, config=self._config)
        return self.compose(context)(seed)

    def compose(self, context: RunContext) -> Continuation:
        """Compose the steps right-to-left into a single entry continuation."""
        terminal = Continuation(self._finish(context), context)
        downstream = terminal
        for step, kind, handler in reversed(self._handlers):
            downstream = Continuation(
                self._link(step, kind, handler, downstream, terminal, context),
                context,
                kind,
            )
        return downstream

    def _finish(self, context: RunContext) -> Callable[[Any], Any]:
        render = self._terminal

        def finish(value: Any) -> Any:
            context.completed = True
            return render(value)

        return finish

    def _link(
        self,
        step: Any,
        kind: str,
        handler: Handler,
        downstream: Continuation,
        terminal: Continuation,
        context: RunContext,
    ) -> Callable[[Any], Any]:
        contain = context.config.error_policy is ErrorPolicy.CONTAIN

        def advance(previous: Any) -> Any:
            try:
                return handler(previous, step, downstream)
            except FATAL_ERRORS:
                raise
            except Exception as exc:
                # Once next ran, the result has left this step and cannot be contained
                if downstream.invoked or not contain:
                    raise HandlerError(kind, str(exc)) from exc
                log_warn(
                    f"Handler for kind '{kind}' failed, containing failure: {exc}",
                    {"kind": kind, "depth": context.depth, "generation": context.generation},
                )
                return terminal(StepFailure.from_exception(exc, kind=kind))

        return advance

    def __repr__(self) -> str:
        kinds = [kind for _step, kind, _handler in self._handlers]
        return f"Pipeline(kinds={kinds!r})"


def build(
    steps: Sequence[Any],
    registry: ResolverRegistry,
    terminal: Callable[[Any], Any] | None = None,
    *,
    config: EngineConfig | None = None,
) -> Pipeline:
    """Compose ``steps`` into a pipeline.

    Args:
        steps: Ordered steps; an empty sequence yields a pipeline that
            applies ``terminal`` to the seed.
        registry: Registry used to look up each step's handler.
        terminal: Continuation receiving the final value (identity default).
        config: Engine configuration.

    Returns:
        The composed Pipeline.

    Raises:
        UnresolvedKindError: If a kind is unknown and the policy is FAIL.
    """
    return Pipeline(steps, registry, terminal, config=config)


def coerce_config(config: Any) -> ConstructConfig:
    """Validate a top-level invocation.

    Raises:
        ConfigurationError: If ``definition`` or ``resolvers`` is missing or
            malformed.
    """
    if isinstance(config, ConstructConfig):
        return config
    if config is None or not isinstance(config, Mapping):
        raise ConfigurationError(
            f"Expected a configuration mapping, got {type(config).__name__}", field="config"
        )
    for required in ("definition", "resolvers"):
        if config.get(required) is None:
            raise ConfigurationError(f"Missing required field '{required}'", field=required)
    try:
        return ConstructConfig.model_validate(dict(config))
    except ValidationError as exc:
        field = ".".join(str(part) for part in exc.errors()[0]["loc"]) if exc.errors() else None
        raise ConfigurationError(f"Invalid configuration: {exc}", field=field) from exc


def validate_definition(
    definition: Iterable[Any],
    registry: ResolverRegistry,
    path: str = "definition",
    *,
    _ancestors: tuple[int, ...] = (),
) -> None:
    """Check every step, including nested dependency steps.

    Args:
        definition: Steps to check.
        registry: Registry the steps will run against.
        path: Location prefix for error messages.

    Raises:
        ConfigurationError: If a step is malformed.
        UnresolvedKindError: If a kind is unknown and the policy is FAIL.
        CyclicDependencyError: If a step is nested inside its own dependencies.
    """
    if isinstance(definition, (str, bytes, Mapping)) or not isinstance(definition, Iterable):
        raise ConfigurationError(f"{path}: expected a list of steps", field=path)

    for index, step in enumerate(definition):
        location = f"{path}[{index}]"
        if not isinstance(step, (Mapping, Step)):
            raise ConfigurationError(
                f"{location}: expected a mapping, got {type(step).__name__}", field=location
            )
        if id(step) in _ancestors:
            raise CyclicDependencyError(len(_ancestors), step_kind(step))
        if isinstance(step, Mapping):
            _validate_step_shape(step, location)
        registry.validate_step(step, location)
        for name, sub_steps in dependencies_of(step):
            validate_definition(
                sub_steps,
                registry,
                f"{location}.dependencies.{name}",
                _ancestors=(*_ancestors, id(step)),
            )


def _validate_step_shape(step: Mapping[str, Any], location: str) -> None:
    # Nested steps are validated by the recursive walk, not by pydantic
    shallow = {key: value for key, value in step.items() if key != "dependencies"}
    try:
        Step.model_validate(shallow)
    except ValidationError as exc:
        raise ConfigurationError(f"{location}: invalid step: {exc}", field=location) from exc

    dependencies = step.get("dependencies")
    if dependencies is None:
        return
    if not isinstance(dependencies, list):
        raise ConfigurationError(
            f"{location}.dependencies: expected a list", field=f"{location}.dependencies"
        )
    for index, dependency in enumerate(dependencies):
        where = f"{location}.dependencies[{index}]"
        if isinstance(dependency, Dependency):
            continue
        if not isinstance(dependency, Mapping):
            raise ConfigurationError(f"{where}: expected a mapping", field=where)
        name = dependency.get("name")
        if not isinstance(name, str) or not name:
            raise ConfigurationError(f"{where}: dependency needs a non-empty 'name'", field=where)
        sub_steps = dependency.get("subSteps", dependency.get("sub_steps"))
        if sub_steps is not None and not isinstance(sub_steps, (list, tuple)):
            raise ConfigurationError(f"{where}: 'subSteps' must be a list", field=where)


def run(config: Any, *, engine_config: EngineConfig | None = None) -> Any:
    """Resolve a definition into a single result.

    Args:
        config: Mapping or ConstructConfig with ``definition`` (required),
            ``resolvers`` (required), ``render`` and ``seed`` (optional).
        engine_config: Engine configuration (defaults to EngineConfig()).

    Returns:
        The result of the chain.

    Raises:
        ConfigurationError: If the invocation is malformed; no handler runs.
        UnresolvedKindError: If a kind has no resolver under the FAIL policy.
        HandlerError: If a handler raises under the PROPAGATE policy.
    """
    construct = coerce_config(config)
    engine = engine_config or EngineConfig()
    registry = ResolverRegistry.from_resolvers(construct.resolvers, unknown_kind=engine.unknown_kind)
    validate_definition(construct.definition, registry)

    pipeline = build(construct.definition, registry, construct.render, config=engine)
    log_debug(f"Running pipeline with {len(pipeline)} steps")
    return pipeline(construct.seed)


__all__ = [
    "Pipeline",
    "build",
    "run",
    "identity",
    "coerce_config",
    "validate_definition",
    "FATAL_ERRORS",
]
