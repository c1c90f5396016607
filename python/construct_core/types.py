"""Pydantic models for construct-core.

This module provides the data model of the pipeline engine using
Pydantic v2 for validation and serialization:

- Step / Dependency: shape of definition entries (validation only; handlers
  always receive the caller's own step objects)
- ResolverSpec: a kind bound to a handler
- ConstructConfig / EngineConfig: invocation and engine configuration
- StepFailure / Suspended: distinguished values flowing through the chain
"""

from __future__ import annotations

import os
from collections.abc import Callable, Mapping
from enum import Enum
from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field


class UnknownKindPolicy(str, Enum):
    """What the registry does with a step kind that has no resolver."""

    FAIL = "fail"
    """Raise UnresolvedKindError before any handler runs."""

    IDENTITY = "identity"
    """Forward ``previous`` unchanged via ``next``."""


class ErrorPolicy(str, Enum):
    """What the pipeline does when a handler raises."""

    PROPAGATE = "propagate"
    """Abort the whole invocation with a HandlerError."""

    CONTAIN = "contain"
    """Deliver a StepFailure to the enclosing pipeline's terminal."""


class CacheState(str, Enum):
    """Lifecycle states of a fetch cache entry."""

    PENDING = "pending"
    """Request submitted, no result yet."""

    COMPLETE = "complete"
    """Parsed response body available."""

    FAILED = "failed"
    """Request failed; the error is stored on the entry."""


class LogContext(BaseModel):
    """Context fields for structured logging.

    Example:
        >>> context = LogContext(generation=2, kind="fetch", depth=1)
        >>> log_debug("Resolving dependencies", context)
    """

    generation: int | None = Field(
        default=None,
        description="Driver run generation.",
    )
    kind: str | None = Field(
        default=None,
        description="Kind of the step being executed.",
    )
    depth: int | None = Field(
        default=None,
        description="Dependency nesting depth.",
    )
    cache_key: str | None = Field(
        default=None,
        description="Fetch cache key.",
    )
    operation: str | None = Field(
        default=None,
        description="Operation being performed.",
    )


class Dependency(BaseModel):
    """A nested sub-pipeline whose result is merged into its owning step.

    Example:
        >>> Dependency.model_validate(
        ...     {"name": "user", "subSteps": [{"kind": "fetch", "url": "https://api/u/1"}]}
        ... ).name
        'user'
    """

    name: str = Field(min_length=1, description="Property name the result is merged under.")
    sub_steps: list[Step] = Field(
        default_factory=list,
        validation_alias=AliasChoices("subSteps", "sub_steps"),
        description="Steps of the nested pipeline.",
    )

    model_config = ConfigDict(populate_by_name=True)


class Step(BaseModel):
    """Shape of a single definition entry.

    Any additional properties are kept as extras. The engine uses this model
    to validate definitions up front; handlers are still called with the
    original step object.

    Example:
        >>> step = Step.model_validate({"kind": "fetch", "url": "https://api/x"})
        >>> step.kind, step.model_extra
        ('fetch', {'url': 'https://api/x'})
    """

    kind: str = Field(min_length=1, description="Discriminator selecting the resolver.")
    required_args: list[str] | None = Field(
        default=None,
        validation_alias=AliasChoices("requiredArgs", "required_args"),
        description="Names that must be available before the handler runs.",
    )
    dependencies: list[Dependency] = Field(
        default_factory=list,
        description="Nested pipelines resolved before the handler runs.",
    )

    model_config = ConfigDict(extra="allow", populate_by_name=True)


Dependency.model_rebuild()


class ResolverSpec(BaseModel):
    """A step kind bound to its handler.

    Accepts the legacy ``type`` / ``resolverFunc`` keys as well.

    Example:
        >>> spec = ResolverSpec(kind="start", handler=lambda p, c, n: n(10))
        >>> spec.kind
        'start'
    """

    kind: str = Field(
        min_length=1,
        validation_alias=AliasChoices("kind", "type"),
    )
    handler: Callable[..., Any] = Field(
        validation_alias=AliasChoices("handler", "resolverFunc", "resolver_func"),
    )
    payload_model: type[BaseModel] | None = Field(
        default=None,
        validation_alias=AliasChoices("payload_model", "schema"),
        description="Optional model every step of this kind must validate against.",
    )

    model_config = ConfigDict(arbitrary_types_allowed=True, populate_by_name=True, frozen=True)


class ConstructConfig(BaseModel):
    """Top-level invocation of the pipeline.

    ``definition`` and ``resolvers`` are required (empty lists are fine);
    ``render`` defaults to the identity function.
    """

    definition: list[Any] = Field(description="Ordered steps.")
    resolvers: list[Any] = Field(description="Resolver specs or mappings.")
    render: Callable[[Any], Any] | None = Field(
        default=None,
        description="Terminal continuation applied to the final value.",
    )
    seed: Any = Field(default=None, description="Initial 'previous' value.")

    model_config = ConfigDict(arbitrary_types_allowed=True)


# Environment variable -> EngineConfig field
ENGINE_ENV_VARS = {
    "CONSTRUCT_UNKNOWN_KIND": "unknown_kind",
    "CONSTRUCT_ERROR_POLICY": "error_policy",
    "CONSTRUCT_MAX_DEPTH": "max_depth",
    "CONSTRUCT_CACHE_MAX_ENTRIES": "cache_max_entries",
    "CONSTRUCT_CACHE_TTL_SECONDS": "cache_ttl_seconds",
    "CONSTRUCT_FETCH_TIMEOUT": "fetch_timeout",
    "CONSTRUCT_FETCH_WORKERS": "fetch_workers",
}


class EngineConfig(BaseModel):
    """Engine behavior configuration.

    Example:
        >>> config = EngineConfig(unknown_kind="identity", max_depth=8)
        >>> config.unknown_kind
        <UnknownKindPolicy.IDENTITY: 'identity'>
    """

    unknown_kind: UnknownKindPolicy = Field(
        default=UnknownKindPolicy.FAIL,
        description="Policy for step kinds without a resolver.",
    )
    error_policy: ErrorPolicy = Field(
        default=ErrorPolicy.PROPAGATE,
        description="Policy for exceptions raised by handlers.",
    )
    max_depth: int = Field(
        default=32,
        ge=1,
        description="Maximum dependency nesting depth.",
    )
    cache_max_entries: int | None = Field(
        default=1024,
        ge=1,
        description="Fetch cache size bound (None for unbounded).",
    )
    cache_ttl_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Lifetime of settled cache entries (None for no expiry).",
    )
    fetch_timeout: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout in seconds for fetches.",
    )
    fetch_workers: int = Field(
        default=4,
        ge=1,
        description="Worker threads for the default fetch executor.",
    )

    model_config = ConfigDict(extra="forbid")

    @classmethod
    def from_env(
        cls,
        environ: Mapping[str, str] | None = None,
        **overrides: Any,
    ) -> EngineConfig:
        """Build a config from CONSTRUCT_* environment variables.

        Explicit keyword overrides win over the environment.

        Args:
            environ: Environment mapping (defaults to os.environ).
            **overrides: Field values taking precedence.

        Returns:
            Validated EngineConfig.
        """
        env = os.environ if environ is None else environ
        values: dict[str, Any] = {}
        for var, field_name in ENGINE_ENV_VARS.items():
            raw = env.get(var)
            if raw is None or raw == "":
                continue
            values[field_name] = None if raw.lower() == "none" else raw
        values.update(overrides)
        return cls.model_validate(values)


class StepFailure(BaseModel):
    """A contained failure flowing through the chain as a value.

    Produced when a handler raises under the ``contain`` error policy, or
    when a fetch cache entry ends up ``failed``.
    """

    kind: str | None = Field(default=None, description="Kind of the failing step.")
    error_type: str = Field(description="Exception class name.")
    message: str = Field(description="Human-readable error message.")
    retryable: bool = Field(default=False, description="Whether a retry might succeed.")
    metadata: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_exception(cls, exc: BaseException, *, kind: str | None = None) -> StepFailure:
        """Build a failure value from an exception.

        Args:
            exc: The exception raised.
            kind: Kind of the step that raised it.

        Returns:
            StepFailure with retryability decided by the error classifier.
        """
        from .errors.error_classifier import get_classifier

        metadata = dict(getattr(exc, "metadata", None) or {})
        key = getattr(exc, "key", None)
        if key:
            metadata.setdefault("key", key)
        return cls(
            kind=kind,
            error_type=type(exc).__name__,
            message=str(exc),
            retryable=get_classifier().retryable(exc),
            metadata=metadata,
        )


class Suspended(BaseModel):
    """Placeholder returned by a handler that cannot continue yet.

    The pipeline stops at the handler returning it; the driver re-runs
    the pipeline once the awaited keys settle.
    """

    reason: str = Field(default="pending")
    keys: list[str] = Field(default_factory=list)

    model_config = ConfigDict(frozen=True)


def step_kind(step: Any) -> str:
    """Return the kind of a step given as mapping or Step model."""
    if isinstance(step, Mapping):
        kind = step.get("kind")
    else:
        kind = getattr(step, "kind", None)
    if not isinstance(kind, str) or not kind:
        raise TypeError(f"Step has no 'kind': {step!r}")
    return kind


def step_keys(step: Any) -> set[str]:
    """Return the property names present on a step."""
    if isinstance(step, Mapping):
        return set(step.keys())
    if isinstance(step, BaseModel):
        return set(step.model_fields_set) | set(step.model_extra or {}) | {"kind"}
    return set(vars(step))


def required_args_of(step: Any) -> list[str] | None:
    """Return the declared required argument names, if any."""
    if isinstance(step, Mapping):
        value = step.get("requiredArgs", step.get("required_args"))
    else:
        value = getattr(step, "required_args", None)
    return list(value) if value is not None else None


def dependencies_of(step: Any) -> list[tuple[str, list[Any]]]:
    """Return ``(name, sub_steps)`` pairs declared on a step.

    Sub-steps are returned as the caller's own objects so nested handlers
    also receive reference-identical steps.
    """
    if isinstance(step, Mapping):
        raw = step.get("dependencies") or []
        pairs = []
        for dependency in raw:
            if isinstance(dependency, Dependency):
                pairs.append((dependency.name, list(dependency.sub_steps)))
                continue
            sub_steps = dependency.get("subSteps", dependency.get("sub_steps")) or []
            pairs.append((dependency["name"], list(sub_steps)))
        return pairs
    return [(dep.name, list(dep.sub_steps)) for dep in getattr(step, "dependencies", None) or []]


def merge_step(step: Any, name: str, value: Any) -> Any:
    """Return a copy of ``step`` with ``name`` set to ``value``.

    The original step is never mutated.
    """
    if isinstance(step, BaseModel):
        return step.model_copy(update={name: value})
    return {**step, name: value}


__all__ = [
    "UnknownKindPolicy",
    "ErrorPolicy",
    "CacheState",
    "LogContext",
    "Dependency",
    "Step",
    "ResolverSpec",
    "ConstructConfig",
    "EngineConfig",
    "StepFailure",
    "Suspended",
    "step_kind",
    "step_keys",
    "required_args_of",
    "dependencies_of",
    "merge_step",
]
