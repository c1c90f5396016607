"""Resolver registry: maps step kinds to handlers.

The registry is built once per pipeline invocation from a list of resolver
specs. Lookup is pure; what happens for a kind without a resolver is an
explicit policy:

- UnknownKindPolicy.FAIL: raise UnresolvedKindError (the default)
- UnknownKindPolicy.IDENTITY: forward ``previous`` unchanged via ``next``

Duplicate kinds keep the first registration; later ones are ignored with
a warning.

Example:
    >>> registry = ResolverRegistry.from_resolvers([
    ...     {"kind": "start", "handler": lambda previous, current, next: next(10)},
    ...     {"kind": "increment", "handler": lambda previous, current, next: next(previous + 1)},
    ... ])
    >>> registry.lookup("start")
    <function <lambda> ...>
"""

from __future__ import annotations

import threading
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from pydantic import ValidationError

from ..exceptions import ConfigurationError, UnresolvedKindError
from ..logging import log_debug, log_warn
from ..types import ResolverSpec, UnknownKindPolicy, dependencies_of, required_args_of, step_kind
from .discovery import resolver_spec_of

Handler = Callable[[Any, Any, Callable[[Any], Any]], Any]


def forward_previous(previous: Any, current: Any, next: Callable[[Any], Any]) -> Any:
    """Identity handler: pass ``previous`` on unchanged."""
    return next(previous)


class ResolverRegistry:
    """Registry of resolver specs keyed by step kind.

    Attributes:
        unknown_kind: Policy applied by lookup() for unregistered kinds.
    """

    def __init__(
        self,
        *,
        unknown_kind: UnknownKindPolicy | str = UnknownKindPolicy.FAIL,
    ) -> None:
        self._resolvers: dict[str, ResolverSpec] = {}
        self._unknown_kind = UnknownKindPolicy(unknown_kind)
        self._lock = threading.RLock()

    @classmethod
    def from_resolvers(
        cls,
        resolvers: Iterable[Any],
        *,
        unknown_kind: UnknownKindPolicy | str = UnknownKindPolicy.FAIL,
    ) -> ResolverRegistry:
        """Create a registry from resolver entries.

        Entries may be ResolverSpec instances, mappings with ``kind`` and
        ``handler`` (or the legacy ``type`` and ``resolverFunc``), or
        functions decorated with @resolver.

        Args:
            resolvers: Resolver entries in precedence order.
            unknown_kind: Policy for unregistered kinds.

        Returns:
            Populated registry.

        Raises:
            ConfigurationError: If an entry is malformed.
        """
        registry = cls(unknown_kind=unknown_kind)
        for index, entry in enumerate(resolvers):
            registry.register(coerce_resolver(entry, f"resolvers[{index}]"))
        return registry

    @property
    def unknown_kind(self) -> UnknownKindPolicy:
        return self._unknown_kind

    def register(
        self,
        kind_or_spec: str | ResolverSpec,
        handler: Handler | None = None,
        *,
        payload_model: Any = None,
    ) -> ResolverRegistry:
        """Register a handler for a kind.

        The first registration of a kind wins; later ones are ignored.

        Args:
            kind_or_spec: Step kind, or a complete ResolverSpec.
            handler: Handler function when a kind string is given.
            payload_model: Optional pydantic model validating step payloads.

        Returns:
            Self for method chaining.
        """
        if isinstance(kind_or_spec, ResolverSpec):
            spec = kind_or_spec
        else:
            if handler is None:
                raise ConfigurationError(
                    f"Resolver for kind {kind_or_spec!r} has no handler", field="handler"
                )
            spec = coerce_resolver(
                {"kind": kind_or_spec, "handler": handler, "payload_model": payload_model},
                "handler",
            )

        with self._lock:
            if spec.kind in self._resolvers:
                log_warn(
                    f"Duplicate resolver for kind '{spec.kind}' ignored; first registration wins"
                )
                return self
            self._resolvers[spec.kind] = spec
        log_debug(f"Registered resolver: {spec.kind}")
        return self

    def unregister(self, kind: str) -> bool:
        """Unregister a kind.

        Returns:
            True if the kind was registered.
        """
        with self._lock:
            if kind in self._resolvers:
                del self._resolvers[kind]
                log_debug(f"Unregistered resolver: {kind}")
                return True
        return False

    def lookup(self, kind: str) -> Handler:
        """Return the handler for ``kind``.

        Raises:
            UnresolvedKindError: If the kind is unknown and the policy is FAIL.
        """
        spec = self._resolvers.get(kind)
        if spec is not None:
            return spec.handler
        if self._unknown_kind is UnknownKindPolicy.IDENTITY:
            log_debug(f"No resolver for kind '{kind}', forwarding previous value")
            return forward_previous
        raise UnresolvedKindError(kind, self.list_kinds())

    def get_spec(self, kind: str) -> ResolverSpec | None:
        return self._resolvers.get(kind)

    def is_registered(self, kind: str) -> bool:
        return kind in self._resolvers

    def list_kinds(self) -> list[str]:
        return list(self._resolvers.keys())

    def validate_step(self, step: Any, path: str = "step") -> None:
        """Check that a step can be executed by this registry.

        Verifies the kind resolves under the current policy and, when the
        resolver declares a payload model, that the step validates against it.
        Steps declaring ``dependencies`` or ``requiredArgs`` are completed at
        run time, so their payload is not checked here.

        Args:
            step: Step mapping or model.
            path: Location of the step, used in error messages.

        Raises:
            UnresolvedKindError: If the kind is unknown under FAIL.
            ConfigurationError: If the payload does not validate.
        """
        kind = step_kind(step)
        self.lookup(kind)
        spec = self._resolvers.get(kind)
        if spec is None or spec.payload_model is None:
            return
        if dependencies_of(step) or required_args_of(step):
            return
        payload = step if isinstance(step, Mapping) else step.model_dump()
        try:
            spec.payload_model.model_validate(payload)
        except ValidationError as exc:
            raise ConfigurationError(
                f"Invalid payload for kind {kind!r} at {path}: {exc}", field=path
            ) from exc

    def clear(self) -> None:
        """Remove all resolvers."""
        with self._lock:
            self._resolvers.clear()

    def __len__(self) -> int:
        return len(self._resolvers)

    def __contains__(self, kind: object) -> bool:
        return kind in self._resolvers

    def __repr__(self) -> str:
        return (
            f"ResolverRegistry(kinds={self.list_kinds()!r}, "
            f"unknown_kind={self._unknown_kind.value!r})"
        )


def coerce_resolver(entry: Any, path: str) -> ResolverSpec:
    """Convert a resolver entry to a ResolverSpec.

    Raises:
        ConfigurationError: If the entry is malformed.
    """
    if isinstance(entry, ResolverSpec):
        return entry
    if callable(entry) and not isinstance(entry, Mapping):
        spec = resolver_spec_of(entry)
        if spec is None:
            raise ConfigurationError(
                f"{path}: bare function {entry!r} is not decorated with @resolver", field=path
            )
        return spec
    if not isinstance(entry, Mapping):
        raise ConfigurationError(f"{path}: expected a mapping, got {type(entry).__name__}", field=path)
    try:
        return ResolverSpec.model_validate(dict(entry))
    except ValidationError as exc:
        raise ConfigurationError(f"{path}: invalid resolver: {exc}", field=path) from exc


__all__ = ["ResolverRegistry", "Handler", "coerce_resolver", "forward_previous"]
