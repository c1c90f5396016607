"""Continuation protocol shared by every handler.

A handler is called as ``handler(previous, current, next)`` where ``next``
is a Continuation: a single-use callable representing everything
downstream of the step. Calling it hands a value to the next step;
not calling it ends the chain at that step (a loading or "not ready yet"
state). It may be called synchronously or later, from another event.

Every continuation carries the RunContext of the invocation it belongs
to. The context provides:

- the registry, so enhancers can build nested sub-pipelines,
- the dependency depth, for the cycle guard,
- a CancellationToken, so continuations of a superseded run are dropped
  instead of driving a stale chain.

Example:
    >>> def increment(previous, current, next):
    ...     return next(previous + 1)
    >>>
    >>> def wait_for_user(previous, current, next):
    ...     entry = cache.request(current["url"])
    ...     if not entry.complete:
    ...         return Suspended(keys=[entry.key])  # next is never called
    ...     return next(entry.value)
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING, Any

from .event_bridge import EventNames
from .exceptions import ContinuationReusedError, CyclicDependencyError
from .logging import log_debug, log_trace
from .types import EngineConfig

if TYPE_CHECKING:
    from .event_bridge import EventBridge
    from .registry import ResolverRegistry


class CancellationToken:
    """Flag shared by every continuation of one pipeline run.

    The driver cancels the token of the previous run when it starts a new
    one; continuations holding a cancelled token do nothing when called.
    """

    def __init__(self) -> None:
        self._cancelled = False
        self._reason: str | None = None

    def cancel(self, reason: str = "superseded") -> None:
        if not self._cancelled:
            self._cancelled = True
            self._reason = reason

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    @property
    def reason(self) -> str | None:
        return self._reason

    def __repr__(self) -> str:
        return f"CancellationToken(cancelled={self._cancelled!r})"


@dataclass
class RunContext:
    """State of one pipeline invocation, threaded through nested pipelines.

    Attributes:
        registry: Registry used to look up handlers of nested sub-pipelines.
        config: Engine configuration (policies, depth limit).
        token: Cancellation token shared with nested pipelines.
        generation: Driver run number (0 outside a driver).
        depth: Dependency nesting depth (0 for the top-level pipeline).
        event_bridge: Bus notified about dropped stale continuations.
        completed: Set once this pipeline's terminal continuation ran.
    """

    registry: ResolverRegistry
    config: EngineConfig = field(default_factory=EngineConfig)
    token: CancellationToken = field(default_factory=CancellationToken)
    generation: int = 0
    depth: int = 0
    event_bridge: EventBridge | None = None
    completed: bool = False

    @property
    def cancelled(self) -> bool:
        return self.token.cancelled

    def child(self, kind: str | None = None) -> RunContext:
        """Create the context of a nested dependency sub-pipeline.

        Args:
            kind: Kind of the step whose dependency is being resolved.

        Returns:
            A context one level deeper sharing registry, config and token.

        Raises:
            CyclicDependencyError: If the depth limit would be exceeded.
        """
        depth = self.depth + 1
        if depth > self.config.max_depth:
            raise CyclicDependencyError(self.config.max_depth, kind)
        return replace(self, depth=depth, completed=False)


class Continuation:
    """Single-use callable representing the rest of a pipeline.

    Attributes:
        kind: Kind of the step this continuation enters, or None for the
            terminal continuation.
        context: RunContext of the owning invocation.
    """

    def __init__(
        self,
        func: Callable[[Any], Any],
        context: RunContext,
        kind: str | None = None,
    ) -> None:
        self._func = func
        self._context = context
        self._kind = kind
        self._invoked = False

    @property
    def kind(self) -> str | None:
        return self._kind

    @property
    def context(self) -> RunContext:
        return self._context

    @property
    def invoked(self) -> bool:
        """Whether this continuation has been called."""
        return self._invoked

    def __call__(self, value: Any = None) -> Any:
        """Continue the pipeline with ``value``.

        Returns:
            The result of the downstream chain, or None if the owning run
            was superseded.

        Raises:
            ContinuationReusedError: If called a second time.
        """
        if self._context.cancelled:
            log_debug(
                "Dropping continuation of superseded run",
                {"generation": self._context.generation, "kind": self._kind or "terminal"},
            )
            bridge = self._context.event_bridge
            if bridge is not None and bridge.is_active:
                bridge.publish(EventNames.CONTINUATION_STALE, self._context.generation, self._kind)
            return None

        if self._invoked:
            raise ContinuationReusedError(self._kind)
        self._invoked = True

        log_trace(
            "Continuing",
            {"kind": self._kind or "terminal", "depth": self._context.depth},
        )
        return self._func(value)

    def __repr__(self) -> str:
        return f"Continuation(kind={self._kind!r}, invoked={self._invoked!r})"


__all__ = ["CancellationToken", "Continuation", "RunContext"]
