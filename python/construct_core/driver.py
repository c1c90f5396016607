"""Re-run driver for pipelines waiting on asynchronous fetches.

A pipeline whose fetch step finds its cache entry still pending stops
without calling ``next`` and returns a Suspended placeholder. The
ConstructDriver subscribes to cache settlement events and re-runs the
whole pipeline when one arrives, until a run reaches the terminal
continuation. Every run gets a new generation number and a fresh
CancellationToken; the previous run's token is cancelled so its late
continuations are dropped.

Runs are serialized. A re-run requested while a run is in progress
(from a worker thread, or re-entrantly from inside the run) is coalesced
into a single follow-up run.

Example:
    >>> bridge = EventBridge.instance()
    >>> cache = FetchCache(event_bridge=bridge)
    >>> driver = ConstructDriver(
    ...     {"definition": definition, "resolvers": builtin_resolvers(cache)},
    ...     cache=cache,
    ... )
    >>> driver.render()
    Suspended(reason='pending', keys=['GET https://api/u/1'])
    >>> driver.wait(timeout=5.0)
    True
    >>> driver.last_result
    {'id': 1, 'name': 'Ada'}
"""

from __future__ import annotations

import threading
from typing import TYPE_CHECKING, Any

from .continuation import CancellationToken, RunContext
from .event_bridge import EventBridge, EventNames
from .logging import log_debug, log_error, log_info
from .pipeline import build, coerce_config, validate_definition
from .registry import ResolverRegistry
from .types import EngineConfig

if TYPE_CHECKING:
    from .cache import CacheEntry, FetchCache


class ConstructDriver:
    """Runs a pipeline and re-runs it whenever an awaited fetch settles.

    Attributes:
        generation: Number of the latest run (0 before the first run).
        last_result: Return value of the latest run.
        completed: Whether the latest run reached the terminal continuation.
        last_error: Exception raised by the latest event-triggered run.
    """

    def __init__(
        self,
        config: Any,
        *,
        cache: FetchCache | None = None,
        event_bridge: EventBridge | None = None,
        engine_config: EngineConfig | None = None,
    ) -> None:
        """Validate the invocation and subscribe to cache events.

        Args:
            config: Mapping or ConstructConfig (definition, resolvers,
                render, seed).
            cache: Cache whose settlements trigger re-runs; settlements of
                entries it does not own are ignored.
            event_bridge: Bus to subscribe to (the cache's bus, else the
                shared instance).
            engine_config: Engine configuration (defaults to EngineConfig()).

        Raises:
            ConfigurationError: If the invocation is malformed.
            UnresolvedKindError: If a kind has no resolver under FAIL.
        """
        self._construct = coerce_config(config)
        self._config = engine_config or EngineConfig()
        self._registry = ResolverRegistry.from_resolvers(
            self._construct.resolvers, unknown_kind=self._config.unknown_kind
        )
        validate_definition(self._construct.definition, self._registry)
        self._pipeline = build(
            self._construct.definition,
            self._registry,
            self._construct.render,
            config=self._config,
        )

        self._cache = cache
        if event_bridge is None:
            event_bridge = cache.event_bridge if cache is not None else EventBridge.instance()
        self._bridge = event_bridge
        self._bridge.start()

        self._lock = threading.RLock()
        self._settled = threading.Condition(self._lock)
        self._running = False
        self._rerun_requested = False
        self._closed = False
        self._generation = 0
        self._token: CancellationToken | None = None
        self._last_result: Any = None
        self._completed = False
        self._last_error: BaseException | None = None

        self._bridge.subscribe(EventNames.CACHE_ENTRY_COMPLETE, self._on_settled)
        self._bridge.subscribe(EventNames.CACHE_ENTRY_FAILED, self._on_settled)

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def last_result(self) -> Any:
        return self._last_result

    @property
    def completed(self) -> bool:
        return self._completed

    @property
    def last_error(self) -> BaseException | None:
        return self._last_error

    @property
    def registry(self) -> ResolverRegistry:
        return self._registry

    def render(self) -> Any:
        """Run the pipeline now.

        If a run is already in progress the request is coalesced into one
        follow-up run and the latest known result is returned immediately.

        Returns:
            The result of the run (or of the follow-up run it triggered).
        """
        with self._lock:
            if self._closed:
                raise RuntimeError("ConstructDriver is closed")
            if self._running:
                self._rerun_requested = True
                log_debug("Run in progress, coalescing re-run", {"generation": self._generation})
                return self._last_result
            self._running = True

        try:
            while True:
                result = self._run_once()
                with self._lock:
                    rerun = self._rerun_requested and not self._completed and not self._closed
                    self._rerun_requested = False
                    if not rerun:
                        self._running = False
                        self._settled.notify_all()
                        return result
        except BaseException:
            with self._lock:
                self._running = False
                self._rerun_requested = False
                self._settled.notify_all()
            raise

    def wait(self, timeout: float | None = None) -> bool:
        """Block until a run reached the terminal continuation.

        Args:
            timeout: Seconds to wait (None waits forever).

        Returns:
            True if the latest run completed, False on timeout or close.
        """
        with self._settled:
            self._settled.wait_for(
                lambda: self._completed or self._closed or self._last_error is not None,
                timeout=timeout,
            )
            return self._completed

    def close(self) -> None:
        """Unsubscribe from cache events and cancel the current run."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            if self._token is not None:
                self._token.cancel("closed")
            self._settled.notify_all()
        self._bridge.unsubscribe(EventNames.CACHE_ENTRY_COMPLETE, self._on_settled)
        self._bridge.unsubscribe(EventNames.CACHE_ENTRY_FAILED, self._on_settled)
        log_debug("ConstructDriver closed", {"generation": self._generation})

    def __enter__(self) -> ConstructDriver:
        return self

    def __exit__(self, *exc_info: Any) -> None:
        self.close()

    def _run_once(self) -> Any:
        with self._lock:
            if self._token is not None:
                self._token.cancel("superseded")
            self._generation += 1
            self._token = CancellationToken()
            context = RunContext(
                registry=self._registry,
                config=self._config,
                token=self._token,
                generation=self._generation,
                event_bridge=self._bridge,
            )

        generation = context.generation
        log_debug("Pipeline run started", {"generation": generation})
        self._publish(EventNames.PIPELINE_RUN_STARTED, generation)

        result = self._pipeline.invoke(self._construct.seed, context=context)

        with self._lock:
            self._last_result = result
            self._completed = context.completed
            self._last_error = None
        log_info(
            "Pipeline run finished",
            {"generation": generation, "completed": context.completed},
        )
        self._publish(EventNames.PIPELINE_RUN_COMPLETED, generation, context.completed)
        return result

    def _on_settled(self, entry: CacheEntry) -> None:
        if self._closed:
            return
        if self._cache is not None and not self._cache.owns(entry):
            return
        with self._lock:
            if self._completed and not self._running:
                return
        log_debug(
            "Awaited fetch settled, re-running pipeline",
            {"cache_key": entry.key, "generation": self._generation},
        )
        try:
            self.render()
        except Exception as exc:
            # Runs triggered from worker threads have no caller to raise to
            log_error(
                f"Re-run failed: {exc}",
                {"generation": self._generation, "error_type": type(exc).__name__},
            )
            with self._lock:
                self._last_error = exc
                self._settled.notify_all()

    def _publish(self, event: str, *args: Any) -> None:
        if self._bridge.is_active:
            self._bridge.publish(event, *args)

    def __repr__(self) -> str:
        return (
            f"ConstructDriver(generation={self._generation!r}, "
            f"completed={self._completed!r}, steps={len(self._pipeline)!r})"
        )


__all__ = ["ConstructDriver"]
