"""In-process event bus between the fetch cache and pipeline drivers.

FetchCache publishes the lifecycle of every entry; ConstructDriver listens
for settlements and re-runs its pipeline. Settlements are published from
fetch worker threads, so subscribers must tolerate being called off the
thread that rendered.

Example:
    >>> from construct_core import EventBridge, EventNames
    >>>
    >>> bridge = EventBridge.instance()
    >>> bridge.start()
    >>> bridge.subscribe(EventNames.CACHE_ENTRY_FAILED, lambda entry: print(entry.error))
    >>> cache = FetchCache(event_bridge=bridge)
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from typing import Any, ClassVar

from pyee.base import EventEmitter

from .logging import log_debug, log_info, log_warn


class EventNames:
    """Names of the events published on an EventBridge."""

    CACHE_ENTRY_PENDING = "cache.entry.pending"
    """A fetch was submitted (CacheEntry)."""

    CACHE_ENTRY_COMPLETE = "cache.entry.complete"
    """A fetch produced a parsed body (CacheEntry)."""

    CACHE_ENTRY_FAILED = "cache.entry.failed"
    """A fetch failed; ``entry.error`` holds the AsyncSourceError (CacheEntry)."""

    CACHE_ENTRY_EVICTED = "cache.entry.evicted"
    """An entry left the cache through the size or TTL bound (CacheEntry)."""

    PIPELINE_RUN_STARTED = "pipeline.run.started"
    """A driver run began (generation)."""

    PIPELINE_RUN_COMPLETED = "pipeline.run.completed"
    """A driver run returned (generation, reached_terminal)."""

    CONTINUATION_STALE = "pipeline.continuation.stale"
    """A continuation of a superseded run was dropped (generation, kind)."""


class EventBridge:
    """pyee-backed publish/subscribe bus.

    Events published while the bridge is stopped are dropped. Stopping
    also forgets every subscription, so a restarted bridge starts clean.

    A process-wide bridge is available through ``EventBridge.instance()``;
    caches and drivers also accept their own bridge, which keeps separate
    render trees (and tests) from seeing each other's events.
    """

    PAYLOADS: ClassVar[dict[str, str]] = {
        EventNames.CACHE_ENTRY_PENDING: "CacheEntry",
        EventNames.CACHE_ENTRY_COMPLETE: "CacheEntry",
        EventNames.CACHE_ENTRY_FAILED: "CacheEntry",
        EventNames.CACHE_ENTRY_EVICTED: "CacheEntry",
        EventNames.PIPELINE_RUN_STARTED: "int",
        EventNames.PIPELINE_RUN_COMPLETED: "tuple[int, bool]",
        EventNames.CONTINUATION_STALE: "tuple[int, str | None]",
    }

    _instance: ClassVar[EventBridge | None] = None
    _instance_lock: ClassVar[threading.Lock] = threading.Lock()

    def __init__(self) -> None:
        self._emitter = EventEmitter()
        self._active = False

    @classmethod
    def instance(cls) -> EventBridge:
        """Return the process-wide bridge, creating it on first use."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    @classmethod
    def reset_instance(cls) -> None:
        """Stop and forget the process-wide bridge (used by tests)."""
        with cls._instance_lock:
            bridge, cls._instance = cls._instance, None
        if bridge is not None:
            bridge.stop()

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def event_schema(self) -> dict[str, str]:
        """Payload description per known event name."""
        return dict(self.PAYLOADS)

    def start(self) -> None:
        if not self._active:
            self._active = True
            log_info("Event bridge started")

    def stop(self) -> None:
        if self._active:
            self._active = False
            self._emitter.remove_all_listeners()
            log_info("Event bridge stopped")

    def subscribe(self, event: str, handler: Callable[..., Any]) -> Callable[..., Any]:
        """Call ``handler`` with the payload of every ``event``.

        Returns:
            The handler, for use with unsubscribe().
        """
        self._emitter.on(event, handler)
        log_debug(f"Subscribed to {event}", {"handler": _name_of(handler)})
        return handler

    def subscribe_once(self, event: str, handler: Callable[..., Any]) -> Callable[..., Any]:
        """Call ``handler`` for the next ``event`` only."""
        self._emitter.once(event, handler)
        log_debug(f"Subscribed once to {event}", {"handler": _name_of(handler)})
        return handler

    def unsubscribe(self, event: str, handler: Callable[..., Any]) -> None:
        """Remove a subscription; handlers that are not subscribed are ignored."""
        if handler in self._emitter.listeners(event):
            self._emitter.remove_listener(event, handler)
            log_debug(f"Unsubscribed from {event}", {"handler": _name_of(handler)})

    def publish(self, event: str, *args: Any, **kwargs: Any) -> None:
        """Deliver ``event`` synchronously to its current subscribers.

        Subscriber exceptions propagate to the publisher.
        """
        if not self._active:
            log_warn(f"Dropping {event}: event bridge is stopped")
            return
        log_debug(f"Publishing {event}", {"listeners": len(self._emitter.listeners(event))})
        self._emitter.emit(event, *args, **kwargs)

    def listener_count(self, event: str) -> int:
        return len(self._emitter.listeners(event))

    def listeners(self, event: str) -> list[Callable[..., Any]]:
        return list(self._emitter.listeners(event))

    def __repr__(self) -> str:
        return f"EventBridge(active={self._active!r})"


def _name_of(handler: Callable[..., Any]) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


__all__ = ["EventBridge", "EventNames"]
