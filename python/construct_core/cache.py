"""Cache-backed asynchronous fetch source.

FetchCache de-duplicates HTTP requests by request identity and runs them
off the calling thread. The first request for a key creates a ``pending``
entry and submits the fetch exactly once; later requests for the same key
get the same entry back. When the fetch settles the entry becomes
``complete`` (parsed JSON body) or ``failed`` (an AsyncSourceError) and a
``cache.entry.complete`` / ``cache.entry.failed`` event is published so
that drivers can re-run the pipelines waiting on it.

The cache is bounded: settled entries are evicted least-recently-used
beyond ``max_entries`` and expire after ``ttl_seconds``. A completion for
an entry that was evicted or invalidated while in flight is ignored.

Example:
    >>> cache = FetchCache(event_bridge=bridge)
    >>> entry = cache.request("https://api.example.com/users/1")
    >>> entry.state
    <CacheState.PENDING: 'pending'>
    >>> # ... later, after cache.entry.complete was published
    >>> cache.request("https://api.example.com/users/1").value
    {'id': 1, 'name': 'Ada'}
"""

from __future__ import annotations

import json
import threading
import time
from collections import OrderedDict
from collections.abc import Callable, Mapping
from concurrent.futures import Executor, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any

import httpx

from .errors import FetchTimeoutError, HttpStatusError, InvalidResponseError, NetworkError
from .errors.error_classifier import is_retryable
from .event_bridge import EventBridge, EventNames
from .exceptions import AsyncSourceError
from .logging import log_debug, log_info, log_warn
from .types import CacheState, EngineConfig, StepFailure

# ``init`` keys passed straight to httpx.Client.request
REQUEST_OPTIONS = ("headers", "params", "json", "data", "content", "cookies")


@dataclass
class CacheEntry:
    """State of one de-duplicated request.

    Attributes:
        key: Request identity (method, URL and canonical request options).
        url: Requested URL.
        init: Request options (method, headers, params, json, ...).
        state: pending, complete or failed.
        value: Parsed JSON body once complete.
        error: The failure once failed.
        created_at: Clock reading when the entry was created.
        settled_at: Clock reading when the entry left ``pending``.
    """

    key: str
    url: str
    init: dict[str, Any] = field(default_factory=dict)
    state: CacheState = CacheState.PENDING
    value: Any = None
    error: AsyncSourceError | None = None
    created_at: float = 0.0
    settled_at: float | None = None

    @property
    def pending(self) -> bool:
        return self.state is CacheState.PENDING

    @property
    def complete(self) -> bool:
        return self.state is CacheState.COMPLETE

    @property
    def failed(self) -> bool:
        return self.state is CacheState.FAILED

    def failure(self) -> StepFailure | None:
        """The error as a StepFailure value, or None unless failed."""
        if self.error is None:
            return None
        return StepFailure.from_exception(self.error, kind="fetch")


def request_key(url: str, init: Mapping[str, Any] | None = None) -> str:
    """Compute the identity of a request.

    Example:
        >>> request_key("https://api/x")
        'GET https://api/x'
        >>> request_key("https://api/x", {"method": "post", "json": {"a": 1}})
        'POST https://api/x {"json":{"a":1}}'
    """
    options = dict(init or {})
    method = str(options.pop("method", "GET")).upper()
    if not options:
        return f"{method} {url}"
    canonical = json.dumps(options, sort_keys=True, separators=(",", ":"), default=str)
    return f"{method} {url} {canonical}"


class FetchCache:
    """De-duplicating, bounded cache of asynchronous JSON fetches."""

    def __init__(
        self,
        *,
        client: httpx.Client | None = None,
        executor: Executor | None = None,
        event_bridge: EventBridge | None = None,
        max_entries: int | None = 1024,
        ttl_seconds: float | None = None,
        timeout: float = 30.0,
        workers: int = 4,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout, follow_redirects=True)
        self._owns_executor = executor is None
        self._executor = executor or ThreadPoolExecutor(
            max_workers=workers, thread_name_prefix="construct-fetch"
        )
        self._bridge = event_bridge if event_bridge is not None else EventBridge.instance()
        self._max_entries = max_entries
        self._ttl_seconds = ttl_seconds
        self._clock = clock
        self._entries: OrderedDict[str, CacheEntry] = OrderedDict()
        self._lock = threading.RLock()
        self._closed = False

    @classmethod
    def from_config(cls, config: EngineConfig, **kwargs: Any) -> FetchCache:
        """Create a cache sized and timed from an EngineConfig."""
        kwargs.setdefault("max_entries", config.cache_max_entries)
        kwargs.setdefault("ttl_seconds", config.cache_ttl_seconds)
        kwargs.setdefault("timeout", config.fetch_timeout)
        kwargs.setdefault("workers", config.fetch_workers)
        return cls(**kwargs)

    @property
    def event_bridge(self) -> EventBridge:
        return self._bridge

    def request(self, url: str, init: Mapping[str, Any] | None = None) -> CacheEntry:
        """Return the entry for a request, submitting the fetch if new.

        Args:
            url: URL to fetch.
            init: Request options: ``method`` plus any of headers, params,
                json, data, content, cookies.

        Returns:
            The (possibly still pending) cache entry.
        """
        if self._closed:
            raise RuntimeError("FetchCache is closed")
        key = request_key(url, init)
        evicted: list[CacheEntry] = []
        created = False
        with self._lock:
            entry = self._entries.get(key)
            if entry is not None and self._expired(entry):
                del self._entries[key]
                evicted.append(entry)
                entry = None
            if entry is not None:
                self._entries.move_to_end(key)
            else:
                entry = CacheEntry(key=key, url=url, init=dict(init or {}), created_at=self._clock())
                self._entries[key] = entry
                evicted.extend(self._evict_locked())
                created = True
        for stale in evicted:
            self._publish(EventNames.CACHE_ENTRY_EVICTED, stale)
        if created:
            log_debug("Submitting fetch", {"cache_key": key})
            self._publish(EventNames.CACHE_ENTRY_PENDING, entry)
            self._executor.submit(self._perform, entry)
        return entry

    def get(self, url: str, init: Mapping[str, Any] | None = None) -> CacheEntry | None:
        """Return the entry for a request without submitting anything."""
        key = request_key(url, init)
        with self._lock:
            entry = self._entries.get(key)
            if entry is None or self._expired(entry):
                return None
            return entry

    def invalidate(self, url: str, init: Mapping[str, Any] | None = None) -> bool:
        """Drop the entry for a request so the next request refetches.

        An in-flight fetch for the dropped entry is ignored when it settles.

        Returns:
            True if an entry was dropped.
        """
        return self.invalidate_key(request_key(url, init))

    def invalidate_key(self, key: str) -> bool:
        with self._lock:
            entry = self._entries.pop(key, None)
        if entry is None:
            return False
        log_debug("Invalidated cache entry", {"cache_key": key})
        return True

    def owns(self, entry: CacheEntry) -> bool:
        """Whether ``entry`` is the live entry of this cache for its key."""
        with self._lock:
            return self._entries.get(entry.key) is entry

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def stats(self) -> dict[str, Any]:
        """Entry counts by state plus the configured bounds."""
        with self._lock:
            counts = {state.value: 0 for state in CacheState}
            for entry in self._entries.values():
                counts[entry.state.value] += 1
            return {
                "size": len(self._entries),
                "max_entries": self._max_entries,
                "ttl_seconds": self._ttl_seconds,
                **counts,
            }

    def close(self) -> None:
        """Release the executor and HTTP client if this cache created them."""
        if self._closed:
            return
        self._closed = True
        if self._owns_executor:
            self._executor.shutdown(wait=False, cancel_futures=True)
        if self._owns_client:
            self._client.close()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def _perform(self, entry: CacheEntry) -> None:
        try:
            value = self._fetch(entry)
        except AsyncSourceError as exc:
            self._settle(entry, error=exc)
        except Exception as exc:
            wrapped = AsyncSourceError(
                f"Fetch failed: {exc}", key=entry.key, retryable=is_retryable(exc)
            )
            wrapped.__cause__ = exc
            self._settle(entry, error=wrapped)
        else:
            self._settle(entry, value=value)

    def _fetch(self, entry: CacheEntry) -> Any:
        return fetch_json(self._client, entry.url, entry.init, key=entry.key)

    def _settle(
        self,
        entry: CacheEntry,
        *,
        value: Any = None,
        error: AsyncSourceError | None = None,
    ) -> None:
        with self._lock:
            if self._entries.get(entry.key) is not entry:
                log_debug("Ignoring completion of superseded request", {"cache_key": entry.key})
                return
            if not entry.pending:
                return
            if error is not None:
                entry.error = error
            else:
                entry.value = value
            entry.settled_at = self._clock()
            entry.state = CacheState.FAILED if error is not None else CacheState.COMPLETE

        if error is not None:
            log_warn(f"Fetch failed: {error}", {"cache_key": entry.key})
            self._publish(EventNames.CACHE_ENTRY_FAILED, entry)
        else:
            log_info("Fetch complete", {"cache_key": entry.key})
            self._publish(EventNames.CACHE_ENTRY_COMPLETE, entry)

    def _expired(self, entry: CacheEntry) -> bool:
        if self._ttl_seconds is None or entry.settled_at is None:
            return False
        return self._clock() - entry.settled_at >= self._ttl_seconds

    def _evict_locked(self) -> list[CacheEntry]:
        evicted: list[CacheEntry] = []
        if self._max_entries is None:
            return evicted
        # Pending entries stay so their fetch is not lost
        for key in list(self._entries.keys()):
            if len(self._entries) <= self._max_entries:
                break
            if self._entries[key].pending:
                continue
            evicted.append(self._entries.pop(key))
        return evicted

    def _publish(self, event: str, entry: CacheEntry) -> None:
        if self._bridge.is_active:
            self._bridge.publish(event, entry)


def fetch_json(
    client: httpx.Client,
    url: str,
    init: Mapping[str, Any] | None = None,
    *,
    key: str | None = None,
) -> Any:
    """Perform one request and return the parsed JSON body.

    Args:
        client: HTTP client to send the request with.
        url: URL to fetch.
        init: Request options (``method`` plus REQUEST_OPTIONS keys).
        key: Identity attached to raised errors (defaults to request_key).

    Raises:
        FetchTimeoutError: The request timed out.
        NetworkError: The connection failed. Other request failures (such as
            a redirect loop) raise a non-retryable NetworkError.
        HttpStatusError: The server answered with a non-2xx status.
        InvalidResponseError: The body is not JSON.
    """
    options = dict(init or {})
    method = str(options.pop("method", "GET")).upper()
    kwargs = {name: options[name] for name in REQUEST_OPTIONS if name in options}
    key = key or request_key(url, init)
    try:
        response = client.request(method, url, **kwargs)
    except httpx.TimeoutException as exc:
        raise FetchTimeoutError(f"Timed out fetching {url}", key=key) from exc
    except httpx.TransportError as exc:
        raise NetworkError(f"Failed to fetch {url}: {exc}", key=key) from exc
    except httpx.RequestError as exc:
        # Redirect loops, undecodable bodies and other request-level failures
        raise NetworkError(f"Request to {url} failed: {exc}", key=key, retryable=False) from exc

    if not response.is_success:
        raise HttpStatusError(response.status_code, key=key, body=_body_of(response))
    try:
        return response.json()
    except ValueError as exc:
        raise InvalidResponseError(f"Response from {url} is not valid JSON", key=key) from exc


def _body_of(response: httpx.Response) -> Any:
    content_type = response.headers.get("content-type", "")
    if "application/json" in content_type:
        try:
            return response.json()
        except ValueError:
            return response.text
    return response.text


__all__ = ["FetchCache", "CacheEntry", "request_key", "fetch_json", "REQUEST_OPTIONS"]
