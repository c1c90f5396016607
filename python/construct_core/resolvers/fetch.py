"""Network fetch resolvers.

- fetch_resolver: cache-backed, never blocks. Returns Suspended while the
  request is pending; a ConstructDriver re-runs the pipeline once it settles.
- dumb_fetch: uncached. Submits the request and calls ``next`` from the
  worker once the body arrives; the handler returns the Future.

Both read ``url`` and optional ``init`` (``method``, ``headers``, ``params``,
``json``, ...) from the step.

Example:
    >>> cache = FetchCache(event_bridge=bridge)
    >>> resolvers = [{"kind": "fetch", "handler": fetch_resolver(cache)}]
    >>> definition = [{"kind": "fetch", "url": "https://api.example.com/users/1"}]
"""

from __future__ import annotations

from collections.abc import Callable
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from typing import TYPE_CHECKING, Any

import httpx
from pydantic import BaseModel, ConfigDict, Field

from ..cache import fetch_json, request_key
from ..errors.error_classifier import is_retryable
from ..exceptions import AsyncSourceError, ConfigurationError
from ..logging import log_debug, log_warn
from ..types import StepFailure, Suspended, step_kind
from .basic import step_value

if TYPE_CHECKING:
    from ..cache import CacheEntry, FetchCache
    from ..registry import Handler


class FetchPayload(BaseModel):
    """Payload of a ``fetch`` step."""

    url: str = Field(min_length=1, description="URL to fetch.")
    init: dict[str, Any] | None = Field(
        default=None,
        description="Request options: method, headers, params, json, data.",
    )

    model_config = ConfigDict(extra="allow")


def fetch_resolver(
    cache: FetchCache,
    *,
    loading: Callable[[CacheEntry], Any] | None = None,
) -> Handler:
    """Create a handler fetching the step's ``url`` through ``cache``.

    Args:
        cache: Fetch cache de-duplicating requests.
        loading: Called with the pending entry; its return value is returned
            instead of the default Suspended placeholder.

    Returns:
        Handler calling ``next(body)`` when the entry is complete,
        ``next(StepFailure)`` when it failed, and returning without calling
        ``next`` while it is pending.
    """

    def fetch(previous: Any, current: Any, next: Callable[[Any], Any]) -> Any:
        url, init = _request_of(current)
        entry = cache.request(url, init)
        if entry.complete:
            return next(entry.value)
        if entry.failed:
            return next(entry.failure())

        log_debug("Fetch pending, suspending pipeline", {"cache_key": entry.key})
        if loading is not None:
            return loading(entry)
        return Suspended(keys=[entry.key])

    return fetch


def dumb_fetch(
    executor: Executor | None = None,
    client: httpx.Client | None = None,
) -> Handler:
    """Create an uncached fetch handler.

    The request runs on ``executor``; ``next`` is called from the worker
    with the parsed body, or with a StepFailure if the request failed. The
    handler returns the Future, whose result is whatever the downstream
    chain returned.

    Args:
        executor: Executor running requests (a 4-worker pool by default).
        client: HTTP client (a default httpx.Client by default).

    Returns:
        The handler. Its ``close()`` releases the pool and client it
        created; an executor or client passed in is left to the caller.
    """
    pool = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="construct-dumb-fetch")
    http = client or httpx.Client(follow_redirects=True)

    def fetch(previous: Any, current: Any, next: Callable[[Any], Any]) -> Future:
        url, init = _request_of(current)
        key = request_key(url, init)
        kind = step_kind(current)

        def complete() -> Any:
            try:
                value = fetch_json(http, url, init, key=key)
            except AsyncSourceError as exc:
                return next(StepFailure.from_exception(exc, kind=kind))
            except Exception as exc:
                log_warn(f"Uncached fetch of {url} failed: {exc}", {"cache_key": key, "kind": kind})
                wrapped = AsyncSourceError(f"Fetch failed: {exc}", key=key, retryable=is_retryable(exc))
                wrapped.__cause__ = exc
                return next(StepFailure.from_exception(wrapped, kind=kind))
            return next(value)

        return pool.submit(complete)

    def close() -> None:
        if executor is None:
            pool.shutdown(wait=False, cancel_futures=True)
        if client is None:
            http.close()

    fetch.close = close
    return fetch


def _request_of(step: Any) -> tuple[str, dict[str, Any] | None]:
    url = step_value(step, "url")
    if not isinstance(url, str) or not url:
        raise ConfigurationError(f"'{step_kind(step)}' step needs a 'url'", field="url")
    init = step_value(step, "init")
    if init is not None and not isinstance(init, dict):
        raise ConfigurationError(f"'{step_kind(step)}' step 'init' must be a mapping", field="init")
    return url, init


__all__ = ["fetch_resolver", "dumb_fetch", "FetchPayload"]
