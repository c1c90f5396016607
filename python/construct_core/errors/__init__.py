"""Fetch error classes for the cache-backed async source.

The hierarchy separates transient fetch failures from permanent ones so
that handlers receiving a failed cache entry can decide whether to
invalidate and retry.

- RetryableFetchError: Transient failures (network, timeout, 5xx, 429)
- PermanentFetchError: Failures that will not succeed on retry (4xx, bad JSON)

Example:
    >>> from construct_core.errors import NetworkError, HttpStatusError
    >>>
    >>> raise NetworkError("Connection refused", key="GET https://api/x")
    >>> raise HttpStatusError(404, key="GET https://api/missing")
"""

from __future__ import annotations

from typing import Any

from ..exceptions import AsyncSourceError


class RetryableFetchError(AsyncSourceError):
    """Base class for fetch failures that might succeed on retry."""

    retryable: bool = True


class PermanentFetchError(AsyncSourceError):
    """Base class for fetch failures that will not succeed on retry."""

    retryable: bool = False


# Retryable error subclasses


class NetworkError(RetryableFetchError):
    """Connection failed, DNS resolution failed, etc.

    Example:
        >>> raise NetworkError("Failed to connect to api.example.com")
    """

    pass


class FetchTimeoutError(RetryableFetchError):
    """The request did not complete within the configured timeout."""

    pass


# Status code driven errors


class HttpStatusError(AsyncSourceError):
    """The server answered with a non-2xx status code.

    Retryability follows the status code: 408, 429 and 5xx are retryable,
    everything else is permanent.

    Attributes:
        status_code: HTTP status code of the response.
        body: Response body (parsed JSON or raw text), if any.
    """

    def __init__(
        self,
        status_code: int,
        *,
        key: str | None = None,
        body: Any = None,
        message: str | None = None,
    ) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(
            message or f"HTTP {status_code}",
            key=key,
            retryable=status_code in RETRYABLE_STATUS_CODES or status_code >= 500,
            metadata={"status_code": status_code},
        )


class InvalidResponseError(PermanentFetchError):
    """The response body could not be parsed as JSON."""

    pass


# Status codes that indicate temporary failures (should retry)
RETRYABLE_STATUS_CODES = {
    408,  # Request Timeout
    429,  # Too Many Requests (rate limit)
    500,  # Internal Server Error
    502,  # Bad Gateway
    503,  # Service Unavailable
    504,  # Gateway Timeout
}


__all__ = [
    "RetryableFetchError",
    "PermanentFetchError",
    "NetworkError",
    "FetchTimeoutError",
    "HttpStatusError",
    "InvalidResponseError",
    "RETRYABLE_STATUS_CODES",
]
