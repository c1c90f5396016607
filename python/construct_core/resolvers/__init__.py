"""Built-in resolvers.

Small handlers honoring the ``(previous, current, next)`` contract:

- value: continue with the step's literal ``value``
- identity: forward ``previous`` unchanged
- property: extract a dotted ``path`` from ``previous``
- fetch: fetch the step's ``url`` (cache-backed, or uncached dumb_fetch)

Example:
    >>> cache = FetchCache(event_bridge=bridge)
    >>> driver = ConstructDriver(
    ...     {"definition": definition, "resolvers": builtin_resolvers(cache)},
    ...     cache=cache,
    ... )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from ..enhancers import enhance
from ..types import ResolverSpec
from .basic import (
    PropertyPayload,
    ValuePayload,
    extract_path,
    identity_resolver,
    property_resolver,
    step_value,
    value_resolver,
)
from .fetch import FetchPayload, dumb_fetch, fetch_resolver

if TYPE_CHECKING:
    from ..cache import FetchCache


def builtin_resolvers(
    cache: FetchCache | None = None,
    *,
    enhanced: bool = True,
) -> list[ResolverSpec]:
    """Resolver specs for the built-in kinds.

    Args:
        cache: Fetch cache backing the ``fetch`` kind. Without one the
            ``fetch`` kind is left out.
        enhanced: Wrap each handler with enhance(), so built-in steps may
            declare ``dependencies`` and ``requiredArgs``.

    Returns:
        Specs for ``value``, ``identity``, ``property`` and, given a cache,
        ``fetch``.
    """
    handlers = [
        ("value", value_resolver, ValuePayload),
        ("identity", identity_resolver, None),
        ("property", property_resolver, PropertyPayload),
    ]
    if cache is not None:
        handlers.append(("fetch", fetch_resolver(cache), FetchPayload))

    return [
        ResolverSpec(
            kind=kind,
            handler=enhance(handler) if enhanced else handler,
            payload_model=payload_model,
        )
        for kind, handler, payload_model in handlers
    ]


__all__ = [
    "builtin_resolvers",
    "fetch_resolver",
    "dumb_fetch",
    "identity_resolver",
    "value_resolver",
    "property_resolver",
    "extract_path",
    "step_value",
    "FetchPayload",
    "PropertyPayload",
    "ValuePayload",
]
