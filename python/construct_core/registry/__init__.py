"""Resolver registry infrastructure.

Maps a step's ``kind`` to the handler executing it.

- ResolverRegistry: the mapping plus the unknown-kind policy
- resolver: decorator binding a function to a kind
- discover_resolvers: package scanning for decorated functions
"""

from __future__ import annotations

from .discovery import discover_resolvers, resolver, resolver_spec_of
from .resolver_registry import Handler, ResolverRegistry, coerce_resolver, forward_previous

__all__ = [
    "ResolverRegistry",
    "Handler",
    "coerce_resolver",
    "forward_previous",
    "resolver",
    "resolver_spec_of",
    "discover_resolvers",
]
