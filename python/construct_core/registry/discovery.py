"""Decorator-based resolver declaration and package discovery.

Handlers can be declared next to the code that implements them and then
collected by scanning a package:

    # myapp/resolvers/users.py
    from construct_core.registry import resolver

    @resolver("user_name")
    def user_name(previous, current, next):
        return next(previous["name"])

    # application start-up
    registry = ResolverRegistry()
    discover_resolvers("myapp.resolvers", registry)
"""

from __future__ import annotations

import importlib
import pkgutil
from collections.abc import Callable
from typing import TYPE_CHECKING, Any

from ..logging import log_error, log_info, log_warn
from ..types import ResolverSpec

if TYPE_CHECKING:
    from pydantic import BaseModel

    from .resolver_registry import ResolverRegistry

RESOLVER_SPEC_ATTR = "__construct_resolver__"


def resolver(
    kind: str,
    *,
    payload_model: type[BaseModel] | None = None,
) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Mark a function as the handler for ``kind``.

    The function itself is returned unchanged, so it stays directly callable.

    Args:
        kind: Step kind handled by the function.
        payload_model: Optional pydantic model validating step payloads.
    """

    def decorator(func: Callable[..., Any]) -> Callable[..., Any]:
        spec = ResolverSpec(kind=kind, handler=func, payload_model=payload_model)
        setattr(func, RESOLVER_SPEC_ATTR, spec)
        return func

    return decorator


def resolver_spec_of(obj: Any) -> ResolverSpec | None:
    """Return the ResolverSpec attached by @resolver, if any."""
    spec = getattr(obj, RESOLVER_SPEC_ATTR, None)
    return spec if isinstance(spec, ResolverSpec) else None


def discover_resolvers(package_name: str, registry: ResolverRegistry) -> int:
    """Discover and register @resolver functions from a package.

    Scans the package itself and all of its submodules.

    Args:
        package_name: Package to scan (e.g., "myapp.resolvers").
        registry: Registry to register discovered resolvers into.

    Returns:
        Number of resolvers discovered.
    """
    try:
        package = importlib.import_module(package_name)
    except ImportError as e:
        log_error(f"Failed to import package {package_name}: {e}")
        return 0

    discovered = _scan_module(package, registry)

    if not hasattr(package, "__path__"):
        log_info(f"Discovered {discovered} resolvers in {package_name}")
        return discovered

    for _importer, module_name, _is_pkg in pkgutil.walk_packages(
        package.__path__,
        prefix=f"{package_name}.",
    ):
        try:
            module = importlib.import_module(module_name)
        except Exception as e:
            log_warn(f"Failed to scan module {module_name}: {e}")
            continue
        discovered += _scan_module(module, registry)

    log_info(f"Discovered {discovered} resolvers in {package_name}")
    return discovered


def _scan_module(module: Any, registry: ResolverRegistry) -> int:
    discovered = 0
    seen: set[int] = set()
    for name in dir(module):
        spec = resolver_spec_of(getattr(module, name))
        # Re-exported functions show up in several modules
        if spec is None or id(spec) in seen or registry.get_spec(spec.kind) is spec:
            continue
        seen.add(id(spec))
        registry.register(spec)
        discovered += 1
    return discovered


__all__ = ["resolver", "resolver_spec_of", "discover_resolvers", "RESOLVER_SPEC_ATTR"]
