"""Synchronous built-in resolvers."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from ..exceptions import ConfigurationError
from ..types import step_kind


class PropertyPayload(BaseModel):
    """Payload of a ``property`` step."""

    path: str = Field(min_length=1, description="Dotted path into 'previous'.")

    model_config = ConfigDict(extra="allow")


class ValuePayload(BaseModel):
    """Payload of a ``value`` step."""

    value: Any = Field(description="Value handed to the next step.")

    model_config = ConfigDict(extra="allow")


def step_value(step: Any, name: str, default: Any = None) -> Any:
    """Read a property from a step given as mapping or model."""
    if isinstance(step, Mapping):
        return step.get(name, default)
    return getattr(step, name, default)


def identity_resolver(previous: Any, current: Any, next: Callable[[Any], Any]) -> Any:
    """Forward ``previous`` unchanged."""
    return next(previous)


def value_resolver(previous: Any, current: Any, next: Callable[[Any], Any]) -> Any:
    """Continue with the step's literal ``value``.

    Example:
        >>> run({"definition": [{"kind": "value", "value": 10}], "resolvers": builtin_resolvers()})
        10
    """
    if not _has(current, "value"):
        raise ConfigurationError(f"'{step_kind(current)}' step needs a 'value'", field="value")
    return next(step_value(current, "value"))


def property_resolver(previous: Any, current: Any, next: Callable[[Any], Any]) -> Any:
    """Continue with the value at the step's dotted ``path`` inside ``previous``.

    Missing segments resolve to None. Integer segments index into lists.

    Example:
        >>> # previous = {"user": {"emails": ["a@example.com"]}}
        >>> # current = {"kind": "property", "path": "user.emails.0"}
        >>> # next("a@example.com")
    """
    path = step_value(current, "path")
    if not isinstance(path, str) or not path:
        raise ConfigurationError(f"'{step_kind(current)}' step needs a 'path'", field="path")
    return next(extract_path(previous, path))


def extract_path(value: Any, path: str) -> Any:
    """Follow a dotted path through mappings and sequences."""
    for segment in path.split("."):
        if value is None:
            return None
        if isinstance(value, Mapping):
            value = value.get(segment)
        elif isinstance(value, (list, tuple)) and segment.lstrip("-").isdigit():
            index = int(segment)
            value = value[index] if -len(value) <= index < len(value) else None
        else:
            value = getattr(value, segment, None)
    return value


def _has(step: Any, name: str) -> bool:
    if isinstance(step, Mapping):
        return name in step
    return hasattr(step, name)


__all__ = [
    "identity_resolver",
    "value_resolver",
    "property_resolver",
    "extract_path",
    "step_value",
    "PropertyPayload",
    "ValuePayload",
]
