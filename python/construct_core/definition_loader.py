"""Loading of serialized definitions from YAML and JSON files.

A definition document is either a list of steps, or a mapping with a
``definition`` key (the list of steps) and an optional ``seed``:

    # definitions/greeting.yaml
    seed: null
    definition:
      - kind: value
        value: {user: {name: Ada}}
      - kind: property
        path: user.name

The directory lookup follows this priority order:
1. CONSTRUCT_DEFINITION_PATH environment variable (explicit override)
2. ./definitions in the current directory

Example:
    >>> from construct_core.definition_loader import DefinitionPath, load_definition
    >>>
    >>> steps = load_definition("definitions/greeting.yaml")
    >>> definition_dir = DefinitionPath.find_definition_directory()
    >>> if definition_dir:
    ...     documents = DefinitionPath.load_all(definition_dir)
"""

from __future__ import annotations

import json
import os
from pathlib import Path
from typing import Any

import yaml

from .exceptions import ConfigurationError
from .logging import log_debug, log_info, log_warn

DEFINITION_PATH_ENV = "CONSTRUCT_DEFINITION_PATH"

YAML_SUFFIXES = (".yaml", ".yml")
JSON_SUFFIXES = (".json",)


def load_document(path: str | Path) -> dict[str, Any]:
    """Load a definition document.

    Parameters
    ----------
    path : str | Path
        YAML (.yaml, .yml) or JSON (.json) file.

    Returns
    -------
    dict[str, Any]
        Mapping with ``definition`` (list of steps) and ``seed``, plus any
        other top-level keys of a mapping document.

    Raises
    ------
    ConfigurationError
        If the file cannot be read or parsed, or holds no list of steps.
    """
    file_path = Path(path)
    suffix = file_path.suffix.lower()
    if suffix not in YAML_SUFFIXES + JSON_SUFFIXES:
        raise ConfigurationError(
            f"Unsupported definition file type '{suffix}': {file_path}", field="path"
        )

    try:
        with file_path.open(encoding="utf-8") as f:
            data = yaml.safe_load(f) if suffix in YAML_SUFFIXES else json.load(f)
    except (OSError, yaml.YAMLError, json.JSONDecodeError) as e:
        raise ConfigurationError(f"Failed to load definition {file_path}: {e}", field="path") from e

    if isinstance(data, list):
        document: dict[str, Any] = {"definition": data, "seed": None}
    elif isinstance(data, dict) and isinstance(data.get("definition"), list):
        document = {"seed": None, **data}
    else:
        raise ConfigurationError(
            f"{file_path}: expected a list of steps or a mapping with a 'definition' list",
            field="definition",
        )

    log_debug(f"Loaded {len(document['definition'])} steps from {file_path}")
    return document


def load_definition(path: str | Path) -> list[Any]:
    """Load just the list of steps from a definition file."""
    return load_document(path)["definition"]


class DefinitionPath:
    """Discovers definition files on disk.

    Example:
        >>> definition_dir = DefinitionPath.find_definition_directory()
        >>> if definition_dir:
        ...     files = DefinitionPath.discover_definition_files(definition_dir)
        ...     print(f"Found {len(files)} definition files")
    """

    @staticmethod
    def find_definition_directory() -> Path | None:
        """Find the definition directory.

        Returns
        -------
        Path | None
            Path to the definition directory, or None if not found.
        """
        # 1. Explicit override via environment variable
        env_path = os.environ.get(DEFINITION_PATH_ENV)
        if env_path:
            path = Path(env_path)
            if path.is_dir():
                log_debug(f"Using {DEFINITION_PATH_ENV}: {path}")
                return path
            log_warn(f"{DEFINITION_PATH_ENV} does not exist: {env_path}")

        # 2. Fallback to current directory
        fallback_path = Path.cwd() / "definitions"
        if fallback_path.is_dir():
            log_debug(f"Using fallback definition path: {fallback_path}")
            return fallback_path

        log_debug("No definition directory found")
        return None

    @staticmethod
    def discover_definition_files(definition_dir: Path) -> list[Path]:
        """Discover all definition files in a directory, recursively.

        Parameters
        ----------
        definition_dir : Path
            Directory to search.

        Returns
        -------
        list[Path]
            Sorted paths of .yaml, .yml and .json files.
        """
        if not definition_dir.is_dir():
            return []

        files: list[Path] = []
        for suffix in YAML_SUFFIXES + JSON_SUFFIXES:
            files.extend(definition_dir.glob(f"**/*{suffix}"))

        # Sort for consistent ordering
        files.sort()

        log_debug(f"Discovered {len(files)} definition files in {definition_dir}")
        return files

    @staticmethod
    def load_all(definition_dir: Path) -> dict[str, dict[str, Any]]:
        """Load every definition document in a directory.

        Files that fail to load are skipped with a warning.

        Parameters
        ----------
        definition_dir : Path
            Directory to search.

        Returns
        -------
        dict[str, dict[str, Any]]
            Documents keyed by file stem.
        """
        documents: dict[str, dict[str, Any]] = {}
        for file_path in DefinitionPath.discover_definition_files(definition_dir):
            try:
                documents[file_path.stem] = load_document(file_path)
            except ConfigurationError as e:
                log_warn(f"Skipping definition {file_path}: {e}")

        log_info(f"Loaded {len(documents)} definitions from {definition_dir}")
        return documents


__all__ = [
    "DefinitionPath",
    "load_definition",
    "load_document",
    "DEFINITION_PATH_ENV",
]
