#!/usr/bin/env python3
"""Definition runner.

Runs a YAML or JSON definition file with the built-in resolvers (plus any
@resolver functions discovered in ``--resolvers`` packages), waits for
pending fetches to settle and prints the result as JSON.

Usage:
    bin/construct.py definitions/greeting.yaml
    bin/construct.py user.json --seed '{"id": 1}' --lenient --timeout 10
"""

from __future__ import annotations

import argparse
import json
import logging
import os
import sys
from typing import Any

# Add the python source directory to the path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "python"))

from pydantic import BaseModel

from construct_core import (
    ConstructDriver,
    ConstructError,
    EngineConfig,
    ErrorPolicy,
    EventBridge,
    FetchCache,
    ResolverRegistry,
    UnknownKindPolicy,
    builtin_resolvers,
    discover_resolvers,
    load_document,
)

# Get log level from environment
log_level = os.environ.get("CONSTRUCT_LOG_LEVEL", "warning").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.WARNING),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S%z",
    stream=sys.stderr,
)
logger = logging.getLogger("construct")

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_INCOMPLETE = 2


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run a construct definition file.")
    parser.add_argument("file", help="YAML (.yaml, .yml) or JSON (.json) definition file")
    parser.add_argument("--seed", help="JSON value used as the first step's 'previous'")
    policy = parser.add_mutually_exclusive_group()
    policy.add_argument(
        "--strict",
        dest="unknown_kind",
        action="store_const",
        const=UnknownKindPolicy.FAIL,
        help="Fail on step kinds without a resolver (default)",
    )
    policy.add_argument(
        "--lenient",
        dest="unknown_kind",
        action="store_const",
        const=UnknownKindPolicy.IDENTITY,
        help="Forward the previous value through unknown step kinds",
    )
    parser.add_argument(
        "--contain",
        action="store_true",
        help="Turn handler exceptions into failure values instead of aborting",
    )
    parser.add_argument(
        "--resolvers",
        action="append",
        default=[],
        metavar="PACKAGE",
        help="Package to scan for @resolver functions (repeatable)",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Seconds to wait for pending fetches (default: 30)",
    )
    return parser.parse_args(argv)


def to_json(value: Any) -> Any:
    """JSON fallback for pydantic models (StepFailure, Suspended)."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    return repr(value)


def collect_resolvers(packages: list[str], cache: FetchCache) -> list[Any]:
    """Discovered resolvers first, so they take precedence over built-ins."""
    discovered = ResolverRegistry()
    for package in packages:
        discover_resolvers(package, discovered)
    specs = [discovered.get_spec(kind) for kind in discovered.list_kinds()]
    return [*specs, *builtin_resolvers(cache)]


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    overrides: dict[str, Any] = {}
    if args.unknown_kind is not None:
        overrides["unknown_kind"] = args.unknown_kind
    if args.contain:
        overrides["error_policy"] = ErrorPolicy.CONTAIN

    try:
        config = EngineConfig.from_env(**overrides)
        document = load_document(args.file)
        seed = json.loads(args.seed) if args.seed is not None else document.get("seed")
    except (ConstructError, ValueError) as e:
        logger.error(f"Invalid input: {e}")
        return EXIT_ERROR

    bridge = EventBridge()
    bridge.start()
    cache = FetchCache.from_config(config, event_bridge=bridge)
    try:
        with ConstructDriver(
            {
                "definition": document["definition"],
                "resolvers": collect_resolvers(args.resolvers, cache),
                "seed": seed,
            },
            cache=cache,
            event_bridge=bridge,
            engine_config=config,
        ) as driver:
            driver.render()
            if not driver.wait(timeout=args.timeout):
                if driver.last_error is not None:
                    logger.error(f"Run failed: {driver.last_error}")
                    return EXIT_ERROR
                logger.error(f"Definition did not complete within {args.timeout}s")
                print(json.dumps(driver.last_result, default=to_json, indent=2))
                return EXIT_INCOMPLETE
            print(json.dumps(driver.last_result, default=to_json, indent=2))
            return EXIT_OK
    except ConstructError as e:
        logger.error(f"Run failed: {e}")
        return EXIT_ERROR
    finally:
        cache.close()
        bridge.stop()


if __name__ == "__main__":
    sys.exit(main())
