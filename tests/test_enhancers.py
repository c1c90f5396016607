"""Enhancer layer tests.

These tests verify:
- Required-argument gate skipping and delegation
- Dependency resolution, merging and ordering
- enhance() composition order
- Depth guard and contained failures inside dependency branches
"""

from __future__ import annotations

from unittest.mock import Mock

import pytest

from construct_core import (
    ConfigurationError,
    CyclicDependencyError,
    EngineConfig,
    ErrorPolicy,
    ResolverRegistry,
    StepFailure,
    enhance,
    run,
    with_dependencies,
    with_required_args,
)


def echo_current(previous, current, next):
    return next(current)


class TestRequiredArgsGate:
    """Tests for with_required_args()."""

    def test_missing_arg_skips_handler(self):
        """Test the handler is never called and the chain receives None."""
        handler = Mock()
        render = Mock(return_value="rendered")
        result = run({
            "definition": [{"kind": "gated", "requiredArgs": ["x"]}],
            "resolvers": [{"kind": "gated", "handler": with_required_args(handler)}],
            "render": render,
        })
        handler.assert_not_called()
        render.assert_called_once_with(None)
        assert result == "rendered"

    def test_present_arg_delegates(self):
        """Test the handler runs when every required key is present."""
        step = {"kind": "gated", "requiredArgs": ["x"], "x": 1}
        handler = Mock(side_effect=lambda previous, current, next: next(current["x"] + 1))
        result = run({"definition": [step], "resolvers": [{"kind": "gated", "handler": with_required_args(handler)}]})
        assert result == 2
        assert handler.call_args.args[1] is step

    def test_key_presence_is_enough(self):
        """Test a present key with a None value satisfies the gate."""
        handler = Mock(side_effect=lambda previous, current, next: next("ran"))
        result = run({
            "definition": [{"kind": "gated", "requiredArgs": ["x"], "x": None}],
            "resolvers": [{"kind": "gated", "handler": with_required_args(handler)}],
        })
        assert result == "ran"

    def test_previous_counts_when_not_none(self, counting_resolvers):
        """Test 'previous' is available once a prior step produced a value."""
        gated = with_required_args(lambda previous, current, next: next(previous * 2))
        result = run({
            "definition": [{"kind": "start"}, {"kind": "double", "requiredArgs": ["previous"]}],
            "resolvers": [*counting_resolvers, {"kind": "double", "handler": gated}],
        })
        assert result == 20

    def test_previous_none_is_missing(self):
        """Test 'previous' is unavailable when previous is None."""
        handler = Mock()
        result = run({
            "definition": [{"kind": "double", "requiredArgs": ["previous"]}],
            "resolvers": [{"kind": "double", "handler": with_required_args(handler)}],
        })
        handler.assert_not_called()
        assert result is None

    def test_no_required_args_delegates(self):
        """Test steps without requiredArgs always run."""
        handler = Mock(side_effect=lambda previous, current, next: next("ran"))
        result = run({"definition": [{"kind": "plain"}], "resolvers": [{"kind": "plain", "handler": with_required_args(handler)}]})
        assert result == "ran"

    def test_skipped_step_continues_chain(self, counting_resolvers):
        """Test steps after a skipped one still run with previous=None."""
        seen = []

        def record(previous, current, next):
            seen.append(previous)
            return next("after")

        result = run({
            "definition": [{"kind": "start"}, {"kind": "gated", "requiredArgs": ["missing"]}, {"kind": "record"}],
            "resolvers": [
                *counting_resolvers,
                {"kind": "gated", "handler": with_required_args(Mock())},
                {"kind": "record", "handler": record},
            ],
        })
        assert seen == [None]
        assert result == "after"

    def test_preserves_handler_name(self):
        """Test the wrapper keeps the wrapped function's metadata."""
        assert with_required_args(echo_current).__name__ == "echo_current"


class TestDependencies:
    """Tests for with_dependencies()."""

    def test_dependency_result_is_merged(self, counting_resolvers):
        """Test the handler sees the sub-pipeline's result under the dependency name."""
        step = {
            "kind": "owner",
            "dependencies": [{"name": "d", "subSteps": [{"kind": "start"}, {"kind": "increment"}]}],
        }
        result = run({
            "definition": [step],
            "resolvers": [*counting_resolvers, {"kind": "owner", "handler": with_dependencies(echo_current)}],
        })
        assert result["d"] == 11
        assert result["kind"] == "owner"

    def test_original_step_is_not_mutated(self, counting_resolvers):
        """Test merging produces a derived step."""
        step = {"kind": "owner", "dependencies": [{"name": "d", "subSteps": [{"kind": "start"}]}]}
        result = run({
            "definition": [step],
            "resolvers": [*counting_resolvers, {"kind": "owner", "handler": with_dependencies(echo_current)}],
        })
        assert result is not step
        assert "d" not in step

    def test_no_dependencies_delegates_unchanged(self):
        """Test steps without dependencies keep reference identity."""
        step = {"kind": "owner"}
        result = run({"definition": [step], "resolvers": [{"kind": "owner", "handler": with_dependencies(echo_current)}]})
        assert result is step

    def test_sub_pipeline_is_seeded_with_none(self):
        """Test dependency sub-pipelines start from previous=None."""
        seen = []

        def record(previous, current, next):
            seen.append(previous)
            return next("dep")

        run({
            "definition": [
                {"kind": "value"},
                {"kind": "owner", "dependencies": [{"name": "d", "subSteps": [{"kind": "record"}]}]},
            ],
            "resolvers": [
                {"kind": "value", "handler": lambda previous, current, next: next("outer")},
                {"kind": "record", "handler": record},
                {"kind": "owner", "handler": with_dependencies(echo_current)},
            ],
        })
        assert seen == [None]

    def test_owner_receives_outer_previous(self, counting_resolvers):
        """Test the owning handler still receives the outer previous value."""
        owner = Mock(side_effect=lambda previous, current, next: next((previous, current["d"])))
        result = run({
            "definition": [
                {"kind": "start"},
                {"kind": "owner", "dependencies": [{"name": "d", "subSteps": [{"kind": "start"}]}]},
            ],
            "resolvers": [*counting_resolvers, {"kind": "owner", "handler": with_dependencies(owner)}],
        })
        assert result == (10, 10)

    def test_nested_dependencies_resolve_depth_first(self):
        """Test inner dependencies finish before outer handlers run."""
        order = []

        def leaf(previous, current, next):
            order.append("leaf")
            return next("leaf-value")

        def middle(previous, current, next):
            order.append("middle")
            return next({"inner": current["inner"]})

        def outer(previous, current, next):
            order.append("outer")
            return next(current["mid"])

        definition = [{
            "kind": "outer",
            "dependencies": [{
                "name": "mid",
                "subSteps": [{
                    "kind": "middle",
                    "dependencies": [{"name": "inner", "subSteps": [{"kind": "leaf"}]}],
                }],
            }],
        }]
        result = run({
            "definition": definition,
            "resolvers": [
                {"kind": "leaf", "handler": leaf},
                {"kind": "middle", "handler": with_dependencies(middle)},
                {"kind": "outer", "handler": with_dependencies(outer)},
            ],
        })
        assert order == ["leaf", "middle", "outer"]
        assert result == {"inner": "leaf-value"}

    def test_multiple_dependencies_resolve_in_order(self):
        """Test dependencies are resolved sequentially in declaration order."""
        order = []

        def named(previous, current, next):
            order.append(current["label"])
            return next(current["label"].upper())

        step = {
            "kind": "owner",
            "dependencies": [
                {"name": "a", "subSteps": [{"kind": "named", "label": "a"}]},
                {"name": "b", "subSteps": [{"kind": "named", "label": "b"}]},
            ],
        }
        result = run({
            "definition": [step],
            "resolvers": [
                {"kind": "named", "handler": named},
                {"kind": "owner", "handler": with_dependencies(echo_current)},
            ],
        })
        assert order == ["a", "b"]
        assert (result["a"], result["b"]) == ("A", "B")

    def test_suspended_dependency_stops_owner(self):
        """Test the owner does not run until every dependency produced a value."""
        owner = Mock()
        result = run({
            "definition": [{"kind": "owner", "dependencies": [{"name": "d", "subSteps": [{"kind": "wait"}]}]}],
            "resolvers": [
                {"kind": "wait", "handler": lambda previous, current, next: "loading"},
                {"kind": "owner", "handler": with_dependencies(owner)},
            ],
        })
        owner.assert_not_called()
        assert result == "loading"

    def test_empty_sub_steps_merge_none(self):
        """Test a dependency without sub-steps merges None."""
        result = run({
            "definition": [{"kind": "owner", "dependencies": [{"name": "d", "subSteps": []}]}],
            "resolvers": [{"kind": "owner", "handler": with_dependencies(echo_current)}],
        })
        assert "d" in result
        assert result["d"] is None

    def test_depth_guard_raises(self):
        """Test nesting beyond max_depth raises CyclicDependencyError."""
        step = {"kind": "leaf"}
        for _ in range(5):
            step = {"kind": "nest", "dependencies": [{"name": "d", "subSteps": [step]}]}

        with pytest.raises(CyclicDependencyError) as exc_info:
            run(
                {
                    "definition": [step],
                    "resolvers": [
                        {"kind": "leaf", "handler": lambda previous, current, next: next("leaf")},
                        {"kind": "nest", "handler": with_dependencies(echo_current)},
                    ],
                },
                engine_config=EngineConfig(max_depth=3),
            )
        assert exc_info.value.kind == "nest"

    def test_depth_within_limit_succeeds(self):
        """Test nesting up to max_depth is allowed."""
        step = {"kind": "leaf"}
        for _ in range(3):
            step = {"kind": "nest", "dependencies": [{"name": "d", "subSteps": [step]}]}

        result = run(
            {
                "definition": [step],
                "resolvers": [
                    {"kind": "leaf", "handler": lambda previous, current, next: next("leaf")},
                    {"kind": "nest", "handler": with_dependencies(lambda previous, current, next: next(current["d"]))},
                ],
            },
            engine_config=EngineConfig(max_depth=3),
        )
        assert result == "leaf"

    def test_contained_failure_becomes_dependency_value(self):
        """Test CONTAIN delivers a failing sub-step as the merged value."""

        def explode(previous, current, next):
            raise RuntimeError("sub-step failed")

        result = run(
            {
                "definition": [{"kind": "owner", "dependencies": [{"name": "d", "subSteps": [{"kind": "explode"}]}]}],
                "resolvers": [
                    {"kind": "explode", "handler": explode},
                    {"kind": "owner", "handler": with_dependencies(echo_current)},
                ],
            },
            engine_config=EngineConfig(error_policy=ErrorPolicy.CONTAIN),
        )
        assert isinstance(result["d"], StepFailure)
        assert result["d"].kind == "explode"

    def test_bare_next_without_registry_raises(self):
        """Test dependencies need a pipeline context or an explicit registry."""
        handler = with_dependencies(echo_current)
        step = {"kind": "owner", "dependencies": [{"name": "d", "subSteps": []}]}
        with pytest.raises(ConfigurationError):
            handler(None, step, lambda value: value)

    def test_bare_next_with_explicit_registry(self, registry):
        """Test the registry argument is used outside a pipeline."""
        handler = with_dependencies(echo_current, registry)
        step = {"kind": "owner", "dependencies": [{"name": "d", "subSteps": [{"kind": "start"}]}]}
        result = handler(None, step, lambda value: value)
        assert result["d"] == 10


class TestEnhance:
    """Tests for enhance() composition."""

    def test_gate_sees_merged_dependencies(self):
        """Test required args can be satisfied by dependency results."""

        def greet(previous, current, next):
            return next(f"Hello {current['user']['name']}")

        result = run({
            "definition": [{
                "kind": "greet",
                "requiredArgs": ["user"],
                "dependencies": [{"name": "user", "subSteps": [{"kind": "user"}]}],
            }],
            "resolvers": [
                {"kind": "user", "handler": lambda previous, current, next: next({"name": "Ada"})},
                {"kind": "greet", "handler": enhance(greet)},
            ],
        })
        assert result == "Hello Ada"

    def test_gate_still_skips_unmet_args(self):
        """Test enhance() keeps gating after dependencies resolve."""
        greet = Mock()
        result = run({
            "definition": [{
                "kind": "greet",
                "requiredArgs": ["user", "greeting"],
                "dependencies": [{"name": "user", "subSteps": [{"kind": "user"}]}],
            }],
            "resolvers": [
                {"kind": "user", "handler": lambda previous, current, next: next({"name": "Ada"})},
                {"kind": "greet", "handler": enhance(greet)},
            ],
        })
        greet.assert_not_called()
        assert result is None

    def test_enhance_accepts_registry(self):
        """Test enhance() forwards the fallback registry."""
        registry = ResolverRegistry.from_resolvers(
            [{"kind": "one", "handler": lambda previous, current, next: next(1)}]
        )
        handler = enhance(echo_current, registry)
        step = {"kind": "owner", "dependencies": [{"name": "n", "subSteps": [{"kind": "one"}]}]}
        assert handler(None, step, lambda value: value)["n"] == 1
