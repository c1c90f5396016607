"""Model and step helper tests.

These tests verify:
- EngineConfig defaults, validation and environment loading
- Step / Dependency / ResolverSpec aliases
- StepFailure construction from exceptions
- Step helper functions
"""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from construct_core import (
    Dependency,
    EngineConfig,
    ErrorPolicy,
    HttpStatusError,
    ResolverSpec,
    Step,
    StepFailure,
    Suspended,
    UnknownKindPolicy,
)
from construct_core.types import (
    dependencies_of,
    merge_step,
    required_args_of,
    step_keys,
    step_kind,
)


class TestEngineConfig:
    """Tests for EngineConfig."""

    def test_defaults(self):
        """Test default engine behavior."""
        config = EngineConfig()
        assert config.unknown_kind is UnknownKindPolicy.FAIL
        assert config.error_policy is ErrorPolicy.PROPAGATE
        assert config.max_depth == 32
        assert config.cache_max_entries == 1024
        assert config.cache_ttl_seconds is None

    def test_unknown_field_rejected(self):
        """Test typos in field names are errors."""
        with pytest.raises(ValidationError):
            EngineConfig(max_dept=3)

    def test_from_env(self):
        """Test CONSTRUCT_* variables are read."""
        config = EngineConfig.from_env({
            "CONSTRUCT_UNKNOWN_KIND": "identity",
            "CONSTRUCT_ERROR_POLICY": "contain",
            "CONSTRUCT_MAX_DEPTH": "8",
            "CONSTRUCT_CACHE_TTL_SECONDS": "2.5",
            "UNRELATED": "ignored",
        })
        assert config.unknown_kind is UnknownKindPolicy.IDENTITY
        assert config.error_policy is ErrorPolicy.CONTAIN
        assert config.max_depth == 8
        assert config.cache_ttl_seconds == 2.5

    def test_from_env_none_and_empty(self):
        """Test 'none' clears optional bounds and empty values are skipped."""
        config = EngineConfig.from_env({"CONSTRUCT_CACHE_MAX_ENTRIES": "none", "CONSTRUCT_MAX_DEPTH": ""})
        assert config.cache_max_entries is None
        assert config.max_depth == 32

    def test_overrides_win(self):
        """Test keyword overrides take precedence over the environment."""
        config = EngineConfig.from_env({"CONSTRUCT_FETCH_WORKERS": "2"}, fetch_workers=6)
        assert config.fetch_workers == 6

    def test_invalid_env_value(self):
        """Test malformed environment values are validation errors."""
        with pytest.raises(ValidationError):
            EngineConfig.from_env({"CONSTRUCT_MAX_DEPTH": "deep"})

    def test_bounds(self):
        """Test numeric bounds."""
        with pytest.raises(ValidationError):
            EngineConfig(max_depth=0)
        with pytest.raises(ValidationError):
            EngineConfig(fetch_timeout=0)


class TestStepModels:
    """Tests for Step, Dependency and ResolverSpec."""

    def test_step_extras(self):
        """Test additional step properties are kept."""
        step = Step.model_validate({"kind": "fetch", "url": "https://api/x"})
        assert step.kind == "fetch"
        assert step.model_extra == {"url": "https://api/x"}

    def test_step_aliases(self):
        """Test camelCase keys are accepted."""
        step = Step.model_validate({
            "kind": "greet",
            "requiredArgs": ["user"],
            "dependencies": [{"name": "user", "subSteps": [{"kind": "fetch", "url": "https://api/u/1"}]}],
        })
        assert step.required_args == ["user"]
        assert step.dependencies[0].sub_steps[0].kind == "fetch"

    def test_step_needs_kind(self):
        """Test an empty kind is rejected."""
        with pytest.raises(ValidationError):
            Step.model_validate({"kind": ""})

    def test_dependency_needs_name(self):
        """Test dependencies must be named."""
        with pytest.raises(ValidationError):
            Dependency.model_validate({"subSteps": []})

    def test_resolver_spec_legacy_keys(self):
        """Test type / resolverFunc are accepted."""

        def handler(previous, current, next):
            return next(previous)

        spec = ResolverSpec.model_validate({"type": "noop", "resolverFunc": handler})
        assert spec.kind == "noop"
        assert spec.handler is handler
        assert spec.payload_model is None

    def test_resolver_spec_is_frozen(self):
        """Test specs cannot be changed after creation."""
        spec = ResolverSpec(kind="noop", handler=print)
        with pytest.raises(ValidationError):
            spec.kind = "other"


class TestStepFailure:
    """Tests for StepFailure and Suspended."""

    def test_from_exception(self):
        """Test failure values carry type, message and retryability."""
        failure = StepFailure.from_exception(ValueError("bad user"), kind="greet")
        assert failure.kind == "greet"
        assert failure.error_type == "ValueError"
        assert failure.message == "bad user"
        assert failure.retryable is False
        assert failure.metadata == {}

    def test_from_fetch_error(self):
        """Test fetch errors contribute their metadata and key."""
        failure = StepFailure.from_exception(HttpStatusError(503, key="GET https://api/x"), kind="fetch")
        assert failure.retryable is True
        assert failure.metadata == {"status_code": 503, "key": "GET https://api/x"}

    def test_suspended_defaults(self):
        """Test the default suspension reason."""
        suspended = Suspended(keys=["GET https://api/x"])
        assert suspended.reason == "pending"
        assert suspended.keys == ["GET https://api/x"]


class TestStepHelpers:
    """Tests for the step helper functions."""

    def test_step_kind(self):
        """Test kinds are read from mappings and models."""
        assert step_kind({"kind": "fetch"}) == "fetch"
        assert step_kind(Step(kind="fetch")) == "fetch"

    def test_step_kind_missing(self):
        """Test steps without a kind are rejected."""
        with pytest.raises(TypeError):
            step_kind({"url": "https://api/x"})

    def test_step_keys(self):
        """Test keys of mappings and models."""
        assert step_keys({"kind": "fetch", "url": "x"}) == {"kind", "url"}
        assert step_keys(Step.model_validate({"kind": "fetch", "url": "x"})) == {"kind", "url"}

    def test_required_args_of(self):
        """Test both spellings of requiredArgs."""
        assert required_args_of({"kind": "a", "requiredArgs": ["x"]}) == ["x"]
        assert required_args_of({"kind": "a", "required_args": ("y",)}) == ["y"]
        assert required_args_of({"kind": "a"}) is None

    def test_dependencies_of_keeps_step_identity(self):
        """Test sub-steps are returned as the caller's own objects."""
        inner = {"kind": "fetch", "url": "https://api/u/1"}
        step = {"kind": "greet", "dependencies": [{"name": "user", "subSteps": [inner]}]}

        [(name, sub_steps)] = dependencies_of(step)

        assert name == "user"
        assert sub_steps[0] is inner

    def test_merge_step_copies(self):
        """Test merging never mutates the original step."""
        step = {"kind": "greet"}
        merged = merge_step(step, "user", {"name": "Ada"})
        assert merged == {"kind": "greet", "user": {"name": "Ada"}}
        assert step == {"kind": "greet"}
