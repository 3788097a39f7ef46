# tests/test_config.py
"""Tests for pipeline and relay configuration models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from netrelay.config import (
    BatchLimits,
    ConfirmationPolicy,
    PipelineConfig,
    PlannerLimits,
    RelayEndpointConfig,
    RetryPolicy,
    build_pipeline_config,
    load_relay_config,
)
from netrelay.validation import validate_model
from tests.helpers import API_URL, SECRET_KEY, expect_failure, expect_success


class TestDefaults:
    """Default limits match the relay's documented ceilings."""

    def test_batch_limits(self) -> None:
        """Batches default to 100 descriptors and 900,000 estimated bytes."""
        limits = BatchLimits()
        assert limits.max_count == 100
        assert limits.max_bytes == 900_000
        assert limits.max_descriptor_bytes == 100_000
        assert limits.descriptor_overhead == 200
        assert limits.request_overhead == 300

    def test_planner_limits(self) -> None:
        """Content above 20 KiB is chunked into at most 255 fragments."""
        limits = PlannerLimits()
        assert limits.small_threshold == 20_480
        assert limits.chunk_size == 20_000
        assert limits.max_chunks == 255

    def test_retry_and_confirmation(self) -> None:
        """Three retries from 2s doubling; one confirmation within 60s."""
        config = PipelineConfig()
        assert config.retry.max_attempts == 3
        assert config.retry.base_delay == 2.0
        assert config.retry.multiplier == 2.0
        assert config.confirmation == ConfirmationPolicy(confirmations=1, timeout=60.0)
        assert config.plan_concurrency == 1


class TestRetryPolicy:
    """Backoff schedule computation and validation."""

    def test_delay_doubles_and_caps(self) -> None:
        """delay_for grows geometrically until max_delay."""
        policy = RetryPolicy(base_delay=2.0, multiplier=2.0, max_delay=10.0)
        assert [policy.delay_for(n) for n in range(5)] == [2.0, 4.0, 8.0, 10.0, 10.0]

    def test_cap_below_base_rejected(self) -> None:
        """max_delay smaller than base_delay is a validation error."""
        error = expect_failure(validate_model(RetryPolicy, base_delay=5.0, max_delay=1.0))
        assert "max_delay" in str(error)

    def test_models_are_frozen(self) -> None:
        """Configuration cannot be mutated after validation."""
        policy = RetryPolicy()
        with pytest.raises(ValidationError):
            policy.max_attempts = 10  # type: ignore[misc]


class TestBuildPipelineConfig:
    """Result-returning construction of PipelineConfig."""

    def test_overrides_applied(self) -> None:
        """Keyword overrides replace defaults."""
        config = expect_success(
            build_pipeline_config(plan_concurrency=4, batch=BatchLimits(max_count=10))
        )
        assert config.plan_concurrency == 4
        assert config.batch.max_count == 10

    def test_invalid_values_fail(self) -> None:
        """Non-positive concurrency is reported, not raised."""
        error = expect_failure(build_pipeline_config(plan_concurrency=0))
        assert isinstance(error, ValidationError)

    def test_unknown_field_rejected(self) -> None:
        """extra="forbid" catches typos."""
        expect_failure(build_pipeline_config(plan_concurency=2))

    def test_refresh_margin_must_fit_ttl(self) -> None:
        """A session cannot need renewal before it is issued."""
        expect_failure(build_pipeline_config(session_ttl=30, session_refresh_margin=60.0))


class TestLoadRelayConfig:
    """Environment-driven relay configuration."""

    def test_reads_environment(self) -> None:
        """All NETRELAY_* variables map onto the model."""
        config = expect_success(
            load_relay_config(
                {
                    "NETRELAY_API_URL": API_URL,
                    "NETRELAY_CHAIN_ID": "8453",
                    "NETRELAY_SECRET_KEY": SECRET_KEY,
                    "NETRELAY_RPC_URL": "https://rpc.example.test",
                    "NETRELAY_REQUEST_TIMEOUT": "12.5",
                }
            )
        )
        assert config.api_url == API_URL
        assert config.chain_id == 8453
        assert config.secret_key.get_secret_value() == SECRET_KEY
        assert config.request_timeout == 12.5

    def test_secret_hidden_from_repr(self) -> None:
        """The secret key never appears in the model's repr."""
        config = RelayEndpointConfig(api_url=API_URL, chain_id=1, secret_key=SECRET_KEY)
        assert SECRET_KEY not in repr(config)

    def test_missing_required_variable(self) -> None:
        """A missing secret key fails validation."""
        error = expect_failure(
            load_relay_config({"NETRELAY_API_URL": API_URL, "NETRELAY_CHAIN_ID": "1"})
        )
        assert "secret_key" in str(error)

    def test_rejects_url_without_scheme(self) -> None:
        """URLs must be http(s)."""
        expect_failure(
            load_relay_config(
                {
                    "NETRELAY_API_URL": "relay.example.test",
                    "NETRELAY_CHAIN_ID": "1",
                    "NETRELAY_SECRET_KEY": SECRET_KEY,
                }
            )
        )
