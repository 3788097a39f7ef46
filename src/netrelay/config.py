"""
Validated configuration for the upload pipeline.

Every knob the pipeline exposes (chunk size, batch ceilings, retry and
confirmation budgets, funding verification schedule) is a frozen Pydantic
model. Construction goes through ``build_pipeline_config`` and
``load_relay_config`` which return ``Result`` values instead of raising.
"""

from __future__ import annotations

import os
from typing import Annotated, Mapping

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PositiveFloat,
    PositiveInt,
    SecretStr,
    ValidationError,
    model_validator,
)

from netrelay.result import Result
from netrelay.validation import validate_model


__all__ = [
    "DEFAULT_SMALL_THRESHOLD",
    "DEFAULT_CHUNK_SIZE",
    "DEFAULT_MAX_CHUNKS",
    "PlannerLimits",
    "BatchLimits",
    "RetryPolicy",
    "ConfirmationPolicy",
    "FundingPolicy",
    "PipelineConfig",
    "RelayEndpointConfig",
    "build_pipeline_config",
    "load_relay_config",
]


DEFAULT_SMALL_THRESHOLD = 20 * 1024
DEFAULT_CHUNK_SIZE = 20_000
DEFAULT_MAX_CHUNKS = 255


# ---------------------------------------------------------------------------
# Component limits
# ---------------------------------------------------------------------------


class PlannerLimits(BaseModel):
    """Thresholds for splitting content into chunk writes."""

    small_threshold: Annotated[
        int, Field(ge=0, description="Largest content (bytes) stored as one normal write")
    ] = DEFAULT_SMALL_THRESHOLD
    chunk_size: Annotated[int, Field(gt=0, description="Maximum bytes per fragment")] = (
        DEFAULT_CHUNK_SIZE
    )
    max_chunks: Annotated[int, Field(gt=0, description="Fragments accepted per key")] = (
        DEFAULT_MAX_CHUNKS
    )
    compress: Annotated[
        bool, Field(description="Gzip split content before cutting it into fragments")
    ] = False

    model_config = ConfigDict(frozen=True, extra="forbid")


class BatchLimits(BaseModel):
    """Per-request ceilings enforced by the batcher."""

    max_count: PositiveInt = 100
    max_bytes: PositiveInt = 900_000
    max_descriptor_bytes: PositiveInt = 100_000
    descriptor_overhead: Annotated[int, Field(ge=0)] = 200
    request_overhead: Annotated[int, Field(ge=0)] = 300

    model_config = ConfigDict(frozen=True, extra="forbid")


class RetryPolicy(BaseModel):
    """Exponential backoff: ``min(base_delay * multiplier**attempt, max_delay)``."""

    max_attempts: Annotated[int, Field(ge=0, description="Retries after the first try")] = 3
    base_delay: Annotated[float, Field(ge=0.0)] = 2.0
    multiplier: Annotated[float, Field(ge=1.0)] = 2.0
    max_delay: Annotated[float, Field(ge=0.0)] = 30.0

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _validate(self) -> RetryPolicy:
        """Ensure the cap is not below the first delay."""
        if self.max_delay < self.base_delay:
            raise ValueError("`max_delay` must be >= `base_delay`.")
        return self

    def delay_for(self, attempt: int) -> float:
        """Delay in seconds before retry number ``attempt`` (0-based)."""
        return min(self.base_delay * self.multiplier**attempt, self.max_delay)


class ConfirmationPolicy(BaseModel):
    """How long and how deep to wait for each transaction."""

    confirmations: PositiveInt = 1
    timeout: PositiveFloat = 60.0
    poll_interval: PositiveFloat = 2.0

    model_config = ConfigDict(frozen=True, extra="forbid")


class FundingPolicy(BaseModel):
    """Schedule for the fund-then-verify handshake."""

    settle_delay: Annotated[float, Field(ge=0.0, description="Wait after funding")] = 2.0
    verify_retry: RetryPolicy = RetryPolicy(max_attempts=3, base_delay=2.0, max_delay=30.0)

    model_config = ConfigDict(frozen=True, extra="forbid")


# ---------------------------------------------------------------------------
# Aggregate configuration
# ---------------------------------------------------------------------------


class PipelineConfig(BaseModel):
    """Everything the orchestrator needs besides its collaborators."""

    planner: PlannerLimits = PlannerLimits()
    batch: BatchLimits = BatchLimits()
    retry: RetryPolicy = RetryPolicy()
    confirmation: ConfirmationPolicy = ConfirmationPolicy()
    funding: FundingPolicy = FundingPolicy()
    plan_concurrency: PositiveInt = 1
    filter_concurrency: PositiveInt = 16
    session_ttl: PositiveInt = 3600
    session_refresh_margin: Annotated[float, Field(ge=0.0)] = 60.0

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _validate(self) -> PipelineConfig:
        """A session must outlive its refresh margin."""
        if self.session_refresh_margin >= self.session_ttl:
            raise ValueError("`session_refresh_margin` must be smaller than `session_ttl`.")
        return self


class RelayEndpointConfig(BaseModel):
    """Connection settings for the relay service and the chain RPC node."""

    api_url: Annotated[str, Field(min_length=1)]
    chain_id: PositiveInt
    secret_key: SecretStr
    rpc_url: str | None = None
    request_timeout: PositiveFloat = 30.0

    model_config = ConfigDict(frozen=True, extra="forbid")

    @model_validator(mode="after")
    def _validate(self) -> RelayEndpointConfig:
        """Reject URLs without an http(s) scheme."""
        for name, url in (("api_url", self.api_url), ("rpc_url", self.rpc_url)):
            if url is not None and not url.startswith(("http://", "https://")):
                raise ValueError(f"`{name}` must start with http:// or https://")
        return self


def build_pipeline_config(**overrides: object) -> Result[PipelineConfig, ValidationError]:
    """Validate a ``PipelineConfig`` from keyword overrides of the defaults."""
    return validate_model(PipelineConfig, **overrides)


_ENV_FIELDS: dict[str, str] = {
    "NETRELAY_API_URL": "api_url",
    "NETRELAY_CHAIN_ID": "chain_id",
    "NETRELAY_SECRET_KEY": "secret_key",
    "NETRELAY_RPC_URL": "rpc_url",
    "NETRELAY_REQUEST_TIMEOUT": "request_timeout",
}


def load_relay_config(
    env: Mapping[str, str] | None = None,
) -> Result[RelayEndpointConfig, ValidationError]:
    """
    Read relay settings from ``NETRELAY_*`` environment variables.

    Unset or empty variables are left to the model defaults; missing
    required ones surface as a ``ValidationError`` in the Failure.
    """
    source = os.environ if env is None else env
    data: dict[str, object] = {
        field: source[var] for var, field in _ENV_FIELDS.items() if source.get(var)
    }
    return validate_model(RelayEndpointConfig, **data)
