"""Helper utilities for Result-based Pydantic validation."""

from __future__ import annotations

from typing import Mapping, TypeVar

from pydantic import BaseModel, ValidationError

from netrelay.result import Failure, Result, Success


TModel = TypeVar("TModel", bound=BaseModel)

__all__: list[str] = ["validate_model", "validate_payload"]


def validate_model(model_cls: type[TModel], **data: object) -> Result[TModel, ValidationError]:
    """
    Construct a Pydantic model and surface validation issues as a Result.

    Pydantic raises internally; the exception is caught at this boundary so
    callers (configuration loaders, relay response parsing) stay
    expression-oriented while keeping Pydantic's error messages.
    """
    try:
        return Success(model_cls(**data))
    except ValidationError as exc:
        return Failure(exc)


def validate_payload(
    model_cls: type[TModel], payload: Mapping[str, object] | object
) -> Result[TModel, ValidationError]:
    """Validate a decoded JSON body (possibly not a dict) against ``model_cls``."""
    try:
        return Success(model_cls.model_validate(payload))
    except ValidationError as exc:
        return Failure(exc)
