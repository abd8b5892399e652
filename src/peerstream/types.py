"""Reusable type definitions shared across the package."""

from pydantic import BaseModel, ConfigDict

ProtocolId = str
"""A string naming a stream protocol, e.g. "/echo/1.0.0"."""


class StrictBaseModel(BaseModel):
    """A strict, immutable pydantic base model."""

    model_config = ConfigDict(
        extra="forbid",
        frozen=True,
        strict=True,
        validate_default=True,
    )
