"""Pydantic request/response schemas for the CoinCounter API."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CoinCount(BaseModel):
    """Predicted number of coins for one denomination."""

    label: str
    count: int = Field(ge=1)
    value: int = Field(ge=0, description="Monetary value of a single coin")
    subtotal: int = Field(ge=0)


class PredictionResponse(BaseModel):
    """Decoded prediction: display lines and the total value."""

    lines: list[str]
    total: int = Field(ge=0, description="Total monetary value in yen")
    text: str = Field(description="Lines joined with newlines")
    counts: list[CoinCount]


class ClassificationPayload(BaseModel):
    """A single-label classification reported by an external engine."""

    kind: Literal["classification"] = "classification"
    identifier: str
    confidence: float = Field(ge=0.0, le=1.0)


class TensorPayload(BaseModel):
    """A raw numeric output array with its shape metadata."""

    kind: Literal["tensor"] = "tensor"
    shape: list[int] = Field(min_length=1)
    values: list[float]

    @model_validator(mode="after")
    def _check_size(self) -> TensorPayload:
        expected = 1
        for dim in self.shape:
            if dim < 0:
                raise ValueError("shape dimensions must be non-negative")
            expected *= dim
        if expected != len(self.values):
            raise ValueError(f"shape {self.shape} needs {expected} values, got {len(self.values)}")
        return self


class DecodeRequest(BaseModel):
    """Request body for decoding a client-supplied model output."""

    output: ClassificationPayload | TensorPayload = Field(discriminator="kind")


class HealthResponse(BaseModel):
    """Health check response."""

    model_config = ConfigDict(protected_namespaces=())

    status: str = "ok"
    gpu: bool
    model_ready: bool
    load_error: str | None = None
    models_loaded: list[str]
    concurrent_requests: int
    queue_depth: int


class LabelsResponse(BaseModel):
    """The loaded label catalog and the denomination value table."""

    labels: list[str]
    values: dict[str, int]
    count_start_offset: int


class ErrorResponse(BaseModel):
    """Standard error response."""

    detail: str
