"""Prediction error types.

Engine-level failures (onnxruntime exceptions) are not wrapped here; they
propagate to the caller unchanged.
"""

from __future__ import annotations


class PredictionError(RuntimeError):
    """Base class for prediction failures raised by the classifier.

    Callers that only need to tell prediction failures from engine errors
    catch this; the HTTP layer maps it to 422 unless a subclass says otherwise.
    """


class ModelUnavailableError(PredictionError):
    """The classifier failed to initialize; no inference is attempted."""


class PredictionUnavailableError(PredictionError):
    """Inference succeeded but produced no interpretable output."""
