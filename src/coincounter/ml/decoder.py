"""Decode raw model output into counted coins and a total value.

Three output kinds are supported, chosen once from the engine's output
metadata and never from the values themselves:

    ClassificationOutput     one identifier + confidence, no counting
    FlatCountsOutput         values[i] = estimated count of label i
    CountDistributionOutput  (1, D, C) per-denomination distribution over counts

Counting modes ignore channels beyond the label catalog and never raise on
well-typed input. A decode with no positive, named denomination yields the
single line ``NO_PREDICTION_LINE`` and a total of 0.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

import numpy as np

from coincounter.ml.denominations import coin_value, is_other, normalize_label
from coincounter.ml.errors import PredictionUnavailableError

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray

NO_PREDICTION_LINE = "予測なし"


# ---------------------------------------------------------------------------
# Output variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ClassificationOutput:
    """Single-label classification: one denomination with a confidence score."""

    identifier: str
    confidence: float


@dataclass(frozen=True)
class FlatCountsOutput:
    """One count estimate per label index."""

    values: NDArray[np.float64]


@dataclass(frozen=True)
class CountDistributionOutput:
    """Probabilities over count classes, shape (1, denominations, count_classes)."""

    probabilities: NDArray[np.float64]


ModelOutput = ClassificationOutput | FlatCountsOutput | CountDistributionOutput


def output_from_tensor(array: NDArray[np.generic]) -> FlatCountsOutput | CountDistributionOutput:
    """Select the counting mode from the tensor's shape.

    Raises:
        PredictionUnavailableError: If the shape matches neither counting mode.
    """
    tensor = np.asarray(array)
    if not np.issubdtype(tensor.dtype, np.number) and tensor.dtype != np.bool_:
        raise PredictionUnavailableError(f"Non-numeric model output (dtype={tensor.dtype})")

    tensor = tensor.astype(np.float64)
    if tensor.ndim == 3 and tensor.shape[0] == 1:
        return CountDistributionOutput(probabilities=tensor)
    if tensor.ndim >= 1 and sum(1 for size in tensor.shape if size != 1) <= 1:
        return FlatCountsOutput(values=tensor.reshape(-1))
    raise PredictionUnavailableError(f"Unsupported model output shape {tensor.shape}")


# ---------------------------------------------------------------------------
# Result
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class DenominationCount:
    """Predicted number of coins for one denomination."""

    label: str
    count: int
    value: int

    @property
    def subtotal(self) -> int:
        return self.value * self.count


@dataclass(frozen=True)
class PredictionResult:
    """Display lines plus the total monetary value of one prediction."""

    lines: tuple[str, ...]
    total: int
    counts: tuple[DenominationCount, ...] = ()

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    @property
    def is_empty(self) -> bool:
        """True when no positive, named denomination was found."""
        return self.lines == (NO_PREDICTION_LINE,)


def format_total(total: int) -> str:
    return f"合計: {total}円"


def format_classification(label: str, confidence: float) -> str:
    return f"予測: {label} ({confidence:.0%})"


# ---------------------------------------------------------------------------
# Decoding
# ---------------------------------------------------------------------------


def decode(
    output: ModelOutput,
    labels: Sequence[str],
    *,
    count_start_offset: int = 0,
) -> PredictionResult:
    """Turn a model output into a PredictionResult using the label catalog."""
    if isinstance(output, ClassificationOutput):
        return _decode_classification(output, labels)
    if isinstance(output, FlatCountsOutput):
        return _summarize(labels, _round_counts(output.values))
    if isinstance(output, CountDistributionOutput):
        return _summarize(labels, _argmax_counts(output.probabilities, count_start_offset))
    raise TypeError(f"Unsupported model output: {type(output).__name__}")


def resolve_label(identifier: str, labels: Sequence[str]) -> str:
    """Return the catalog spelling of ``identifier``, or ``identifier`` unchanged."""
    wanted = normalize_label(identifier)
    for label in labels:
        if normalize_label(label) == wanted:
            return label
    return identifier


def _decode_classification(output: ClassificationOutput, labels: Sequence[str]) -> PredictionResult:
    # The value lookup goes through the fixed table, so an identifier unknown
    # to the catalog is displayed as-is and may still carry a value.
    label = resolve_label(output.identifier, labels)
    value = coin_value(label)
    return PredictionResult(
        lines=(format_classification(label, output.confidence),),
        total=value,
        counts=(DenominationCount(label=label, count=1, value=value),),
    )


def _round_counts(values: NDArray[np.float64]) -> list[int]:
    """Round half away from zero; NaN and infinities count as zero."""
    flat = np.asarray(values, dtype=np.float64).reshape(-1)
    finite = np.where(np.isfinite(flat), flat, 0.0)
    rounded = np.sign(finite) * np.floor(np.abs(finite) + 0.5)
    return [int(count) for count in rounded]


def _argmax_counts(probabilities: NDArray[np.float64], offset: int) -> list[int]:
    """Index of the most likely count class per denomination, plus ``offset``.

    np.argmax returns the first maximum, so ties go to the lower count.
    """
    tensor = np.asarray(probabilities, dtype=np.float64)
    if tensor.ndim != 3 or tensor.shape[0] != 1:
        raise PredictionUnavailableError(f"Expected shape (1, D, C), got {tensor.shape}")
    if tensor.shape[2] == 0:
        return []

    scores = np.nan_to_num(tensor[0], nan=-np.inf)
    return [int(index) + offset for index in np.argmax(scores, axis=1)]


def _summarize(labels: Sequence[str], counts: Sequence[int]) -> PredictionResult:
    lines: list[str] = []
    found: list[DenominationCount] = []
    total = 0

    # zip stops at the shorter side: channels beyond the catalog are dropped
    for label, count in zip(labels, counts, strict=False):
        if count <= 0 or is_other(label):
            continue
        value = coin_value(label)
        total += value * count
        lines.append(f"{label} {count}")
        found.append(DenominationCount(label=label, count=count, value=value))

    if not lines:
        return PredictionResult(lines=(NO_PREDICTION_LINE,), total=0)

    lines.append(format_total(total))
    return PredictionResult(lines=tuple(lines), total=total, counts=tuple(found))
