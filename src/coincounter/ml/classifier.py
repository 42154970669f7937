"""Coin classifier: runs the ONNX model on an image and decodes its output.

A classifier that failed to load stays constructed with ``is_ready`` False
and a human-readable ``load_error``; every prediction then raises
ModelUnavailableError without touching the inference engine. Exceptions
raised by the engine itself propagate unchanged.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

import numpy as np

from coincounter.ml.decoder import (
    ClassificationOutput,
    ModelOutput,
    PredictionResult,
    decode,
    output_from_tensor,
)
from coincounter.ml.errors import ModelUnavailableError, PredictionUnavailableError
from coincounter.ml.labels import load_catalog
from coincounter.ml.preprocessing import decode_image, to_model_input

if TYPE_CHECKING:
    from collections.abc import Sequence

    from numpy.typing import NDArray
    from onnxruntime import InferenceSession

    from coincounter.config import Settings
    from coincounter.ml.model_manager import ModelManager

logger = logging.getLogger(__name__)

LOAD_ERROR_PREFIX = "モデル読み込みに失敗しました"


def interpret_outputs(
    names: Sequence[str],
    values: Sequence[object],
    labels: Sequence[str] = (),
) -> ModelOutput:
    """Pick the decoding mode from the raw session outputs.

    A string output, or a probability map (sequence of dicts) with an
    optional integer label output beside it, is a classification. Integer
    labels are catalog indices. Otherwise the first numeric array is treated
    as a count tensor.

    Raises:
        PredictionUnavailableError: If no output can be interpreted.
    """
    predicted: object | None = None
    score_maps: list[dict[object, float]] = []
    tensors: list[NDArray[np.generic]] = []

    for name, value in zip(names, values, strict=False):
        if isinstance(value, list) and value and isinstance(value[0], dict):
            score_maps.append(value[0])
            continue
        array = np.asarray(value)
        if array.dtype.kind in "OUS":
            if array.size and predicted is None:
                predicted = str(array.reshape(-1)[0])
            continue
        if array.dtype.kind in "biuf":
            tensors.append(array)
        else:
            logger.debug("Ignoring output %s of dtype %s", name, array.dtype)

    if predicted is None and score_maps:
        predicted = _integer_label(tensors)
        if predicted is None:
            scores = score_maps[0]
            predicted = max(scores, key=scores.__getitem__, default=None)

    if predicted is not None:
        return ClassificationOutput(
            identifier=_identifier(predicted, labels),
            confidence=_confidence(predicted, score_maps, tensors),
        )
    if tensors:
        return output_from_tensor(tensors[0])
    raise PredictionUnavailableError("モデル出力を読み取れませんでした")


def _integer_label(tensors: list[NDArray[np.generic]]) -> int | None:
    """Pop the single-element integer label output that accompanies a score map."""
    for index, tensor in enumerate(tensors):
        if tensor.dtype.kind in "iu" and tensor.size == 1:
            del tensors[index]
            return int(tensor.reshape(-1)[0])
    return None


def _identifier(predicted: object, labels: Sequence[str]) -> str:
    if isinstance(predicted, int | np.integer):
        index = int(predicted)
        return labels[index] if 0 <= index < len(labels) else str(index)
    return str(predicted)


def _confidence(
    predicted: object,
    score_maps: list[dict[object, float]],
    tensors: list[NDArray[np.generic]],
) -> float:
    for scores in score_maps:
        for key, score in scores.items():
            if key == predicted or str(key) == str(predicted):
                return min(max(float(score), 0.0), 1.0)
    for tensor in tensors:
        # Raw logits are not a confidence; only probability vectors qualify.
        if tensor.size and np.all((tensor >= 0) & (tensor <= 1)):
            return float(np.max(tensor))
    # No usable score output: the engine asserted the label outright.
    return 1.0


class CoinClassifier:
    """Counts coins in an image with an ONNX model and the label catalog."""

    def __init__(self, settings: Settings, model_manager: ModelManager) -> None:
        self._settings = settings
        self._model_manager = model_manager
        self._labels = load_catalog(settings.labels_path)
        self._session: InferenceSession | None = None
        self._load_error: str | None = None

        try:
            self._session = model_manager.get_session()
        except Exception as exc:  # noqa: BLE001
            self._load_error = f"{LOAD_ERROR_PREFIX}: {exc}"
            logger.error("Coin model unavailable: %s", exc)
        else:
            logger.info("Coin classifier ready with %d labels", len(self._labels))

    # -- Status -------------------------------------------------------------

    @property
    def labels(self) -> tuple[str, ...]:
        return self._labels

    @property
    def is_ready(self) -> bool:
        return self._session is not None

    @property
    def load_error(self) -> str | None:
        """Message explaining why prediction is disabled, or None when ready."""
        return self._load_error

    @property
    def model_name(self) -> str | None:
        loaded = self._model_manager.get_loaded_models()
        return loaded[0] if loaded else None

    # -- Prediction ---------------------------------------------------------

    def predict(self, image: NDArray[np.uint8]) -> PredictionResult:
        """Run the model on an HxWx3 RGB image and decode the result.

        Raises:
            ModelUnavailableError: If the model failed to load.
            PredictionUnavailableError: If the model output cannot be interpreted.
        """
        session = self._require_session()
        model_input = session.get_inputs()[0]
        tensor = to_model_input(image, model_input.shape, model_input.type)

        output_names = [output.name for output in session.get_outputs()]
        values = session.run(output_names, {model_input.name: tensor})

        output = interpret_outputs(output_names, values, self._labels)
        return self.decode(output)

    def predict_bytes(self, image_bytes: bytes) -> PredictionResult:
        """Decode an encoded image and predict on it.

        Raises:
            ValueError: If the image cannot be decoded.
        """
        self._require_session()
        image = decode_image(image_bytes, self._settings.max_image_pixels)
        return self.predict(image)

    def decode(self, output: ModelOutput) -> PredictionResult:
        """Decode an already-interpreted model output against this catalog."""
        return decode(output, self._labels, count_start_offset=self._settings.count_start_offset)

    def _require_session(self) -> InferenceSession:
        if self._session is None:
            raise ModelUnavailableError(self._load_error or LOAD_ERROR_PREFIX)
        return self._session
