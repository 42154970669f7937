"""Model manager: locate, download, load, and cache the coin counting model.

The model file is resolved in order: an explicit ``model_path``, the first
``.ort`` or ``.onnx`` file in ``models_dir``, then a Hugging Face download.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from huggingface_hub import hf_hub_download
from onnxruntime import InferenceSession, SessionOptions
from onnxruntime.capi.onnxruntime_pybind11_state import ExecutionMode

if TYPE_CHECKING:
    from coincounter.config import Settings

logger = logging.getLogger(__name__)

# Pre-optimized ORT format first, plain ONNX second.
MODEL_SUFFIXES: tuple[str, ...] = (".ort", ".onnx")


# ---------------------------------------------------------------------------
# Protocol (kept for test mocking)
# ---------------------------------------------------------------------------


class ModelManager(Protocol):
    """Protocol for model lifecycle management."""

    def resolve_model_path(self) -> Path:
        """Return the local path of the model, downloading it if needed."""
        ...

    def get_session(self) -> InferenceSession:
        """Return the cached or newly created InferenceSession."""
        ...

    def get_loaded_models(self) -> list[str]:
        """Return names of currently loaded models."""
        ...

    def shutdown(self) -> None:
        """Release the cached session."""
        ...


# ---------------------------------------------------------------------------
# Concrete implementation
# ---------------------------------------------------------------------------


class OnnxModelManager:
    """Resolves the model file and owns a single cached InferenceSession."""

    def __init__(self, settings: Settings) -> None:
        self._settings = settings
        self._models_dir = Path(settings.models_dir)

        self._lock = threading.Lock()
        self._session: InferenceSession | None = None
        self._model_path: Path | None = None

        self._providers = self._build_providers()
        self._session_options = self._build_session_options()

    # -- Public API ---------------------------------------------------------

    def resolve_model_path(self) -> Path:
        """Find the model file locally, or download it from Hugging Face.

        Raises:
            FileNotFoundError: If no model can be found or downloaded.
        """
        if self._model_path is not None and self._model_path.exists():
            return self._model_path

        path = self._find_model()
        self._model_path = path
        return path

    def get_session(self) -> InferenceSession:
        """Return the cached InferenceSession, creating it if needed."""
        with self._lock:
            if self._session is not None:
                return self._session

        model_path = self.resolve_model_path()
        session = InferenceSession(
            str(model_path),
            sess_options=self._session_options,
            providers=self._providers,
        )

        with self._lock:
            # Another thread may have created it while we loaded.
            if self._session is not None:
                return self._session
            self._session = session
            logger.info("Loaded session for %s", model_path.name)
            return session

    def get_loaded_models(self) -> list[str]:
        """Return the name of the loaded model, if any."""
        with self._lock:
            if self._session is None or self._model_path is None:
                return []
            return [self._model_path.name]

    def shutdown(self) -> None:
        """Drop the cached session."""
        with self._lock:
            self._session = None
            logger.info("Model session cleared")

    # -- Internal -----------------------------------------------------------

    def _find_model(self) -> Path:
        settings = self._settings
        if settings.model_path is not None:
            explicit = Path(settings.model_path)
            if not explicit.is_file():
                raise FileNotFoundError(f"Model file not found: {explicit}")
            return explicit

        if self._models_dir.is_dir():
            for suffix in MODEL_SUFFIXES:
                candidates = sorted(self._models_dir.glob(f"*{suffix}"))
                if candidates:
                    logger.info("Using model %s", candidates[0])
                    return candidates[0]

        if settings.model_repo_id is not None:
            self._models_dir.mkdir(parents=True, exist_ok=True)
            downloaded = Path(
                hf_hub_download(
                    repo_id=settings.model_repo_id,
                    filename=settings.model_filename,
                    local_dir=str(self._models_dir),
                )
            )
            logger.info("Downloaded %s to %s", settings.model_filename, downloaded)
            return downloaded

        raise FileNotFoundError(f"No .ort or .onnx model found in {self._models_dir}")

    def _build_providers(self) -> list[str | tuple[str, dict[str, object]]]:
        device = self._settings.device
        if device == "cuda":
            return [
                (
                    "CUDAExecutionProvider",
                    {
                        "device_id": 0,
                        "gpu_mem_limit": self._settings.gpu_mem_limit,
                        "arena_extend_strategy": "kSameAsRequested",
                    },
                ),
                "CPUExecutionProvider",
            ]
        if device == "openvino":
            return [
                ("OpenVINOExecutionProvider", {"device_type": "CPU"}),
                "CPUExecutionProvider",
            ]
        return ["CPUExecutionProvider"]

    def _build_session_options(self) -> SessionOptions:
        opts = SessionOptions()
        opts.intra_op_num_threads = self._settings.intra_op_threads
        opts.inter_op_num_threads = self._settings.inter_op_threads
        opts.execution_mode = ExecutionMode.ORT_SEQUENTIAL

        if self._settings.device == "openvino":
            # OpenVINO does its own graph optimization
            from onnxruntime import GraphOptimizationLevel

            opts.graph_optimization_level = GraphOptimizationLevel.ORT_DISABLE_ALL
        return opts
