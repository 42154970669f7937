"""Environment-based configuration for CoinCounter."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from COINCOUNTER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="COINCOUNTER_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8090

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model location: explicit file, then models_dir search, then Hugging Face
    models_dir: str = "models"
    model_path: str | None = None
    model_repo_id: str | None = None
    model_filename: str = "coin_counter.onnx"

    # Label catalog (one label per line, UTF-8)
    labels_path: str | None = "models/labels.txt"

    # Count classes enumerate 0..N-1 by default; set to 1 for 1..N
    count_start_offset: int = Field(default=0, ge=0)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Minimum seconds between accepted frames of one camera stream
    frame_interval: float = Field(default=1.0, ge=0.0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)

    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
