"""Environment-based configuration for TaggerX."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import numpy as np
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_PRECISION_DTYPES = {"fp16": np.float16, "fp32": np.float32}


def _default_workers() -> int:
    return os.cpu_count() or 1


class Settings(BaseSettings):
    """Application settings loaded from TAGGERX_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="TAGGERX_",
        case_sensitive=False,
        protected_namespaces=(),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082

    # Authentication (None = disabled)
    api_key: str | None = None

    # Assets
    assets_path: Path = Path("assets")
    model_repo: str | None = None
    tag_file: str = "selected_tags.csv"
    model_file: str = "model.onnx"

    # Tag list layout: header row + reserved rating classes
    tag_skip_rows: int = Field(default=5, ge=0)
    reserved_classes: int = Field(default=4, ge=0)

    # ML device and precision
    device: Literal["cpu", "cuda", "openvino"] = "cpu"
    precision: Literal["fp16", "fp32"] = "fp32"

    # Prediction
    threshold: float = Field(default=0.30, ge=0.0, le=1.0)
    image_size: int = Field(default=448, ge=1)

    # Batching
    batch_size: int = Field(default=32, ge=1)
    num_workers: int = Field(default_factory=_default_workers, ge=1)

    # Prefetch cache
    preload: bool = False
    cache_capacity: int = Field(default=512, ge=2)
    warm_fraction: float = Field(default=0.5, gt=0.0, le=1.0)
    warm_timeout: float = Field(default=120.0, gt=0.0)

    # Caption output
    output_dir: Path = Path("temp")

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    @property
    def dtype(self) -> type[np.floating]:
        """Numpy dtype matching the configured precision."""
        return _PRECISION_DTYPES[self.precision]

    @property
    def tag_path(self) -> Path:
        return self.assets_path / self.tag_file

    @property
    def model_path(self) -> Path:
        return self.assets_path / self.model_file


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
