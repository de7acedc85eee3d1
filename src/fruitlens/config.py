"""Environment-based configuration for FruitLens."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from FRUITLENS_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="FRUITLENS_",
        case_sensitive=False,
        protected_namespaces=("settings_",),
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Primary classifier configuration; the fallback is the registry default
    model_version: int = Field(default=2, ge=1, le=2)
    model_alpha: float = Field(default=1.0, gt=0.0)
    model_url: str | None = "Xenova/mobilenet_v2_1.0_224/onnx/model.onnx"
    models_dir: str = "models"
    self_test: bool = True
    top_k: int = Field(default=10, ge=1)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency (None = wait for a free slot indefinitely)
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float | None = Field(default=None, gt=0.0)

    # Camera
    camera_index: int = Field(default=0, ge=0)
    camera_width: int = Field(default=640, ge=1)
    camera_height: int = Field(default=480, ge=1)
    camera_facing: Literal["environment", "user"] = "environment"

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=20_971_520, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
