"""Environment-based configuration for PawPlanner."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from PAWPLANNER_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PAWPLANNER_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8082
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # ML device
    device: Literal["cpu", "cuda", "openvino"] = "cpu"

    # Model selection
    detection_model: str = "yolos_tiny"
    accept_agpl_license: bool = False
    score_threshold: float = Field(default=0.5, ge=0.0, le=1.0)

    # ONNX Runtime threading
    intra_op_threads: int = Field(default=0, ge=0)
    inter_op_threads: int = Field(default=1, ge=1)

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    slot_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_image_pixels: int = Field(default=16_777_216, ge=1)
    max_file_size: int = Field(default=209_715_200, ge=1)

    # Model management
    models_dir: str = "./models"
    model_ttl: int = Field(default=300, ge=0)
    gpu_mem_limit: int = Field(default=2_147_483_648, ge=0)

    # Photo sessions
    max_sessions: int = Field(default=128, ge=1)
    session_ttl: int = Field(default=1800, ge=0)
    maintenance_interval: float = Field(default=60.0, gt=0)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
