"""Environment-based configuration for EcoSnap."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from ECOSNAP_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="ECOSNAP_",
        case_sensitive=False,
        populate_by_name=True,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083

    # Service access (None = disabled)
    access_key: str | None = None

    # Visual classifier
    gemini_api_key: str | None = Field(
        default=None,
        validation_alias=AliasChoices("ECOSNAP_GEMINI_API_KEY", "GEMINI_API_KEY", "API_KEY", "gemini_api_key"),
    )
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com/v1beta"
    classifier_timeout: float = Field(default=30.0, gt=0)

    # Camera
    camera_index: int = Field(default=0, ge=0)
    camera_jpeg_quality: float = Field(default=0.9, gt=0, le=1)

    # Blocking work (camera, codecs)
    max_concurrent: int = Field(default=2, ge=1)

    # History persistence
    history_backend: Literal["file", "memory"] = "file"
    history_path: Path = Path("data/history.json")
    history_limit: int = Field(default=100, ge=1)

    # Disposal guidance (None = packaged catalog)
    disposal_data_path: Path | None = None

    # Geolocation
    location_provider: Literal["none", "static", "ip"] = "static"
    latitude: float | None = Field(default=None, ge=-90, le=90)
    longitude: float | None = Field(default=None, ge=-180, le=180)
    ip_geolocation_url: str = "http://ip-api.com/json/"

    # Input limits
    max_file_size: int = Field(default=20_971_520, ge=1)


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
