"""Application configuration."""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")

DEFAULT_BROWSER = ("Knight Bot", "Chrome", "10.0")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    handshake_bridge_url: str
    handshake_browser: str = ",".join(DEFAULT_BROWSER)
    host: str = "0.0.0.0"
    port: int = 3000
    storage_root: Path = Path("sessions")
    sweep_interval_seconds: float = 3600
    max_session_age_seconds: float = 7200
    download_grace_seconds: float = 5
    rate_limit_window_seconds: int = 900
    rate_limit_max_requests: int = 5
    cors_allow_origins: str = "*"
    purge_orphans_on_startup: bool = True
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )


def parse_browser(raw: str | None) -> tuple[str, str, str]:
    """Parse the client identity triple announced during linking."""
    if raw is None:
        return DEFAULT_BROWSER
    parts = [chunk.strip() for chunk in raw.split(",")]
    if len(parts) != 3 or not all(parts):
        return DEFAULT_BROWSER
    return parts[0], parts[1], parts[2]


def parse_cors_origins(raw: str | None) -> list[str]:
    """Parse allowed CORS origins from env."""
    if raw is None:
        return ["*"]
    cleaned = raw.strip()
    if cleaned in {"", "*"}:
        return ["*"]
    origins = [chunk.strip() for chunk in cleaned.split(",") if chunk.strip()]
    return origins or ["*"]
