"""Sync engine configuration loaded from environment variables."""

from __future__ import annotations

from pathlib import Path
from urllib.parse import urlparse

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

_LOCALHOST_HOSTS = {"localhost", "127.0.0.1", "::1"}


class Settings(BaseSettings):
    """Asset sync settings."""

    model_config = SettingsConfigDict(
        env_prefix="ASSETSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    debug: bool = False

    # Remote assets library
    api_key: str = ""
    remote_api_url: str = "https://forge-vtt.com/api"
    assets_library_prefix: str = "https://assets.forge-vtt.com/"

    # Local mirror: an HTTP file server, or a directory on disk
    local_url: str | None = None
    data_dir: Path = Path("./Data")
    world_dir: Path | None = None
    mapping_file_name: str = "forge-assets.json"

    # Transfers
    retries: int = Field(default=2, ge=0)
    chunk_size: int = Field(default=5 * 1024 * 1024, ge=1)
    request_timeout: float = Field(default=60.0, gt=0)
    max_concurrency: int = Field(default=1, ge=1)

    # Progress reporting
    progress_interval: float = Field(default=1.0, ge=0)


def validate_remote_url(url: str, allow_insecure_http: bool = False) -> str:
    """Validate a service URL and enforce HTTPS for non-localhost hosts by default."""
    normalized = url.strip().rstrip("/")
    parsed = urlparse(normalized)
    if parsed.scheme not in {"http", "https"} or not parsed.netloc:
        raise ValueError("URL must include scheme and host (e.g. https://example.com)")

    if (
        parsed.scheme == "http"
        and not allow_insecure_http
        and parsed.hostname not in _LOCALHOST_HOSTS
    ):
        raise ValueError(
            "HTTPS is required for non-localhost servers. "
            "Use --allow-insecure-http only on trusted networks."
        )

    return normalized
