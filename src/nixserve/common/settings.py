"""Application configuration models for the binary cache service."""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class BinaryCacheSettings(BaseSettings):
    """Runtime settings for the binary cache HTTP server."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)
    store_dir: str = env_field("/nix/store", "NIX_STORE_DIR")
    database_url: str = env_field("/nix/var/nix/db/db.sqlite", "NIX_SERVE_DB")
    secret_key_file: Optional[Path] = env_field(None, "NIX_SECRET_KEY_FILE")
    listen: str = env_field("[::]:5000", "NIX_SERVE_LISTEN")
    chunk_size: int = env_field(64 * 1024, "NIX_SERVE_CHUNK_SIZE")
    priority: int = env_field(30, "NIX_SERVE_PRIORITY")
    metrics_enabled: bool = env_field(False, "NIX_SERVE_METRICS_ENABLED")
    metrics_token: Optional[SecretStr] = env_field(None, "NIX_SERVE_METRICS_TOKEN")
    log_level: str = env_field("INFO", "NIX_SERVE_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "NIX_SERVE_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "NIX_SERVE_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "NIX_SERVE_OTEL_SAMPLER_RATIO")

    @field_validator("store_dir", mode="after")
    @classmethod
    def _strip_store_dir(cls, value: str) -> str:
        stripped = value.rstrip("/")
        return stripped or "/"

    @field_validator("chunk_size", mode="after")
    @classmethod
    def _positive_chunk_size(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("chunk_size must be positive")
        return value

    @field_validator("database_url", mode="before")
    @classmethod
    def _normalize_database_url(cls, value):
        if value is None:
            return value
        if isinstance(value, Path):
            value = str(value)
        if isinstance(value, str) and "://" not in value:
            path = Path(value).expanduser().resolve()
            # The Nix daemon owns the database; never open it for writing.
            return f"sqlite+pysqlite:///file:{path.as_posix()}?mode=ro&uri=true"
        return value
