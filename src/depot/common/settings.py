"""Application configuration models shared by services."""

from __future__ import annotations

from pathlib import Path
from typing import Annotated, Optional
from urllib.parse import urlparse

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


def env_field(default, env_name: str):
    return Field(default, validation_alias=env_name)


class MirrorSettings(BaseSettings):
    """Configuration for the pull-through artifact mirror."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", populate_by_name=True)

    upstreams: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        validation_alias="DEPOT_UPSTREAMS",
        validate_default=True,
    )
    cache_dir: Path = Field(Path("./cache"), validation_alias="DEPOT_CACHE_DIR", validate_default=True)
    host: str = env_field("0.0.0.0", "DEPOT_HOST")
    port: int = env_field(8081, "DEPOT_PORT")
    upstream_timeout_seconds: float = env_field(30.0, "DEPOT_UPSTREAM_TIMEOUT")
    metrics_token: Optional[SecretStr] = env_field(None, "DEPOT_METRICS_TOKEN")
    log_level: str = env_field("INFO", "DEPOT_LOG_LEVEL")
    otel_exporter_endpoint: Optional[str] = env_field(None, "DEPOT_OTEL_EXPORTER_ENDPOINT")
    otel_exporter_headers: Optional[str] = env_field(None, "DEPOT_OTEL_EXPORTER_HEADERS")
    otel_sampler_ratio: float = env_field(0.1, "DEPOT_OTEL_SAMPLER_RATIO")

    @field_validator("upstreams", mode="before")
    @classmethod
    def _split_upstreams(cls, value):
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("upstreams")
    @classmethod
    def _require_upstreams(cls, value: list[str]) -> list[str]:
        if not value:
            raise ValueError("No upstream repositories configured")
        for url in value:
            parsed = urlparse(url)
            if parsed.scheme not in {"http", "https"} or not parsed.netloc:
                raise ValueError(f"Upstream must be an http(s) URL: {url}")
        return value

    @field_validator("cache_dir", mode="after")
    @classmethod
    def _absolute_cache_dir(cls, value: Path) -> Path:
        return value.expanduser().resolve()
