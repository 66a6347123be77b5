"""Configuration management for the query engine."""

from __future__ import annotations

from functools import lru_cache
from typing import Literal

from pydantic import BaseModel, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class StorageConfig(BaseModel):
    """Storage configuration."""

    auto_id_start: int = Field(
        default=1, ge=0, description="First value of the per-collection identifier counter"
    )
    btree_max_keys: int = Field(
        default=32, ge=3, le=4096, description="Maximum keys per B+Tree node before a split"
    )


class QueryConfig(BaseModel):
    """Query execution configuration."""

    use_indexes: bool = Field(default=True, description="Allow index-assisted scans")
    lock_timeout_seconds: float = Field(
        default=5.0, gt=0, description="Max time to wait for a collection latch"
    )
    max_pipeline_stages: int = Field(
        default=64, ge=1, description="Maximum number of stages in one pipeline"
    )


class ObservabilityConfig(BaseModel):
    """Observability configuration."""

    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO", description="Log level"
    )
    log_format: Literal["json", "console"] = Field(default="json", description="Log format")
    otel_endpoint: str | None = Field(
        default=None, description="OpenTelemetry collector endpoint"
    )
    otel_service_name: str = Field(default="dualdb", description="Service name for tracing")
    metrics_enabled: bool = Field(default=False, description="Expose a Prometheus endpoint")
    metrics_port: int = Field(default=8001, ge=1, le=65535, description="Prometheus metrics port")


class Config(BaseSettings):
    """Main configuration for the query engine."""

    model_config = SettingsConfigDict(
        env_prefix="DUALDB_",
        env_nested_delimiter="__",
        case_sensitive=False,
    )

    storage: StorageConfig = Field(default_factory=StorageConfig)
    query: QueryConfig = Field(default_factory=QueryConfig)
    observability: ObservabilityConfig = Field(default_factory=ObservabilityConfig)


@lru_cache
def get_config() -> Config:
    """Get the global configuration instance."""
    return Config()
