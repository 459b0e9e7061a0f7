"""Configuration for the worker host.

Configuration is loaded from:
- environment variables
- and a local `.env` file (if present)

Workflows carry their own namespace and task queue in their deployment metadata;
this module only holds process-wide settings.
"""

from __future__ import annotations

from pathlib import Path

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class WorkerSettings(BaseSettings):
    """Settings for the worker host process.

    Notes:
        Pydantic-settings supports overriding the env file in tests via:
        `WorkerSettings(_env_file=path_to_env)`.
    """

    temporal_address: str = Field(
        default="localhost:7233",
        validation_alias="TEMPORAL_ADDRESS",
        description="Temporal frontend address (host:port)",
    )

    webhook_host: str = Field(default="0.0.0.0", validation_alias="WEBHOOK_HOST")
    webhook_port: int = Field(default=3000, validation_alias="WEBHOOK_PORT", ge=0, le=65535)

    max_concurrent_activities: int = Field(
        default=100,
        validation_alias="WORKER_MAX_CONCURRENT_ACTIVITIES",
        description="Maximum concurrent activity tasks per worker",
        ge=1,
    )
    max_concurrent_workflows: int = Field(
        default=100,
        validation_alias="WORKER_MAX_CONCURRENT_WORKFLOWS",
        description="Maximum concurrent workflow tasks per worker",
        ge=1,
    )

    sync_interval_seconds: float = Field(
        default=30.0,
        validation_alias="WORKER_SYNC_INTERVAL_SECONDS",
        description="Interval (seconds) between artifact store sync cycles",
        gt=0,
    )
    workflows_dir: Path = Field(
        default=Path(".workflows"),
        validation_alias="WORKER_WORKFLOWS_DIR",
        description="Local cache directory for extracted workflow bundles",
    )

    artifact_store_endpoint: str = Field(
        default="http://localhost:9000",
        validation_alias="ARTIFACT_STORE_ENDPOINT",
        description="S3-compatible endpoint URL (MinIO, S3, ...)",
    )
    artifact_store_access_key: str = Field(
        default="minioadmin", validation_alias="ARTIFACT_STORE_ACCESS_KEY"
    )
    artifact_store_secret_key: str = Field(
        default="minioadmin", validation_alias="ARTIFACT_STORE_SECRET_KEY"
    )
    artifact_store_bucket: str = Field(default="workflows", validation_alias="ARTIFACT_STORE_BUCKET")
    artifact_store_region: str = Field(default="us-east-1", validation_alias="ARTIFACT_STORE_REGION")

    log_level: str = Field(
        default="INFO",
        validation_alias="LOG_LEVEL",
        description="Root logging level",
    )

    model_config = SettingsConfigDict(
        env_prefix="",
        env_file=".env",
        extra="ignore",
    )

    @model_validator(mode="after")
    def _require_bucket(self) -> WorkerSettings:
        if not self.artifact_store_bucket.strip():
            raise ValueError("ARTIFACT_STORE_BUCKET must not be empty")
        return self
