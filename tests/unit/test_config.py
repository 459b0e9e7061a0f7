"""Unit tests for worker settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError

from temporal_generic_worker.runtime.config import WorkerSettings

_ENV_VARS = [
    "TEMPORAL_ADDRESS",
    "WEBHOOK_HOST",
    "WEBHOOK_PORT",
    "WORKER_MAX_CONCURRENT_ACTIVITIES",
    "WORKER_MAX_CONCURRENT_WORKFLOWS",
    "WORKER_SYNC_INTERVAL_SECONDS",
    "WORKER_WORKFLOWS_DIR",
    "ARTIFACT_STORE_ENDPOINT",
    "ARTIFACT_STORE_ACCESS_KEY",
    "ARTIFACT_STORE_SECRET_KEY",
    "ARTIFACT_STORE_BUCKET",
    "ARTIFACT_STORE_REGION",
    "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def _clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)


def test_settings_defaults() -> None:
    settings = WorkerSettings()

    assert settings.temporal_address == "localhost:7233"
    assert settings.webhook_host == "0.0.0.0"
    assert settings.webhook_port == 3000
    assert settings.max_concurrent_activities == 100
    assert settings.max_concurrent_workflows == 100
    assert settings.sync_interval_seconds == 30.0
    assert settings.workflows_dir == Path(".workflows")
    assert settings.artifact_store_bucket == "workflows"
    assert settings.log_level == "INFO"


def test_settings_loads_from_dotenv(tmp_path: Path) -> None:
    (tmp_path / ".env").write_text(
        "\n".join(
            [
                "TEMPORAL_ADDRESS=temporal:7233",
                "WEBHOOK_PORT=8080",
                "WORKER_SYNC_INTERVAL_SECONDS=5",
                "ARTIFACT_STORE_BUCKET=deployments",
                "LOG_LEVEL=DEBUG",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = WorkerSettings()

    assert settings.temporal_address == "temporal:7233"
    assert settings.webhook_port == 8080
    assert settings.sync_interval_seconds == 5.0
    assert settings.artifact_store_bucket == "deployments"
    assert settings.log_level == "DEBUG"


def test_environment_overrides_dotenv(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (tmp_path / ".env").write_text("WORKER_MAX_CONCURRENT_ACTIVITIES=10\n", encoding="utf-8")
    monkeypatch.setenv("WORKER_MAX_CONCURRENT_ACTIVITIES", "20")

    assert WorkerSettings().max_concurrent_activities == 20


def test_blank_bucket_is_rejected(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("ARTIFACT_STORE_BUCKET", "  ")

    with pytest.raises(ValidationError):
        WorkerSettings()


@pytest.mark.parametrize(
    "name,value",
    [
        ("WORKER_MAX_CONCURRENT_WORKFLOWS", "0"),
        ("WORKER_SYNC_INTERVAL_SECONDS", "0"),
        ("WEBHOOK_PORT", "70000"),
    ],
)
def test_out_of_range_values_are_rejected(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)

    with pytest.raises(ValidationError):
        WorkerSettings()
