"""Unit tests for producer settings loading."""

from __future__ import annotations

from pathlib import Path

import pytest
from pydantic import ValidationError as SettingsValidationError

from taskplan.config import ProducerSettings
from taskplan.errors import TransportError

_ENV_VARS = ("TASKPLAN_OPERATOR_URL", "TASKPLAN_CONNECT_TIMEOUT", "LOG_LEVEL")


@pytest.fixture
def clean_env(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    return tmp_path


def test_settings_defaults(clean_env: Path) -> None:
    settings = ProducerSettings()

    assert settings.operator_url is None
    assert settings.connect_timeout_seconds == 10.0
    assert settings.log_level == "INFO"


def test_settings_loads_from_dotenv(clean_env: Path) -> None:
    (clean_env / ".env").write_text(
        "\n".join(
            [
                "TASKPLAN_OPERATOR_URL=wss://operator.test/tasks",
                "TASKPLAN_CONNECT_TIMEOUT=2.5",
                "LOG_LEVEL=DEBUG",
                "",
            ]
        ),
        encoding="utf-8",
    )

    settings = ProducerSettings()

    assert settings.operator_url == "wss://operator.test/tasks"
    assert settings.connect_timeout_seconds == 2.5
    assert settings.log_level == "DEBUG"


def test_environment_overrides_dotenv(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    (clean_env / ".env").write_text("TASKPLAN_OPERATOR_URL=ws://from-file\n", encoding="utf-8")
    monkeypatch.setenv("TASKPLAN_OPERATOR_URL", "ws://from-env")

    assert ProducerSettings().operator_url == "ws://from-env"


def test_timeout_must_be_positive(clean_env: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TASKPLAN_CONNECT_TIMEOUT", "0")

    with pytest.raises(SettingsValidationError):
        ProducerSettings()


def test_resolve_url_prefers_explicit_argument(clean_env: Path) -> None:
    settings = ProducerSettings(operator_url="ws://configured")

    assert settings.resolve_url() == "ws://configured"
    assert settings.resolve_url("local://") == "local://"


def test_resolve_url_without_any_url_fails(clean_env: Path) -> None:
    with pytest.raises(TransportError, match="TASKPLAN_OPERATOR_URL"):
        ProducerSettings().resolve_url()
