"""Tests for configuration loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from splitmail.core.config import load_app_settings


@pytest.fixture(autouse=True)
def clear_settings_cache() -> None:
    """Ensure each test sees a fresh settings instance."""

    load_app_settings.cache_clear()


def test_defaults_loaded_without_env_file() -> None:
    """Default values should be returned when no overrides are present."""

    settings = load_app_settings(include_environment=False)
    assert settings.jmap.session_url == "https://api.fastmail.com/jmap/session"
    assert settings.jmap.api_token is None
    assert settings.jmap.timeout_seconds == 30.0
    assert settings.caldav.enabled is True
    assert settings.splits.config_path.name == "splits.json"
    assert settings.splits.override is None


def test_env_file_overrides(tmp_path: Path) -> None:
    """Values defined in an env file should override defaults."""

    env_file = tmp_path / "test.env"
    env_file.write_text(
        "SPLITMAIL_JMAP__SESSION_URL=https://jmap.example.com/session\n"
        "SPLITMAIL_CALDAV__ENABLED=false\n"
        "SPLITMAIL_JMAP__TIMEOUT_SECONDS=5\n",
        encoding="utf-8",
    )

    settings = load_app_settings(env_file=env_file, include_environment=False)
    assert settings.jmap.session_url == "https://jmap.example.com/session"
    assert settings.caldav.enabled is False
    assert settings.jmap.timeout_seconds == 5.0


def test_flat_aliases_map_to_nested_settings(tmp_path: Path) -> None:
    """Provider credentials and the splits override use flat variable names."""

    env_file = tmp_path / "test.env"
    env_file.write_text(
        "FASTMAIL_USERNAME=me@example.com\n"
        "FASTMAIL_API_TOKEN=secret\n"
        "SPLITMAIL_SPLITS='{\"splits\": []}'\n"
        "UNRELATED_VARIABLE=ignored\n",
        encoding="utf-8",
    )

    settings = load_app_settings(env_file=env_file, include_environment=False)
    assert settings.jmap.username == "me@example.com"
    assert settings.jmap.api_token == "secret"
    assert settings.splits.override == '{"splits": []}'


def test_environment_wins_over_env_file(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    env_file = tmp_path / "test.env"
    env_file.write_text("SPLITMAIL_LOGGING__LEVEL=DEBUG\n", encoding="utf-8")
    monkeypatch.setenv("SPLITMAIL_LOGGING__LEVEL", "WARNING")

    settings = load_app_settings(env_file=env_file)
    assert settings.logging.level == "WARNING"


def test_config_dir_follows_xdg(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> None:
    monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))

    settings = load_app_settings(include_environment=False)
    assert settings.splits.config_path == tmp_path / "splitmail" / "splits.json"
