"""Application configuration models and loader utilities."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, cast

from dotenv import dotenv_values
from pydantic import BaseModel, Field


def _default_config_dir() -> Path:
    """Resolve the XDG configuration directory, falling back to ``~/.config``."""
    xdg = os.environ.get("XDG_CONFIG_HOME")
    if xdg:
        return Path(xdg)
    home = os.environ.get("HOME")
    if home:
        return Path(home) / ".config"
    return Path(".")


class JmapSettings(BaseModel):
    """Settings controlling JMAP connectivity."""

    session_url: str = Field(
        default="https://api.fastmail.com/jmap/session",
        description="JMAP session discovery endpoint",
    )
    username: str | None = Field(default=None, description="Account username")
    api_token: str | None = Field(default=None, description="Bearer API token")
    timeout_seconds: float = Field(
        default=30.0, gt=0, description="Ceiling applied to every outbound call"
    )


class CalDavSettings(BaseModel):
    """Settings for the calendar storage endpoint."""

    base_url: str = Field(
        default="https://caldav.fastmail.com/dav/calendars/user",
        description="Base URL for per-user calendar collections",
    )
    enabled: bool = Field(
        default=True, description="Automatically add and remove invitations"
    )


class SplitsSettings(BaseModel):
    """Settings for split inbox rule storage."""

    config_path: Path = Field(
        default_factory=lambda: _default_config_dir() / "splitmail" / "splits.json",
        description="JSON document holding split inbox rules",
    )
    override: str | None = Field(
        default=None,
        description="JSON document that replaces the on-disk rules wholesale",
    )


class LoggingSettings(BaseModel):
    """Logging preferences."""

    level: str = Field(default="INFO", description="Root logging level")
    structured: bool = Field(
        default=False, description="Toggle JSON structured logging"
    )


class AppSettings(BaseModel):
    """Aggregated application configuration."""

    jmap: JmapSettings = Field(default_factory=JmapSettings)
    caldav: CalDavSettings = Field(default_factory=CalDavSettings)
    splits: SplitsSettings = Field(default_factory=SplitsSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


ENV_PREFIX = "SPLITMAIL_"

# Flat variables that map onto a nested settings path.
_ALIASES: dict[str, list[str]] = {
    "SPLITMAIL_SPLITS": ["splits", "override"],
    "FASTMAIL_USERNAME": ["jmap", "username"],
    "FASTMAIL_API_TOKEN": ["jmap", "api_token"],
}


def _normalize_key(raw_key: str) -> list[str]:
    """Convert an environment variable key into a nested attribute path."""
    if raw_key in _ALIASES:
        return list(_ALIASES[raw_key])
    trimmed = raw_key.removeprefix(ENV_PREFIX)
    return [segment.lower() for segment in trimmed.split("__") if segment]


def _is_config_key(key: str | None) -> bool:
    return bool(key) and (key.startswith(ENV_PREFIX) or key in _ALIASES)


def _merge_into_tree(tree: dict[str, Any], path: list[str], value: Any) -> None:
    """Assign a value to a nested dictionary given a path."""
    cursor = tree
    for segment in path[:-1]:
        next_node = cursor.setdefault(segment, {})
        cursor = cast(dict[str, Any], next_node)
    cursor[path[-1]] = value


def _collect_env_values(
    env_file: Path | str | None, include_environment: bool = True
) -> dict[str, Any]:
    """Load configuration values from environment variables and optional file."""
    collected: dict[str, Any] = {}

    file_values = {}
    if env_file:
        env_path = Path(env_file)
        if env_path.is_file():
            file_values = {
                key: value
                for key, value in dotenv_values(env_path).items()
                if _is_config_key(key)
            }

    env_values: dict[str, str] = {}
    if include_environment:
        env_values = {
            key: value for key, value in os.environ.items() if _is_config_key(key)
        }

    combined: dict[str, Any] = {**file_values, **env_values}

    for key, value in combined.items():
        path = _normalize_key(key)
        if len(path) < 2:
            continue
        normalized_value: Any = value
        if isinstance(value, str) and value == "":
            normalized_value = None
        elif isinstance(value, str):
            lowercase_value = value.lower()
            if lowercase_value == "true":
                normalized_value = True
            elif lowercase_value == "false":
                normalized_value = False
        _merge_into_tree(collected, path, normalized_value)

    return collected


@lru_cache(maxsize=1)
def load_app_settings(
    env_file: Path | str | None = None,
    include_environment: bool = True,
    **overrides: Any,
) -> AppSettings:
    """Load application settings, applying env files and overrides."""
    collected = _collect_env_values(env_file, include_environment)
    if overrides:
        collected.update(overrides)
    return AppSettings.model_validate(collected)


__all__ = [
    "AppSettings",
    "CalDavSettings",
    "JmapSettings",
    "LoggingSettings",
    "SplitsSettings",
    "load_app_settings",
]
