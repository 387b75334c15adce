"""
Shared YAML configuration loading.

Settings are pydantic models loaded from a single YAML file.
There are no defaults: missing fields fail validation at startup.
"""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import yaml

if TYPE_CHECKING:
    from collections.abc import Callable

    from pydantic import BaseModel

REDACTION_MARKER = "***REDACTED***"

_SENSITIVE_KEY_FRAGMENTS: tuple[str, ...] = ("key", "secret", "token", "password")

SettingsT = TypeVar("SettingsT", bound="BaseModel")


def get_config_path(env_var_name: str, default_filename: str) -> Path:
    """
    Resolve the configuration file path.

    Args:
        env_var_name: Environment variable that may hold an explicit path
        default_filename: File name used relative to the working directory

    Returns:
        Path to the configuration file
    """
    explicit = os.environ.get(env_var_name)
    if explicit is not None and explicit.strip() != "":
        return Path(explicit)
    return Path.cwd() / default_filename


def load_yaml_config(config_path: Path) -> dict[str, Any]:
    """Read a YAML file and require a mapping at the top level."""
    raw = yaml.safe_load(config_path.read_text())
    if not isinstance(raw, dict):
        msg = f"Invalid config file: {config_path}"
        raise ValueError(msg)
    return raw


def create_settings_loader(
    settings_model: type[SettingsT],
    path_resolver: Callable[[], Path],
) -> tuple[Callable[[], SettingsT], Callable[[], None]]:
    """
    Build a cached settings loader for a settings model.

    Returns:
        Tuple of (get_settings, clear_settings_cache)
    """

    @lru_cache(maxsize=1)
    def get_settings() -> SettingsT:
        return settings_model(**load_yaml_config(path_resolver()))

    def clear_settings_cache() -> None:
        get_settings.cache_clear()

    return get_settings, clear_settings_cache


def _is_sensitive(field_name: str) -> bool:
    lowered = field_name.lower()
    return any(fragment in lowered for fragment in _SENSITIVE_KEY_FRAGMENTS)


def _redact(value: Any, marker: str) -> Any:
    if isinstance(value, dict):
        return {
            key: marker if _is_sensitive(str(key)) and item is not None else _redact(item, marker)
            for key, item in value.items()
        }
    if isinstance(value, list):
        return [_redact(item, marker) for item in value]
    return value


def get_safe_model_config(settings: BaseModel, marker: str) -> dict[str, Any]:
    """Dump a settings model with sensitive-looking fields replaced by ``marker``."""
    result: dict[str, Any] = _redact(settings.model_dump(), marker)
    return result
