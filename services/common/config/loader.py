"""Config file and environment loading utilities for configuration system."""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, TypeVar

from services.common.structured_logging import get_logger

from .base import ConfigError
from .presets import AkuConfig, get_service_preset


T = TypeVar("T")

logger = get_logger(__name__)

DEFAULT_CONFIG_PATH = "config.toml"
CONFIG_PATH_ENV_VAR = "AKU_CONFIG"

# Flat keys of the single-table config file format, mapped to their sections
LEGACY_KEYS: dict[str, tuple[str, str]] = {
    "Token": ("discord", "token"),
    "BaseURL": ("stickers", "base_url"),
    "Port": ("service", "port"),
}


def _deep_merge_dict(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Deep merge two dictionaries, preserving nested structures.

    Args:
        base: Base dictionary (will be modified in-place)
        override: Override dictionary (values take precedence)

    Returns:
        Merged dictionary (same reference as base)
    """
    for key, value in override.items():
        if key in base and isinstance(base[key], dict) and isinstance(value, dict):
            _deep_merge_dict(base[key], value)
        else:
            base[key] = value
    return base


def normalize_legacy_keys(values: dict[str, Any]) -> dict[str, Any]:
    """Move flat ``Token`` / ``BaseURL`` / ``Port`` keys into their sections.

    Values already present in a section win over the flat key.
    """
    normalized = {key: value for key, value in values.items() if key not in LEGACY_KEYS}
    for key, (section, field_name) in LEGACY_KEYS.items():
        if key not in values:
            continue
        target = normalized.setdefault(section, {})
        if not isinstance(target, dict):
            raise ConfigError(f"Config section [{section}] must be a table")
        target.setdefault(field_name, values[key])
    return normalized


def resolve_config_path(path: str | Path | None = None) -> Path:
    """Pick the config file: explicit argument, then ``AKU_CONFIG``, then default."""
    if path is not None:
        return Path(path)
    return Path(os.getenv(CONFIG_PATH_ENV_VAR, DEFAULT_CONFIG_PATH))


def load_config_file(path: str | Path) -> dict[str, Any]:
    """Read a TOML config file.

    Raises:
        ConfigError: If the file is missing, unreadable or not valid TOML
    """
    config_path = Path(path)
    try:
        with config_path.open("rb") as handle:
            return tomllib.load(handle)
    except FileNotFoundError as exc:
        raise ConfigError(f"Cannot find config file {config_path}") from exc
    except OSError as exc:
        raise ConfigError(f"Cannot read config file {config_path}: {exc}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise ConfigError(f"Invalid TOML in {config_path}: {exc}") from exc


def load_config_from_env(config_class: type[T], **overrides: Any) -> T:
    """Instantiate a configuration class, logging the failure if it is invalid.

    Args:
        config_class: Configuration class to instantiate
        **overrides: Values for the configuration (environment wins over these)

    Returns:
        Configured instance
    """
    try:
        return config_class(**overrides)
    except Exception as exc:
        logger.error(
            "config.load_failed", config_class=config_class.__name__, error=str(exc)
        )
        raise


def load_config(path: str | Path | None = None) -> AkuConfig:
    """Load the aku configuration: preset, then the TOML file, then environment.

    Raises:
        ConfigError: If the file cannot be read or a value is missing or invalid
    """
    config_path = resolve_config_path(path)
    values = get_service_preset("aku")
    _deep_merge_dict(values, normalize_legacy_keys(load_config_file(config_path)))
    config = load_config_from_env(AkuConfig, **values)
    logger.debug("config.loaded", path=str(config_path))
    return config
