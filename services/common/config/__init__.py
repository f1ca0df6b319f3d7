"""Configuration for the aku bot.

Values resolve in three layers: the service preset, the TOML config file
(sectioned, or the flat legacy keys) and environment variables.
"""

from .base import (
    BaseConfig,
    ConfigError,
    FieldDefinition,
    LoggingConfig,
    RequiredFieldError,
    ServiceConfig,
    ValidationError,
)
from .loader import (
    load_config,
    load_config_file,
    load_config_from_env,
    normalize_legacy_keys,
    resolve_config_path,
)
from .presets import (
    AkuConfig,
    AssetConfig,
    CacheConfig,
    DiscordConfig,
    HelpConfig,
    StickerConfig,
    get_service_preset,
)
from .validator import (
    canonical_intent_name,
    lenient,
    validate_command_prefix,
    validate_http_url,
    validate_intent_names,
    validate_url,
)

__all__ = [
    "AkuConfig",
    "AssetConfig",
    "BaseConfig",
    "CacheConfig",
    "ConfigError",
    "DiscordConfig",
    "FieldDefinition",
    "HelpConfig",
    "LoggingConfig",
    "RequiredFieldError",
    "ServiceConfig",
    "StickerConfig",
    "ValidationError",
    "canonical_intent_name",
    "get_service_preset",
    "lenient",
    "load_config",
    "load_config_file",
    "load_config_from_env",
    "normalize_legacy_keys",
    "resolve_config_path",
    "validate_command_prefix",
    "validate_http_url",
    "validate_intent_names",
    "validate_url",
]
