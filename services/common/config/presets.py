"""Service-specific configuration presets for aku services."""

from __future__ import annotations

from pathlib import Path
from typing import Any

from .base import BaseConfig, FieldDefinition, LoggingConfig, ServiceConfig
from .validator import (
    lenient,
    validate_command_prefix,
    validate_http_url,
    validate_intent_names,
)


class DiscordConfig(BaseConfig):
    """Discord gateway configuration."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="token",
                field_type=str,
                required=True,
                description="Bot token",
                env_var="DISCORD_TOKEN",
                secret=True,
            ),
            FieldDefinition(
                name="command_prefix",
                field_type=str,
                default="!aku",
                description="Prefix shared by every chat command",
                env_var="AKU_COMMAND_PREFIX",
                validator=validate_command_prefix,
            ),
            FieldDefinition(
                name="intents",
                field_type=list,
                default=[
                    "guilds",
                    "members",
                    "voice_states",
                    "guild_messages",
                    "guild_reactions",
                    "message_content",
                ],
                description="Gateway intents to request",
                env_var="DISCORD_INTENTS",
                validator=lenient(validate_intent_names),
            ),
            FieldDefinition(
                name="member_fetch_limit",
                field_type=int,
                default=1000,
                description="Members fetched per guild when rebuilding voice presence",
                env_var="AKU_MEMBER_FETCH_LIMIT",
                min_value=1,
                max_value=100000,
            ),
            FieldDefinition(
                name="voice_connect_timeout",
                field_type=float,
                default=30.0,
                description="Seconds to wait for a voice connection handshake",
                env_var="AKU_VOICE_CONNECT_TIMEOUT",
                min_value=1.0,
                max_value=120.0,
            ),
        ]


class AssetConfig(BaseConfig):
    """Locations of the audio and sticker asset trees."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="audio_path",
                field_type=str,
                default="/var/go-aku/audio",
                description="Root directory of audio categories",
                env_var="AKU_AUDIO_PATH",
            ),
            FieldDefinition(
                name="sticker_path",
                field_type=str,
                default="/var/go-aku/stickers",
                description="Root directory of sticker packs",
                env_var="AKU_STICKER_PATH",
            ),
            FieldDefinition(
                name="entry_category",
                field_type=str,
                default="entries",
                description="Audio category holding per-user entry sounds",
                env_var="AKU_ENTRY_CATEGORY",
            ),
            FieldDefinition(
                name="watch",
                field_type=bool,
                default=True,
                description="Rescan asset trees when files change",
                env_var="AKU_WATCH_ASSETS",
            ),
        ]


class CacheConfig(BaseConfig):
    """Ephemeral cache directories."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="sound_cache_path",
                field_type=str,
                default="/tmp/aku",
                description="Directory holding encoded sounds",
                env_var="AKU_SOUND_CACHE_PATH",
            ),
            FieldDefinition(
                name="sticker_cache_path",
                field_type=str,
                default="/tmp/akus",
                description="Directory holding rendered sticker pages",
                env_var="AKU_STICKER_CACHE_PATH",
            ),
            FieldDefinition(
                name="ffmpeg_path",
                field_type=str,
                default="ffmpeg",
                description="ffmpeg executable used to encode sounds",
                env_var="AKU_FFMPEG_PATH",
            ),
        ]


def _optional_http_url(value: str) -> bool:
    return value == "" or validate_http_url(value)


class StickerConfig(BaseConfig):
    """Sticker pages and the static server that hosts them."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="enabled",
                field_type=bool,
                default=True,
                description="Serve sticker commands and sticker pages",
                env_var="AKU_STICKERS_ENABLED",
            ),
            FieldDefinition(
                name="base_url",
                field_type=str,
                default="",
                description="Public URL prefix of the sticker page server",
                env_var="AKU_BASE_URL",
                validator=_optional_http_url,
            ),
            FieldDefinition(
                name="font_path",
                field_type=str,
                default="./iosevka-aile-bold.ttf",
                description="TrueType font used for sticker labels",
                env_var="AKU_STICKER_FONT",
            ),
        ]


class HelpConfig(BaseConfig):
    """Help browser configuration."""

    @classmethod
    def get_field_definitions(cls) -> list[FieldDefinition]:
        return [
            FieldDefinition(
                name="max_sessions",
                field_type=int,
                default=1000,
                description="Help messages kept navigable (0 = unbounded)",
                env_var="AKU_HELP_MAX_SESSIONS",
                min_value=0,
            ),
        ]


class AkuConfig:
    """Top-level configuration of the aku bot."""

    def __init__(self, **kwargs: Any) -> None:
        self.discord = DiscordConfig(**kwargs.get("discord", {}))
        self.assets = AssetConfig(**kwargs.get("assets", {}))
        self.cache = CacheConfig(**kwargs.get("cache", {}))
        self.stickers = StickerConfig(**kwargs.get("stickers", {}))
        self.help = HelpConfig(**kwargs.get("help", {}))
        self.logging = LoggingConfig(**kwargs.get("logging", {}))
        self.service = ServiceConfig(**kwargs.get("service", {}))

    @property
    def audio_path(self) -> Path:
        return Path(self.assets.audio_path)

    @property
    def sticker_path(self) -> Path:
        return Path(self.assets.sticker_path)

    @property
    def sound_cache_path(self) -> Path:
        return Path(self.cache.sound_cache_path)

    @property
    def sticker_cache_path(self) -> Path:
        return Path(self.cache.sticker_cache_path)


def get_service_preset(service_name: str) -> dict[str, Any]:
    """Get configuration preset for a service.

    Args:
        service_name: Name of the service

    Returns:
        Configuration preset dictionary
    """
    presets = {
        "aku": {
            "logging": {"level": "INFO", "json_logs": False, "service_name": "aku"},
            "service": {"port": 8080, "host": "0.0.0.0"},
            "assets": {"entry_category": "entries", "watch": True},
            "help": {"max_sessions": 1000},
        },
    }

    if service_name not in presets:
        raise ValueError(f"Unknown service: {service_name}")
    return presets[service_name]
