"""Test fixtures for common service tests."""

import logging
from collections.abc import Generator

import pytest
import structlog

# Every environment variable the aku configuration reads
CONFIG_ENV_VARS = (
    "AKU_CONFIG",
    "DISCORD_TOKEN",
    "AKU_COMMAND_PREFIX",
    "DISCORD_INTENTS",
    "AKU_MEMBER_FETCH_LIMIT",
    "AKU_VOICE_CONNECT_TIMEOUT",
    "AKU_AUDIO_PATH",
    "AKU_STICKER_PATH",
    "AKU_ENTRY_CATEGORY",
    "AKU_WATCH_ASSETS",
    "AKU_SOUND_CACHE_PATH",
    "AKU_STICKER_CACHE_PATH",
    "AKU_FFMPEG_PATH",
    "AKU_STICKERS_ENABLED",
    "AKU_BASE_URL",
    "AKU_STICKER_FONT",
    "AKU_HELP_MAX_SESSIONS",
    "LOG_LEVEL",
    "LOG_JSON",
    "LOG_FILE",
    "LOG_FULL_TRACEBACKS",
    "SERVICE_NAME",
    "SERVICE_PORT",
    "SERVICE_HOST",
)


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch) -> pytest.MonkeyPatch:
    """Remove configuration variables inherited from the host environment."""
    for name in CONFIG_ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    return monkeypatch


@pytest.fixture
def isolated_structlog() -> Generator[None, None, None]:
    """Restore structlog and root logger configuration after the test."""
    original_config = structlog.get_config()
    root = logging.getLogger()
    original_handlers = list(root.handlers)
    original_level = root.level
    yield
    for handler in root.handlers:
        if handler not in original_handlers:
            handler.close()
    root.handlers = original_handlers
    root.setLevel(original_level)
    structlog.configure(**original_config)
    structlog.contextvars.clear_contextvars()
