"""Field validators for aku configuration sections."""

from __future__ import annotations

import re
from collections.abc import Callable
from typing import Any

import discord

from services.common.structured_logging import get_logger

logger = get_logger(__name__)

_HTTP_URL = re.compile(
    r"^https?://"
    r"(?:localhost"
    r"|\d{1,3}(?:\.\d{1,3}){3}"
    r"|[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?(?:\.[A-Z0-9](?:[A-Z0-9-]{0,61}[A-Z0-9])?)*)"
    r"(?::\d{1,5})?"
    r"(?:/\S*)?$",
    re.IGNORECASE,
)

# Alternate spellings accepted in the intents list
INTENT_ALIASES = {
    "guild_voice_states": "voice_states",
    "reactions": "guild_reactions",
    "messages": "guild_messages",
}


def validate_url(url: str) -> bool:
    """Whether ``url`` is an absolute http(s) URL with a host."""
    return bool(url) and bool(_HTTP_URL.match(url))


def validate_command_prefix(prefix: str) -> bool:
    """Prefixes must be a single word; commands are split on the first space."""
    return bool(prefix) and not any(char.isspace() for char in prefix)


def canonical_intent_name(name: str) -> str:
    return INTENT_ALIASES.get(name, name)


def validate_intent_names(names: list[Any]) -> bool:
    """Every entry names a flag of ``discord.Intents`` (aliases allowed)."""
    valid = discord.Intents.VALID_FLAGS
    return all(
        isinstance(name, str) and canonical_intent_name(name) in valid for name in names
    )


def lenient(validator_func: Callable[[Any], bool]) -> Callable[[Any], bool]:
    """Wrap a validator so that a crash counts as a failed check and is logged."""

    def validator(value: Any) -> bool:
        try:
            return validator_func(value)
        except Exception as exc:
            logger.warning(
                "config.validator_error",
                validator=validator_func.__name__,
                value=value,
                error=str(exc),
            )
            return False

    return validator


validate_http_url = lenient(validate_url)
