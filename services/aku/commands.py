"""Chat command parsing."""

from __future__ import annotations

from enum import Enum

from .catalog import normalize_asset_name

DEFAULT_PREFIX = "!aku"


class Command(Enum):
    """Commands, by the suffix that follows the shared prefix."""

    PLAY = ""
    AUDIO_HELP = "h"
    STICKER = "s"
    STICKER_HELP = "sh"


def split_command(content: str) -> tuple[str, str]:
    """Split a message into its first word and the normalized rest.

    ``"!aku air horn"`` -> ``("!aku", "air_horn")``
    """
    word, _, rest = content.partition(" ")
    return word, normalize_asset_name(rest)


def parse_command(
    content: str, prefix: str = DEFAULT_PREFIX
) -> tuple[Command, str] | None:
    """Recognize one of the bot commands.

    Returns:
        ``(command, argument)``, or None if the message is not a known command
    """
    word, argument = split_command(content)
    if not word.startswith(prefix):
        return None
    try:
        return Command(word[len(prefix) :]), argument
    except ValueError:
        return None
