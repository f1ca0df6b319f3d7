"""Voice-presence tracking and entry-sound trigger detection."""

from __future__ import annotations

import threading
from dataclasses import dataclass

import discord

from services.common.structured_logging import get_logger

logger = get_logger(__name__, service_name="aku")


@dataclass(frozen=True, slots=True)
class VoicePresence:
    """Last known voice location of a user; ``channel_id`` None means not in voice."""

    channel_id: int | None
    guild_id: int | None

    @property
    def in_voice(self) -> bool:
        return self.channel_id is not None


NOT_IN_VOICE = VoicePresence(channel_id=None, guild_id=None)


def unique_username(user: discord.abc.User) -> str:
    return f"{user.name}#{user.discriminator}"


def presence_from_voice_state(
    state: discord.VoiceState, guild_id: int
) -> VoicePresence:
    channel = state.channel
    return VoicePresence(channel_id=channel.id if channel else None, guild_id=guild_id)


def should_play_entry(
    previous: VoicePresence, current: VoicePresence, afk_channel_id: int | None
) -> bool:
    """Whether moving from ``previous`` to ``current`` counts as arriving in voice.

    Joining from nowhere, returning from the AFK channel and switching guild all
    count; moving between channels of one guild and leaving voice do not.
    """
    if current.channel_id is None:
        return False
    return (
        previous.channel_id is None
        or (afk_channel_id is not None and previous.channel_id == afk_channel_id)
        or previous.guild_id != current.guild_id
    )


class VoicePresenceTracker:
    """Lock-guarded table of ``name#discriminator`` -> ``VoicePresence``."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._presence: dict[str, VoicePresence] = {}

    def get(self, username: str) -> VoicePresence:
        with self._lock:
            return self._presence.get(username, NOT_IN_VOICE)

    def transition(self, username: str, current: VoicePresence) -> VoicePresence:
        """Store ``current`` for ``username`` and return what was there before."""
        with self._lock:
            previous = self._presence.get(username, NOT_IN_VOICE)
            self._presence[username] = current
        return previous

    def replace_all(self, table: dict[str, VoicePresence]) -> None:
        with self._lock:
            self._presence = dict(table)

    def __len__(self) -> int:
        with self._lock:
            return len(self._presence)

    async def bootstrap(self, client: discord.Client, member_limit: int = 1000) -> int:
        """Rebuild the table from every guild's members and live voice states.

        Members start as not in voice for their guild; users currently connected
        to a voice or stage channel are then placed in it.

        Returns:
            Number of users tracked
        """
        table: dict[str, VoicePresence] = {}

        for guild in client.guilds:
            try:
                async for member in guild.fetch_members(limit=member_limit):
                    table.setdefault(
                        unique_username(member),
                        VoicePresence(channel_id=None, guild_id=guild.id),
                    )
            except (discord.ClientException, discord.HTTPException) as exc:
                logger.error(
                    "presence.fetch_members_failed",
                    guild_id=guild.id,
                    error=str(exc),
                )

        for guild in client.guilds:
            channels = [*guild.voice_channels, *guild.stage_channels]
            for channel in channels:
                for user_id in channel.voice_states:
                    user = await self._resolve_user(client, user_id)
                    if user is None:
                        continue
                    table[unique_username(user)] = VoicePresence(
                        channel_id=channel.id, guild_id=guild.id
                    )

        self.replace_all(table)
        logger.info(
            "presence.bootstrapped",
            guilds=len(client.guilds),
            users=len(table),
            in_voice=sum(1 for presence in table.values() if presence.in_voice),
        )
        return len(table)

    @staticmethod
    async def _resolve_user(
        client: discord.Client, user_id: int
    ) -> discord.abc.User | None:
        user = client.get_user(user_id)
        if user is not None:
            return user
        try:
            return await client.fetch_user(user_id)
        except discord.HTTPException as exc:
            logger.warning("presence.fetch_user_failed", user_id=user_id, error=str(exc))
            return None
