"""Discord client wiring chat commands, voice presence and help pagination together."""

from __future__ import annotations

import asyncio

import discord

from services.common.config import AkuConfig, DiscordConfig, canonical_intent_name
from services.common.structured_logging import correlation_context, get_logger

from .audio_cache import ConvertedAudioCache
from .catalog import AssetCatalog, normalize_asset_name
from .commands import Command, parse_command
from .help_pages import (
    PAGINATION_REACTIONS,
    HelpListing,
    HelpSession,
    HelpSessionRegistry,
    category_listing,
    root_listing,
    sticker_pack_listing,
)
from .playback import (
    DiscordVoiceConnector,
    PlaybackOutcome,
    PlaybackRequest,
    PlaybackSequencer,
    VoiceTarget,
)
from .presence import (
    VoicePresence,
    VoicePresenceTracker,
    should_play_entry,
    unique_username,
)
from .stickers import StickerPageCache

AUDIO_HELP_NAME = "audio"
STICKER_HELP_NAME = "sticker"


class AkuBot(discord.Client):
    """Soundboard bot: plays sounds on command and greets users joining voice."""

    def __init__(
        self,
        config: AkuConfig,
        *,
        audio_catalog: AssetCatalog,
        sticker_catalog: AssetCatalog,
        audio_cache: ConvertedAudioCache,
        sticker_pages: StickerPageCache | None = None,
        presence: VoicePresenceTracker | None = None,
        help_sessions: HelpSessionRegistry | None = None,
        sequencer: PlaybackSequencer | None = None,
    ) -> None:
        super().__init__(intents=self._build_intents(config.discord))
        self.config = config
        self.audio_catalog = audio_catalog
        self.sticker_catalog = sticker_catalog
        self.sticker_pages = sticker_pages
        self.presence = presence or VoicePresenceTracker()
        self.help_sessions = help_sessions or HelpSessionRegistry(
            config.help.max_sessions
        )
        self.sequencer = sequencer or PlaybackSequencer(
            audio_cache,
            DiscordVoiceConnector(
                self, timeout=config.discord.voice_connect_timeout
            ),
        )
        self._help_edit_lock = asyncio.Lock()
        self._logger = get_logger(__name__, service_name="aku")

    @property
    def stickers_enabled(self) -> bool:
        return bool(self.config.stickers.enabled) and self.sticker_pages is not None

    def _is_self(self, user_id: int) -> bool:
        return self.user is not None and user_id == self.user.id

    async def on_ready(self) -> None:
        with correlation_context("ready") as logger:
            tracked = await self.presence.bootstrap(
                self, self.config.discord.member_fetch_limit
            )
            logger.info(
                "bot.ready",
                user=str(self.user),
                guilds=len(self.guilds),
                tracked_users=tracked,
            )

    async def on_message(self, message: discord.Message) -> None:
        if self._is_self(message.author.id):
            return
        parsed = parse_command(message.content, self.config.discord.command_prefix)
        if parsed is None:
            return
        command, argument = parsed

        with correlation_context(f"message-{message.id}") as logger:
            logger.info(
                "bot.command_received",
                command=command.name.lower(),
                argument=argument,
                author=unique_username(message.author),
            )
            try:
                await self.handle_command(message, command, argument)
            except Exception:
                logger.exception("bot.command_failed", command=command.name.lower())

    async def handle_command(
        self, message: discord.Message, command: Command, argument: str
    ) -> None:
        if command is Command.PLAY:
            await self._play_command(message, argument)
        elif command is Command.AUDIO_HELP:
            await self._audio_help_command(message.channel, argument)
        elif command is Command.STICKER:
            await self._sticker_command(message.channel, argument)
        elif command is Command.STICKER_HELP:
            await self._sticker_help_command(message.channel, argument)

    async def _play_command(
        self, message: discord.Message, sound_name: str
    ) -> PlaybackOutcome | None:
        presence = self.presence.get(unique_username(message.author))
        sound_path = self.audio_catalog.get_path(sound_name)
        if (
            message.guild is None
            or presence.channel_id is None
            or presence.guild_id != message.guild.id
            or sound_path is None
        ):
            self._logger.debug(
                "bot.play_ignored",
                sound_name=sound_name,
                in_voice=presence.in_voice,
                sound_found=sound_path is not None,
            )
            return None

        return await self.sequencer.play(
            PlaybackRequest(
                sound_name=sound_name,
                source_path=sound_path,
                target=VoiceTarget(
                    guild_id=presence.guild_id, channel_id=presence.channel_id
                ),
            )
        )

    async def _audio_help_command(
        self, channel: discord.abc.Messageable, category: str
    ) -> discord.Message | None:
        if not category:
            return await self.send_help(
                channel, AUDIO_HELP_NAME, root_listing(self.audio_catalog.categories())
            )
        assets = self.audio_catalog.category_assets(category)
        if assets is None:
            self._logger.debug("bot.help_category_unknown", category=category)
            return None
        return await self.send_help(
            channel,
            f"{AUDIO_HELP_NAME}/{category}",
            category_listing(category, assets),
        )

    async def _sticker_command(
        self, channel: discord.abc.Messageable, sticker_name: str
    ) -> None:
        if not self.stickers_enabled:
            return
        sticker_path = self.sticker_catalog.get_path(sticker_name)
        if sticker_path is None:
            return
        try:
            await channel.send(file=discord.File(sticker_path, filename=sticker_path.name))
        except (OSError, discord.HTTPException) as exc:
            self._logger.error(
                "bot.sticker_send_failed",
                sticker_path=str(sticker_path),
                error=str(exc),
            )

    async def _sticker_help_command(
        self, channel: discord.abc.Messageable, pack_name: str
    ) -> discord.Message | None:
        if not self.stickers_enabled or self.sticker_pages is None:
            return None
        if not pack_name:
            return await self.send_help(
                channel,
                STICKER_HELP_NAME,
                root_listing(self.sticker_catalog.categories()),
            )
        page_urls = self.sticker_pages.page_urls(pack_name)
        if page_urls is None:
            self._logger.debug("bot.sticker_pack_unknown", pack_name=pack_name)
            return None
        return await self.send_help(
            channel,
            f"{STICKER_HELP_NAME}/{pack_name}",
            sticker_pack_listing(pack_name, page_urls),
        )

    async def send_help(
        self, channel: discord.abc.Messageable, name: str, listing: HelpListing
    ) -> discord.Message | None:
        """Send page one of ``listing`` and make the message navigable."""
        if listing.page_count == 0:
            self._logger.debug("bot.help_empty", name=name)
            return None

        session = HelpSession(name=name, listing=listing)
        try:
            message = await channel.send(embed=session.render())
        except discord.HTTPException as exc:
            self._logger.error("bot.help_send_failed", name=name, error=str(exc))
            return None

        self.help_sessions.open(message.id, session)
        for emoji in PAGINATION_REACTIONS:
            try:
                await message.add_reaction(emoji)
            except discord.HTTPException as exc:
                self._logger.error(
                    "bot.reaction_add_failed",
                    message_id=message.id,
                    emoji=emoji,
                    error=str(exc),
                )
        return message

    async def on_raw_reaction_add(
        self, payload: discord.RawReactionActionEvent
    ) -> None:
        if self._is_self(payload.user_id):
            return
        if payload.message_id not in self.help_sessions:
            return

        with correlation_context(f"reaction-{payload.message_id}") as logger:
            message = await self._fetch_message(payload.channel_id, payload.message_id)
            if message is None:
                return
            await self._strip_foreign_reactions(message)

            emoji = str(payload.emoji)
            async with self._help_edit_lock:
                session = self.help_sessions.turn(payload.message_id, emoji)
                if session is None:
                    return
                logger.debug(
                    "bot.help_page_turned",
                    name=session.name,
                    page=session.page,
                    emoji=emoji,
                )
                try:
                    await message.edit(embed=session.render())
                except discord.HTTPException as exc:
                    logger.error(
                        "bot.help_edit_failed",
                        message_id=message.id,
                        error=str(exc),
                    )

    async def _fetch_message(
        self, channel_id: int, message_id: int
    ) -> discord.Message | None:
        try:
            channel = self.get_channel(channel_id) or await self.fetch_channel(
                channel_id
            )
            if not isinstance(channel, discord.abc.Messageable):
                return None
            return await channel.fetch_message(message_id)
        except discord.HTTPException as exc:
            self._logger.error(
                "bot.message_fetch_failed",
                channel_id=channel_id,
                message_id=message_id,
                error=str(exc),
            )
            return None

    async def _strip_foreign_reactions(self, message: discord.Message) -> None:
        """Remove every reaction not made by the bot itself."""
        for reaction in message.reactions:
            try:
                async for user in reaction.users():
                    if self._is_self(user.id):
                        continue
                    await message.remove_reaction(reaction.emoji, user)
            except discord.HTTPException as exc:
                self._logger.error(
                    "bot.reaction_remove_failed",
                    message_id=message.id,
                    emoji=str(reaction.emoji),
                    error=str(exc),
                )

    async def on_voice_state_update(
        self,
        member: discord.Member,
        before: discord.VoiceState,
        after: discord.VoiceState,
    ) -> None:
        if self._is_self(member.id):
            return

        username = unique_username(member)
        guild = member.guild
        current = VoicePresence(
            channel_id=after.channel.id if after.channel else None,
            guild_id=guild.id,
        )
        previous = self.presence.transition(username, current)
        afk_channel_id = guild.afk_channel.id if guild.afk_channel else None
        if not should_play_entry(previous, current, afk_channel_id):
            return

        entry_name = normalize_asset_name(username)
        entry_path = self.audio_catalog.category_paths(
            self.config.assets.entry_category
        ).get(entry_name)
        if entry_path is None or current.channel_id is None:
            return

        with correlation_context(f"voice-{member.id}-{current.channel_id}") as logger:
            logger.info(
                "bot.entry_sound_triggered",
                username=username,
                guild_id=guild.id,
                channel_id=current.channel_id,
            )
            outcome = await self.sequencer.play(
                PlaybackRequest(
                    sound_name=entry_name,
                    source_path=entry_path,
                    target=VoiceTarget(
                        guild_id=guild.id, channel_id=current.channel_id
                    ),
                )
            )
            logger.info(
                "bot.entry_sound_finished", username=username, outcome=outcome.value
            )

    @staticmethod
    def _build_intents(config: DiscordConfig) -> discord.Intents:
        intents = discord.Intents.none()
        for raw_name in config.intents:
            setattr(intents, canonical_intent_name(raw_name), True)
        return intents


__all__ = ["AkuBot"]
