"""Single-flight voice playback: cache, join, stream with timeout, disconnect."""

from __future__ import annotations

import asyncio
import threading
import time
from collections.abc import Awaitable, Callable
from contextlib import suppress
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import BinaryIO

import discord

from services.common.structured_logging import get_logger

from .audio_cache import ConvertedAudioCache
from .cache_dirs import CacheError

logger = get_logger(__name__, service_name="aku")

PLAYBACK_TIMEOUT_SECONDS = 10.0


class PlaybackOutcome(Enum):
    SKIPPED_BUSY = "skipped_busy"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class VoiceTarget:
    guild_id: int
    channel_id: int


@dataclass(frozen=True, slots=True)
class PlaybackRequest:
    sound_name: str
    source_path: Path
    target: VoiceTarget


class SingleFlight:
    """Process-wide busy flag; a second caller is turned away, never queued."""

    def __init__(self) -> None:
        self._lock = threading.Lock()

    def try_acquire(self) -> bool:
        return self._lock.acquire(blocking=False)

    def release(self) -> None:
        self._lock.release()

    @property
    def busy(self) -> bool:
        return self._lock.locked()


VoiceConnector = Callable[[VoiceTarget], Awaitable[discord.VoiceClient]]
SourceFactory = Callable[[BinaryIO], discord.AudioSource]


def open_opus_source(stream: BinaryIO) -> discord.AudioSource:
    """Wrap an already-encoded Ogg/Opus stream without re-encoding it."""
    return discord.FFmpegOpusAudio(stream, pipe=True, codec="copy")


class DiscordVoiceConnector:
    """Join the voice channel of a ``VoiceTarget`` through a discord.py client."""

    def __init__(self, client: discord.Client, *, timeout: float = 30.0) -> None:
        self._client = client
        self._timeout = timeout

    async def __call__(self, target: VoiceTarget) -> discord.VoiceClient:
        channel = self._client.get_channel(target.channel_id)
        if not isinstance(channel, (discord.VoiceChannel, discord.StageChannel)):
            raise discord.ClientException(
                f"Channel {target.channel_id} is not a voice channel"
            )

        existing = channel.guild.voice_client
        if isinstance(existing, discord.VoiceClient) and existing.is_connected():
            if existing.channel is None or existing.channel.id != channel.id:
                await existing.move_to(channel)
            return existing

        try:
            return await channel.connect(timeout=self._timeout, reconnect=False)
        except BaseException:
            await self._cleanup_half_open(channel.guild)
            raise

    async def _cleanup_half_open(self, guild: discord.Guild) -> None:
        voice_client = guild.voice_client
        if voice_client is None:
            return
        with suppress(Exception):
            await voice_client.disconnect(force=True)


class PlaybackSequencer:
    """Play one cached sound at a time in a voice channel.

    Args:
        cache: Encoded-sound cache
        connect: Coroutine joining the target channel and returning its voice client
        source_factory: Wraps an open artifact in a discord.py audio source
        timeout: Seconds a stream may run before it is stopped
    """

    def __init__(
        self,
        cache: ConvertedAudioCache,
        connect: VoiceConnector,
        *,
        source_factory: SourceFactory = open_opus_source,
        timeout: float = PLAYBACK_TIMEOUT_SECONDS,
        busy: SingleFlight | None = None,
    ) -> None:
        self._cache = cache
        self._connect = connect
        self._source_factory = source_factory
        self._timeout = timeout
        self._busy = busy or SingleFlight()

    @property
    def busy(self) -> bool:
        return self._busy.busy

    async def play(self, request: PlaybackRequest) -> PlaybackOutcome:
        if not self._busy.try_acquire():
            logger.info(
                "playback.skipped_busy",
                sound_name=request.sound_name,
                guild_id=request.target.guild_id,
            )
            return PlaybackOutcome.SKIPPED_BUSY

        started = time.perf_counter()
        try:
            outcome = await self._play(request)
        finally:
            self._busy.release()

        logger.debug(
            "playback.finished",
            sound_name=request.sound_name,
            outcome=outcome.value,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
        )
        return outcome

    async def _play(self, request: PlaybackRequest) -> PlaybackOutcome:
        try:
            artifact = await self._cache.ensure_cached(
                request.sound_name, request.source_path
            )
        except CacheError:
            return PlaybackOutcome.FAILED

        try:
            stream = artifact.open("rb")
        except OSError as exc:
            logger.error(
                "playback.open_failed",
                sound_name=request.sound_name,
                path=str(artifact),
                error=str(exc),
            )
            return PlaybackOutcome.FAILED

        with stream:
            try:
                voice_client = await self._connect(request.target)
            except (discord.DiscordException, asyncio.TimeoutError) as exc:
                logger.error(
                    "playback.join_failed",
                    sound_name=request.sound_name,
                    guild_id=request.target.guild_id,
                    channel_id=request.target.channel_id,
                    error=str(exc),
                    error_type=type(exc).__name__,
                )
                return PlaybackOutcome.FAILED

            try:
                return await self._stream(voice_client, stream, request)
            finally:
                await self._disconnect(voice_client, request)

    async def _stream(
        self,
        voice_client: discord.VoiceClient,
        stream: BinaryIO,
        request: PlaybackRequest,
    ) -> PlaybackOutcome:
        loop = asyncio.get_running_loop()
        finished: asyncio.Future[Exception | None] = loop.create_future()

        def _resolve(error: Exception | None) -> None:
            if not finished.done():
                finished.set_result(error)

        # Runs on discord.py's player thread
        def _after(error: Exception | None) -> None:
            if not loop.is_closed():
                loop.call_soon_threadsafe(_resolve, error)

        try:
            voice_client.play(self._source_factory(stream), after=_after)
        except discord.DiscordException as exc:
            logger.error(
                "playback.start_failed",
                sound_name=request.sound_name,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return PlaybackOutcome.FAILED

        try:
            error = await asyncio.wait_for(finished, timeout=self._timeout)
        except asyncio.TimeoutError:
            voice_client.stop()
            logger.warning(
                "playback.timed_out",
                sound_name=request.sound_name,
                timeout_seconds=self._timeout,
            )
            return PlaybackOutcome.TIMED_OUT

        if error is not None and not isinstance(error, EOFError):
            logger.error(
                "playback.stream_failed",
                sound_name=request.sound_name,
                error=str(error),
                error_type=type(error).__name__,
            )
            return PlaybackOutcome.FAILED
        return PlaybackOutcome.COMPLETED

    async def _disconnect(
        self, voice_client: discord.VoiceClient, request: PlaybackRequest
    ) -> None:
        try:
            await voice_client.disconnect(force=True)
        except Exception as exc:
            logger.warning(
                "playback.disconnect_failed",
                guild_id=request.target.guild_id,
                channel_id=request.target.channel_id,
                error=str(exc),
            )
