"""Entrypoint for the aku soundboard bot."""

from __future__ import annotations

import asyncio
import signal
import sys
from contextlib import suppress

import discord

from services.common.config import (
    AkuConfig,
    ConfigError,
    LoggingConfig,
    get_service_preset,
    load_config,
)
from services.common.structured_logging import configure_logging, get_logger

from .audio_cache import ConvertedAudioCache
from .bot import AkuBot
from .cache_dirs import CacheError
from .catalog import AssetCatalog
from .static_server import StaticServerError, StickerPageServer
from .stickers import StickerPageCache
from .transcoder import FFmpegTranscoder
from .watcher import AudioCatalogWatcher, CatalogWatcher, StickerCatalogWatcher

logger = get_logger(__name__, service_name="aku")

_WATCHER_STOP_TIMEOUT = 5.0


class AkuService:
    """Every long-lived component of the bot, started and stopped in order."""

    def __init__(self, config: AkuConfig) -> None:
        self.config = config
        self.audio_catalog = AssetCatalog(config.audio_path, kind="audio")
        self.sticker_catalog = AssetCatalog(config.sticker_path, kind="sticker")
        self.audio_cache = ConvertedAudioCache(
            config.sound_cache_path, FFmpegTranscoder(config.cache.ffmpeg_path)
        )

        self.sticker_pages: StickerPageCache | None = None
        self.page_server: StickerPageServer | None = None
        if config.stickers.enabled:
            self.sticker_pages = StickerPageCache(
                config.sticker_cache_path,
                config.sticker_path,
                config.stickers.base_url,
                config.stickers.font_path,
            )
            self.page_server = StickerPageServer(
                config.sticker_cache_path,
                host=config.service.host,
                port=config.service.port,
            )

        self.bot = AkuBot(
            config,
            audio_catalog=self.audio_catalog,
            sticker_catalog=self.sticker_catalog,
            audio_cache=self.audio_cache,
            sticker_pages=self.sticker_pages,
        )
        self._watch_stop = asyncio.Event()
        self._watch_tasks: list[asyncio.Task[None]] = []

    def _watchers(self) -> list[CatalogWatcher]:
        watchers: list[CatalogWatcher] = [
            AudioCatalogWatcher(
                self.audio_catalog,
                self.audio_cache,
                entry_category=self.config.assets.entry_category,
            )
        ]
        if self.sticker_pages is not None:
            watchers.append(StickerCatalogWatcher(self.sticker_catalog, self.sticker_pages))
        return watchers

    async def start(self) -> None:
        """Load catalogs, prepare caches and start the page server and watchers.

        Raises:
            CacheError: If a cache directory cannot be prepared
            StaticServerError: If the page server cannot bind its port
        """
        audio = await asyncio.to_thread(self.audio_catalog.reload)
        stickers = await asyncio.to_thread(self.sticker_catalog.reload)
        logger.info(
            "aku.catalogs_loaded",
            audio_categories=len(audio.categories),
            sounds=len(audio.assets),
            sticker_packs=len(stickers.categories),
            stickers=len(stickers.assets),
        )

        self.audio_cache.reset()
        await self.audio_cache.precache(
            self.audio_catalog.category_paths(self.config.assets.entry_category)
        )

        if self.sticker_pages is not None and self.page_server is not None:
            self.sticker_pages.reset()
            pages = await asyncio.to_thread(
                self.sticker_pages.build, self.sticker_catalog.categories()
            )
            logger.info("aku.sticker_pages_rendered", pages=pages)
            await self.page_server.start()

        if self.config.assets.watch:
            for watcher in self._watchers():
                self._watch_tasks.append(
                    asyncio.create_task(watcher.run(self._watch_stop))
                )

    async def stop(self) -> None:
        if not self.bot.is_closed():
            try:
                await self.bot.close()
            except Exception as exc:
                logger.warning("aku.bot_close_failed", error=str(exc))

        if self.page_server is not None:
            await self.page_server.stop()

        self._watch_stop.set()
        for task in self._watch_tasks:
            try:
                await asyncio.wait_for(task, timeout=_WATCHER_STOP_TIMEOUT)
            except asyncio.TimeoutError:
                task.cancel()
                with suppress(asyncio.CancelledError):
                    await task
            except Exception as exc:
                logger.warning("aku.watcher_failed", error=str(exc))
        self._watch_tasks.clear()

        self.audio_cache.cleanup()
        if self.sticker_pages is not None:
            self.sticker_pages.cleanup()
        logger.info("aku.stopped", cache=self.audio_cache.stats())


async def run(config: AkuConfig) -> int:
    """Run the bot until SIGINT/SIGTERM or a gateway failure; returns the exit status."""
    service = AkuService(config)
    shutdown = asyncio.Event()
    loop = asyncio.get_running_loop()
    for signum in (signal.SIGINT, signal.SIGTERM):
        with suppress(NotImplementedError):
            loop.add_signal_handler(signum, shutdown.set)

    try:
        await service.start()
    except (CacheError, StaticServerError) as exc:
        logger.error("aku.startup_failed", error=str(exc))
        await service.stop()
        return 1

    bot_task = asyncio.create_task(service.bot.start(config.discord.token))
    shutdown_task = asyncio.create_task(shutdown.wait())
    exit_code = 0
    try:
        done, _ = await asyncio.wait(
            {bot_task, shutdown_task}, return_when=asyncio.FIRST_COMPLETED
        )
        if bot_task in done and not bot_task.cancelled():
            error = bot_task.exception()
            if error is not None:
                logger.error(
                    "aku.gateway_failed",
                    error=str(error),
                    error_type=type(error).__name__,
                    login_failed=isinstance(error, discord.LoginFailure),
                )
                exit_code = 1
        else:
            logger.info("aku.shutdown_requested")
    finally:
        shutdown_task.cancel()
        await service.stop()
        if not bot_task.done():
            bot_task.cancel()
            with suppress(asyncio.CancelledError):
                await bot_task
    return exit_code


def main() -> None:
    """Main entrypoint for the aku bot."""
    preset = LoggingConfig(**get_service_preset("aku")["logging"])
    configure_logging(preset.level, json_logs=preset.json_logs, service_name="aku")

    try:
        config = load_config()
        configure_logging(
            config.logging.level,
            json_logs=config.logging.json_logs,
            service_name=config.logging.service_name,
            log_file=config.logging.log_file or None,
        )
    except ConfigError as exc:
        logger.error("aku.config_invalid", error=str(exc))
        sys.exit(1)
    except OSError as exc:
        logger.error("aku.log_file_unavailable", error=str(exc))
        sys.exit(1)

    sys.exit(asyncio.run(run(config)))


if __name__ == "__main__":
    main()
