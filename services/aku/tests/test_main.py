"""Tests for service startup and shutdown."""

from unittest.mock import AsyncMock, patch

import discord
import pytest

from services.aku.bot import AkuBot
from services.aku.main import AkuService, run
from services.aku.static_server import StickerPageServer
from services.common.config import AkuConfig


def _config(aku_config: AkuConfig, **sections) -> AkuConfig:
    values = {
        "discord": {"token": "test-token"},
        "assets": {
            "audio_path": aku_config.assets.audio_path,
            "sticker_path": aku_config.assets.sticker_path,
            "watch": False,
        },
        "cache": {
            "sound_cache_path": aku_config.cache.sound_cache_path,
            "sticker_cache_path": aku_config.cache.sticker_cache_path,
        },
        "stickers": {"enabled": False, "base_url": "http://localhost:8080/"},
    }
    for section, overrides in sections.items():
        values.setdefault(section, {}).update(overrides)
    return AkuConfig(**values)


@pytest.fixture(autouse=True)
def offline_bot():
    """Keep the Discord client from touching the network."""
    with patch.object(AkuBot, "close", AsyncMock()), patch.object(
        AkuBot, "start", AsyncMock()
    ) as start:
        yield start


@pytest.fixture
def transcoder(fake_transcoder):
    with patch("services.aku.main.FFmpegTranscoder", return_value=fake_transcoder):
        yield fake_transcoder


class TestAkuService:
    """Test bringing the components up and down."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_start_loads_catalogs_and_entry_sounds(self, aku_config, transcoder):
        """Startup loads both trees and encodes every entry sound."""
        service = AkuService(_config(aku_config))

        await service.start()
        try:
            assert "horn" in service.audio_catalog
            assert service.sticker_catalog.categories() == ["cats", "dogs"]
            assert service.audio_cache.is_cached("alice#1234")
            assert len(transcoder.calls) == 1
            assert service.sticker_pages is None
            assert service.page_server is None
        finally:
            await service.stop()

        assert not aku_config.sound_cache_path.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_stickers_enabled(self, aku_config, transcoder):
        """With stickers on, pages are rendered and the page server started."""
        service = AkuService(_config(aku_config, stickers={"enabled": True}))

        with patch.object(StickerPageServer, "start", AsyncMock()) as start, patch.object(
            StickerPageServer, "stop", AsyncMock()
        ) as stop:
            await service.start()
            assert service.sticker_pages.page_urls("cats") == (
                "http://localhost:8080/cats-0.png",
                "http://localhost:8080/cats-1.png",
            )
            start.assert_awaited_once()

            await service.stop()
            stop.assert_awaited_once()

        assert not aku_config.sticker_cache_path.exists()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_watchers_stop_with_service(self, aku_config, transcoder):
        """Watcher tasks end when the service stops."""
        service = AkuService(_config(aku_config, assets={"watch": True}))

        await service.start()
        tasks = list(service._watch_tasks)
        assert len(tasks) == 1

        await service.stop()

        assert all(task.done() for task in tasks)


class TestRun:
    """Test the process-level run loop."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_unusable_cache_path_fails_startup(self, aku_config, tmp_path, transcoder):
        """A cache path that is a regular file aborts startup with status 1."""
        occupied = tmp_path / "occupied"
        occupied.write_text("file")
        config = _config(aku_config, cache={"sound_cache_path": str(occupied)})

        assert await run(config) == 1
        assert occupied.read_text() == "file"

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_login_failure(self, aku_config, transcoder, offline_bot):
        """A rejected token ends the run with status 1."""
        offline_bot.side_effect = discord.LoginFailure("Improper token has been passed.")

        assert await run(_config(aku_config)) == 1
        offline_bot.assert_awaited_once_with("test-token")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_gateway_closed_cleanly(self, aku_config, transcoder):
        """If the gateway connection ends without error the status is 0."""
        assert await run(_config(aku_config)) == 0
        assert not aku_config.sound_cache_path.exists()
