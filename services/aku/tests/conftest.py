"""Test fixtures for aku service tests."""

import asyncio
from collections.abc import AsyncIterator, Iterable
from pathlib import Path
from typing import BinaryIO

import pytest
from PIL import Image

from services.aku.transcoder import TranscodeError
from services.common.config import AkuConfig

ENCODED_PAYLOAD = b"OggS\x00encoded"


class FakeTranscoder:
    """Transcoder double that records calls and writes a fixed payload."""

    def __init__(self) -> None:
        self.calls: list[Path] = []
        self.fail_on: set[str] = set()
        self.gate: asyncio.Event | None = None

    async def encode(self, source: Path, sink: BinaryIO) -> int:
        self.calls.append(source)
        if self.gate is not None:
            await self.gate.wait()
        if source.name in self.fail_on:
            raise TranscodeError(source, "ffmpeg exited with 1")
        sink.write(ENCODED_PAYLOAD)
        return len(ENCODED_PAYLOAD)


async def aiter_of(items: Iterable) -> AsyncIterator:
    for item in items:
        yield item


@pytest.fixture
def fake_transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def async_iter():
    """Build an async iterator over a list, as discord.py paginated calls return."""
    return aiter_of


@pytest.fixture
def audio_root(tmp_path: Path) -> Path:
    """``greetings`` holds bell/chime/horn, ``entries`` one user's entry sound."""
    root = tmp_path / "audio"
    (root / "greetings").mkdir(parents=True)
    (root / "entries").mkdir()
    (root / "memes").mkdir()
    for name in ("horn.wav", "bell.mp3", "chime.ogg"):
        (root / "greetings" / name).write_bytes(b"raw-" + name.encode())
    (root / "entries" / "alice#1234.mp3").write_bytes(b"raw-alice")
    (root / "memes" / "air horn.v2.mp3").write_bytes(b"raw-airhorn")
    # Loose files at the root are not categories
    (root / "README.txt").write_text("not a category")
    return root


def make_sticker(path: Path, size: tuple[int, int] = (64, 48)) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    Image.new("RGBA", size, (200, 30, 30, 255)).save(path, format="PNG")
    return path


@pytest.fixture
def sticker_factory():
    return make_sticker


@pytest.fixture
def sticker_root(tmp_path: Path) -> Path:
    """``cats`` holds 25 stickers (two pages) and a ``sources`` entry."""
    root = tmp_path / "stickers"
    for index in range(25):
        make_sticker(root / "cats" / f"cat{index:02d}.png")
    (root / "cats" / "sources").mkdir()
    make_sticker(root / "cats" / "sources" / "original.png", (512, 512))
    make_sticker(root / "dogs" / "dog.happy.png")
    return root


@pytest.fixture
def aku_config(
    tmp_path: Path, audio_root: Path, sticker_root: Path, monkeypatch: pytest.MonkeyPatch
) -> AkuConfig:
    for name in (
        "DISCORD_TOKEN",
        "AKU_AUDIO_PATH",
        "AKU_STICKER_PATH",
        "AKU_SOUND_CACHE_PATH",
        "AKU_STICKER_CACHE_PATH",
        "AKU_BASE_URL",
        "AKU_STICKERS_ENABLED",
        "AKU_ENTRY_CATEGORY",
        "AKU_HELP_MAX_SESSIONS",
        "AKU_WATCH_ASSETS",
        "SERVICE_PORT",
    ):
        monkeypatch.delenv(name, raising=False)
    return AkuConfig(
        discord={"token": "test-token"},
        assets={
            "audio_path": str(audio_root),
            "sticker_path": str(sticker_root),
            "watch": False,
        },
        cache={
            "sound_cache_path": str(tmp_path / "cache" / "sounds"),
            "sticker_cache_path": str(tmp_path / "cache" / "stickers"),
        },
        stickers={"base_url": "http://localhost:8080/"},
        help={"max_sessions": 10},
    )
