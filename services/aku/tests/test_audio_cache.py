"""Tests for the converted-audio cache."""

import asyncio

import pytest

from services.aku.audio_cache import ConvertedAudioCache
from services.aku.cache_dirs import CacheError


@pytest.fixture
def cache(tmp_path, fake_transcoder) -> ConvertedAudioCache:
    cache = ConvertedAudioCache(tmp_path / "sounds", fake_transcoder)
    cache.reset()
    return cache


class TestEnsureCached:
    """Test cache hits, misses and failures."""

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_second_call_is_a_hit(self, cache, fake_transcoder, audio_root):
        """Caching twice returns the same path and encodes once."""
        source = audio_root / "greetings" / "horn.wav"

        first = await cache.ensure_cached("horn", source)
        second = await cache.ensure_cached("horn", source)

        assert first == second == cache.path_for("horn")
        assert first.name == "horn.opus"
        assert first.read_bytes().startswith(b"OggS")
        assert fake_transcoder.calls == [source]
        assert cache.stats() == {
            "hits": 1,
            "misses": 1,
            "encodes": 1,
            "failures": 0,
            "in_flight": 0,
        }

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_concurrent_calls_encode_once(self, cache, fake_transcoder, audio_root):
        """Concurrent callers for one name share a single encode."""
        source = audio_root / "greetings" / "bell.mp3"
        fake_transcoder.gate = asyncio.Event()

        tasks = [
            asyncio.create_task(cache.ensure_cached("bell", source)) for _ in range(5)
        ]
        await asyncio.sleep(0.01)
        assert cache.stats()["in_flight"] == 1
        fake_transcoder.gate.set()
        paths = await asyncio.gather(*tasks)

        assert set(paths) == {cache.path_for("bell")}
        assert len(fake_transcoder.calls) == 1
        # The per-name lock is released with its last caller
        assert cache.stats()["in_flight"] == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_different_names_encode_independently(
        self, cache, fake_transcoder, audio_root
    ):
        """Each name gets its own artifact."""
        await cache.ensure_cached("bell", audio_root / "greetings" / "bell.mp3")
        await cache.ensure_cached("horn", audio_root / "greetings" / "horn.wav")

        assert cache.is_cached("bell")
        assert cache.is_cached("horn")
        assert len(fake_transcoder.calls) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_partial_artifact_is_not_visible(
        self, cache, fake_transcoder, audio_root
    ):
        """While encoding, the final path does not exist yet."""
        fake_transcoder.gate = asyncio.Event()
        task = asyncio.create_task(
            cache.ensure_cached("horn", audio_root / "greetings" / "horn.wav")
        )
        await asyncio.sleep(0.01)

        assert not cache.is_cached("horn")

        fake_transcoder.gate.set()
        await task
        assert cache.is_cached("horn")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_encode_failure(self, cache, fake_transcoder, audio_root):
        """A failed encode raises CacheError and leaves nothing behind."""
        fake_transcoder.fail_on.add("horn.wav")

        with pytest.raises(CacheError):
            await cache.ensure_cached("horn", audio_root / "greetings" / "horn.wav")

        assert not cache.is_cached("horn")
        assert list(cache.cache_dir.iterdir()) == []
        assert cache.stats()["failures"] == 1
        assert cache.stats()["in_flight"] == 0

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_failure_is_retried_on_next_request(
        self, cache, fake_transcoder, audio_root
    ):
        """Nothing is remembered about a failure; the next request encodes again."""
        source = audio_root / "greetings" / "horn.wav"
        fake_transcoder.fail_on.add("horn.wav")
        with pytest.raises(CacheError):
            await cache.ensure_cached("horn", source)

        fake_transcoder.fail_on.clear()
        path = await cache.ensure_cached("horn", source)

        assert path.is_file()
        assert len(fake_transcoder.calls) == 2

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_creates_missing_cache_directory(
        self, tmp_path, fake_transcoder, audio_root
    ):
        """The cache directory is created on demand."""
        cache = ConvertedAudioCache(tmp_path / "late" / "sounds", fake_transcoder)

        path = await cache.ensure_cached("bell", audio_root / "greetings" / "bell.mp3")

        assert path.is_file()


class TestCacheLifecycle:
    """Test reset, cleanup, precache and evict."""

    @pytest.mark.unit
    def test_reset_removes_leftovers(self, tmp_path, fake_transcoder):
        """Artifacts from a previous run are discarded."""
        cache_dir = tmp_path / "sounds"
        cache_dir.mkdir()
        (cache_dir / "stale.opus").write_bytes(b"old")
        (cache_dir / "half.opus.partial").write_bytes(b"old")

        ConvertedAudioCache(cache_dir, fake_transcoder).reset()

        assert cache_dir.is_dir()
        assert list(cache_dir.iterdir()) == []

    @pytest.mark.unit
    def test_reset_rejects_regular_file(self, tmp_path, fake_transcoder):
        """A file at the cache path is a configuration error."""
        cache_path = tmp_path / "sounds"
        cache_path.write_text("occupied")

        with pytest.raises(CacheError):
            ConvertedAudioCache(cache_path, fake_transcoder).reset()

        assert cache_path.read_text() == "occupied"

    @pytest.mark.unit
    def test_cleanup(self, cache):
        """Cleanup removes the whole cache directory."""
        cache.path_for("horn").write_bytes(b"OggS")

        cache.cleanup()

        assert not cache.cache_dir.exists()

    @pytest.mark.unit
    def test_cleanup_missing_directory(self, tmp_path, fake_transcoder):
        """Cleaning up an absent directory is a no-op."""
        ConvertedAudioCache(tmp_path / "never", fake_transcoder).cleanup()

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_precache_skips_failures(self, cache, fake_transcoder, audio_root):
        """Failing sounds are skipped and the rest are cached."""
        fake_transcoder.fail_on.add("bell.mp3")
        sounds = {
            "bell": audio_root / "greetings" / "bell.mp3",
            "horn": audio_root / "greetings" / "horn.wav",
            "chime": audio_root / "greetings" / "chime.ogg",
        }

        cached = await cache.precache(sounds)

        assert cached == 2
        assert not cache.is_cached("bell")
        assert cache.is_cached("horn")
        assert cache.is_cached("chime")

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_evict(self, cache, fake_transcoder, audio_root):
        """An evicted sound is encoded again on its next use."""
        source = audio_root / "greetings" / "horn.wav"
        await cache.ensure_cached("horn", source)

        assert cache.evict("horn") is True
        assert cache.evict("horn") is False
        assert not cache.is_cached("horn")

        await cache.ensure_cached("horn", source)
        assert len(fake_transcoder.calls) == 2
