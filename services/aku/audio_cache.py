"""On-disk cache of encoded sounds, keyed by sound name."""

from __future__ import annotations

import asyncio
import os
from collections.abc import AsyncIterator, Mapping
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path

from services.common.structured_logging import get_logger

from .cache_dirs import CacheError, remove_cache_dir, reset_cache_dir
from .transcoder import ENCODED_EXTENSION, TranscodeError, Transcoder

logger = get_logger(__name__, service_name="aku")

_PARTIAL_SUFFIX = ".partial"


@dataclass(slots=True)
class CacheStats:
    hits: int = 0
    misses: int = 0
    encodes: int = 0
    failures: int = 0


class ConvertedAudioCache:
    """Encoded-sound cache.

    A file at ``path_for(name)`` is always a complete artifact: encodes land in
    a temporary file and are renamed into place. At most one encode per name
    runs at a time.
    """

    def __init__(self, cache_dir: Path, transcoder: Transcoder) -> None:
        self.cache_dir = Path(cache_dir)
        self._transcoder = transcoder
        # name -> (lock, callers holding or waiting for it)
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}
        self._stats = CacheStats()

    def path_for(self, sound_name: str) -> Path:
        return self.cache_dir / f"{sound_name}.{ENCODED_EXTENSION}"

    def is_cached(self, sound_name: str) -> bool:
        return self.path_for(sound_name).is_file()

    def reset(self) -> None:
        reset_cache_dir(self.cache_dir)

    def cleanup(self) -> None:
        remove_cache_dir(self.cache_dir)

    @asynccontextmanager
    async def _locked(self, sound_name: str) -> AsyncIterator[None]:
        """Hold the lock of ``sound_name``; the entry goes away with its last user."""
        entry = self._locks.get(sound_name)
        lock, users = entry if entry is not None else (asyncio.Lock(), 0)
        self._locks[sound_name] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            _, users = self._locks[sound_name]
            if users == 1:
                del self._locks[sound_name]
            else:
                self._locks[sound_name] = (lock, users - 1)

    async def ensure_cached(self, sound_name: str, source_path: Path) -> Path:
        """Return the cached artifact for ``sound_name``, encoding it if missing.

        Args:
            sound_name: Cache key
            source_path: Raw media file to encode on a miss

        Returns:
            Path of the complete encoded artifact

        Raises:
            CacheError: If encoding or writing the artifact fails
        """
        target = self.path_for(sound_name)
        if target.is_file():
            self._stats.hits += 1
            return target

        async with self._locked(sound_name):
            # Another caller may have finished the encode while we waited
            if target.is_file():
                self._stats.hits += 1
                return target

            self._stats.misses += 1
            partial = target.with_name(target.name + _PARTIAL_SUFFIX)
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                with partial.open("wb") as sink:
                    written = await self._transcoder.encode(Path(source_path), sink)
                os.replace(partial, target)
            except (TranscodeError, OSError) as exc:
                self._stats.failures += 1
                partial.unlink(missing_ok=True)
                logger.error(
                    "audio_cache.encode_failed",
                    sound_name=sound_name,
                    source_path=str(source_path),
                    error=str(exc),
                )
                raise CacheError(f"Cannot cache {sound_name}: {exc}") from exc
            except BaseException:
                partial.unlink(missing_ok=True)
                raise

            self._stats.encodes += 1
            logger.debug(
                "audio_cache.encoded",
                sound_name=sound_name,
                path=str(target),
                bytes=written,
            )
            return target

    async def precache(self, sounds: Mapping[str, Path]) -> int:
        """Encode every sound in ``sounds``; failures are logged and skipped."""
        cached = 0
        for sound_name, source_path in sounds.items():
            try:
                await self.ensure_cached(sound_name, source_path)
            except CacheError:
                logger.warning("audio_cache.precache_skipped", sound_name=sound_name)
                continue
            cached += 1
        logger.info("audio_cache.precached", cached=cached, requested=len(sounds))
        return cached

    def evict(self, sound_name: str) -> bool:
        """Drop the artifact of ``sound_name``; True if one was removed."""
        try:
            self.path_for(sound_name).unlink()
        except FileNotFoundError:
            return False
        except OSError as exc:
            logger.warning(
                "audio_cache.evict_failed", sound_name=sound_name, error=str(exc)
            )
            return False
        logger.debug("audio_cache.evicted", sound_name=sound_name)
        return True

    def stats(self) -> dict[str, int]:
        return {
            "hits": self._stats.hits,
            "misses": self._stats.misses,
            "encodes": self._stats.encodes,
            "failures": self._stats.failures,
            "in_flight": len(self._locks),
        }
