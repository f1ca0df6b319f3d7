"""ffmpeg-backed encoder producing Ogg/Opus streams for voice playback."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import BinaryIO, Protocol

from services.common.structured_logging import get_logger

logger = get_logger(__name__, service_name="aku")

ENCODED_EXTENSION = "opus"

# Matches what the voice gateway sends natively: 48 kHz stereo Opus at 64 kbit/s
SAMPLE_RATE = 48000
CHANNELS = 2
BITRATE = "64k"

_CHUNK_SIZE = 64 * 1024


class TranscodeError(Exception):
    """Raised when a source file cannot be encoded."""

    def __init__(self, source: Path, message: str) -> None:
        self.source = source
        super().__init__(f"Failed to encode {source}: {message}")


class Transcoder(Protocol):
    """Anything that can write an encoded stream of ``source`` into ``sink``."""

    async def encode(self, source: Path, sink: BinaryIO) -> int: ...


class FFmpegTranscoder:
    """Encode media files to Ogg/Opus by piping ffmpeg's stdout."""

    def __init__(self, ffmpeg_path: str = "ffmpeg") -> None:
        self.ffmpeg_path = ffmpeg_path

    def build_command(self, source: Path) -> list[str]:
        return [
            self.ffmpeg_path,
            "-hide_banner",
            "-loglevel",
            "error",
            "-nostdin",
            "-i",
            str(source),
            "-vn",
            "-map_metadata",
            "-1",
            "-ac",
            str(CHANNELS),
            "-ar",
            str(SAMPLE_RATE),
            "-c:a",
            "libopus",
            "-b:a",
            BITRATE,
            "-f",
            "ogg",
            "pipe:1",
        ]

    async def encode(self, source: Path, sink: BinaryIO) -> int:
        """Stream the encoded form of ``source`` into ``sink``.

        Returns:
            Number of bytes written

        Raises:
            TranscodeError: If ffmpeg is missing, exits non-zero or produces nothing
        """
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.build_command(source),
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as exc:
            raise TranscodeError(source, f"{self.ffmpeg_path} not found") from exc
        except OSError as exc:
            raise TranscodeError(source, f"cannot run {self.ffmpeg_path}: {exc}") from exc

        assert proc.stdout is not None
        assert proc.stderr is not None
        stderr_task = asyncio.create_task(proc.stderr.read())

        written = 0
        try:
            while True:
                chunk = await proc.stdout.read(_CHUNK_SIZE)
                if not chunk:
                    break
                sink.write(chunk)
                written += len(chunk)
        except BaseException:
            if proc.returncode is None:
                proc.kill()
            await proc.wait()
            stderr_task.cancel()
            raise

        stderr = await stderr_task
        returncode = await proc.wait()
        if returncode != 0:
            raise TranscodeError(
                source,
                f"ffmpeg exited with {returncode}: "
                f"{stderr.decode('utf-8', 'replace').strip()[:500]}",
            )
        if written == 0:
            raise TranscodeError(source, "ffmpeg produced no output")

        logger.debug("transcoder.encoded", source=str(source), bytes=written)
        return written
