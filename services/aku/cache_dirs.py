"""Ephemeral cache directories: recreated at startup, removed at shutdown."""

from __future__ import annotations

import shutil
from pathlib import Path

from services.common.structured_logging import get_logger

logger = get_logger(__name__, service_name="aku")


class CacheError(Exception):
    """Raised when an artifact cannot be cached or a cache directory is unusable."""


def reset_cache_dir(cache_dir: Path) -> None:
    """Recreate ``cache_dir`` empty, dropping leftovers of an unclean shutdown.

    Raises:
        CacheError: If the path is occupied by something other than a directory
            or cannot be recreated
    """
    if cache_dir.exists() and not cache_dir.is_dir():
        raise CacheError(f"Cache path {cache_dir} exists and is not a directory")
    try:
        if cache_dir.exists():
            shutil.rmtree(cache_dir)
        cache_dir.mkdir(parents=True, exist_ok=True)
    except OSError as exc:
        raise CacheError(f"Cannot prepare cache directory {cache_dir}: {exc}") from exc
    logger.info("cache.reset", cache_dir=str(cache_dir))


def remove_cache_dir(cache_dir: Path) -> None:
    try:
        shutil.rmtree(cache_dir)
    except FileNotFoundError:
        return
    except OSError as exc:
        logger.error("cache.cleanup_failed", cache_dir=str(cache_dir), error=str(exc))
        return
    logger.info("cache.cleaned_up", cache_dir=str(cache_dir))
