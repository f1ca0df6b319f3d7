"""Rescan asset catalogs when their directories change."""

from __future__ import annotations

import asyncio
from collections.abc import Iterable
from pathlib import Path

from watchfiles import Change, awatch

from services.common.structured_logging import get_logger

from .audio_cache import ConvertedAudioCache
from .catalog import AssetCatalog, asset_name_from_filename
from .stickers import StickerPageCache

logger = get_logger(__name__, service_name="aku")


def changed_relative_paths(
    root: Path, changes: Iterable[tuple[Change, str]]
) -> list[Path]:
    """Paths of ``changes`` relative to ``root``; paths outside it are dropped."""
    bases = [root.absolute(), root.resolve()]
    relative: list[Path] = []
    for _, raw_path in changes:
        path = Path(raw_path)
        for base in bases:
            if path.is_relative_to(base):
                relative.append(path.relative_to(base))
                break
    return relative


class CatalogWatcher:
    """Reload ``catalog`` whenever files under its root change.

    Subclasses react to the changed paths after the reload.
    """

    def __init__(self, catalog: AssetCatalog, *, debounce_ms: int = 1600) -> None:
        self.catalog = catalog
        self._debounce_ms = debounce_ms

    async def run(self, stop_event: asyncio.Event | None = None) -> None:
        root = self.catalog.root
        if not root.is_dir():
            logger.error("watcher.root_missing", kind=self.catalog.kind, root=str(root))
            return

        logger.info("watcher.started", kind=self.catalog.kind, root=str(root))
        async for changes in awatch(
            root, debounce=self._debounce_ms, stop_event=stop_event
        ):
            paths = changed_relative_paths(root, changes)
            logger.info(
                "watcher.changes_detected", kind=self.catalog.kind, changes=len(paths)
            )
            await asyncio.to_thread(self.catalog.reload)
            try:
                await self.apply_changes(paths)
            except Exception:
                logger.exception("watcher.apply_failed", kind=self.catalog.kind)
        logger.info("watcher.stopped", kind=self.catalog.kind)

    async def apply_changes(self, paths: list[Path]) -> None:
        return


class AudioCatalogWatcher(CatalogWatcher):
    """Drop stale encodes of changed sounds and re-encode entry sounds."""

    def __init__(
        self,
        catalog: AssetCatalog,
        cache: ConvertedAudioCache,
        *,
        entry_category: str,
        debounce_ms: int = 1600,
    ) -> None:
        super().__init__(catalog, debounce_ms=debounce_ms)
        self.cache = cache
        self.entry_category = entry_category

    async def apply_changes(self, paths: list[Path]) -> None:
        for path in paths:
            # Only <category>/<file> entries name a sound
            if len(path.parts) != 2:
                continue
            self.cache.evict(asset_name_from_filename(path.name))
        await self.cache.precache(self.catalog.category_paths(self.entry_category))


class StickerCatalogWatcher(CatalogWatcher):
    """Re-render the montage pages of every changed sticker pack."""

    def __init__(
        self,
        catalog: AssetCatalog,
        pages: StickerPageCache,
        *,
        debounce_ms: int = 1600,
    ) -> None:
        super().__init__(catalog, debounce_ms=debounce_ms)
        self.pages = pages

    async def apply_changes(self, paths: list[Path]) -> None:
        packs = sorted({path.parts[0] for path in paths if path.parts})
        known = set(self.catalog.categories())
        for pack_name in packs:
            if pack_name in known:
                await asyncio.to_thread(self.pages.build_pack, pack_name)
            else:
                await asyncio.to_thread(self.pages.drop_pack, pack_name)
                logger.info("watcher.sticker_pack_removed", pack_name=pack_name)
