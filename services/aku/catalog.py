"""Asset catalogs: name -> file lookups and per-category listings."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path

from services.common.structured_logging import get_logger

logger = get_logger(__name__, service_name="aku")


def normalize_asset_name(raw: str) -> str:
    """Turn user input into a catalog key: trimmed, inner spaces as underscores."""
    return raw.strip().replace(" ", "_")


def asset_name_from_filename(filename: str) -> str:
    """Catalog key of a file: ``air horn.v2.mp3`` -> ``air_horn.v2``."""
    return normalize_asset_name(Path(filename).stem)


@dataclass(frozen=True, slots=True)
class CatalogSnapshot:
    """Immutable result of one directory scan."""

    assets: dict[str, Path] = field(default_factory=dict)
    categories: dict[str, tuple[str, ...]] = field(default_factory=dict)


def scan_asset_directory(root: Path) -> CatalogSnapshot:
    """Read ``root/<category>/<asset file>`` into a snapshot.

    An unreadable root yields an empty snapshot; an unreadable category is
    skipped. Both are logged.
    """
    assets: dict[str, Path] = {}
    categories: dict[str, tuple[str, ...]] = {}

    try:
        entries = sorted(root.iterdir())
    except OSError as exc:
        logger.error("catalog.read_root_failed", asset_path=str(root), error=str(exc))
        return CatalogSnapshot()

    for category_dir in entries:
        if not category_dir.is_dir():
            continue
        try:
            files = sorted(category_dir.iterdir())
        except OSError as exc:
            logger.error(
                "catalog.read_category_failed",
                category_path=str(category_dir),
                error=str(exc),
            )
            continue

        names: list[str] = []
        for asset_file in files:
            if asset_file.is_dir():
                continue
            name = asset_name_from_filename(asset_file.name)
            assets[name] = asset_file
            names.append(name)
        categories[category_dir.name] = tuple(names)

    return CatalogSnapshot(assets=assets, categories=categories)


class AssetCatalog:
    """Lock-guarded view over one asset tree.

    Readers always see a complete snapshot: ``reload`` scans without holding
    the lock and swaps the new snapshot in at once.
    """

    def __init__(self, root: Path, *, kind: str) -> None:
        self.root = Path(root)
        self.kind = kind
        self._lock = threading.Lock()
        self._snapshot = CatalogSnapshot()

    def reload(self) -> CatalogSnapshot:
        snapshot = scan_asset_directory(self.root)
        with self._lock:
            self._snapshot = snapshot
        logger.info(
            "catalog.loaded",
            kind=self.kind,
            categories=len(snapshot.categories),
            assets=len(snapshot.assets),
        )
        return snapshot

    def snapshot(self) -> CatalogSnapshot:
        with self._lock:
            return self._snapshot

    def get_path(self, name: str) -> Path | None:
        with self._lock:
            return self._snapshot.assets.get(name)

    def categories(self) -> list[str]:
        with self._lock:
            return sorted(self._snapshot.categories)

    def category_assets(self, category: str) -> list[str] | None:
        """Sorted asset names of ``category``, or None if there is no such category."""
        with self._lock:
            names = self._snapshot.categories.get(category)
        if names is None:
            return None
        return sorted(names)

    def category_paths(self, category: str) -> dict[str, Path]:
        with self._lock:
            names = self._snapshot.categories.get(category, ())
            return {
                name: self._snapshot.assets[name]
                for name in names
                if name in self._snapshot.assets
            }

    def __len__(self) -> int:
        with self._lock:
            return len(self._snapshot.assets)

    def __contains__(self, name: object) -> bool:
        with self._lock:
            return name in self._snapshot.assets
