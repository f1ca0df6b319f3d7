"""Sticker pack montage pages rendered with Pillow."""

from __future__ import annotations

import math
import threading
from collections.abc import Iterable, Sequence
from pathlib import Path

from PIL import Image, ImageDraw, ImageFont, ImageOps, UnidentifiedImageError

from services.common.structured_logging import get_logger

from .cache_dirs import remove_cache_dir, reset_cache_dir
from .help_pages import (
    STICKER_ROWS_PER_PAGE,
    STICKERS_PER_PAGE,
    STICKERS_PER_ROW,
    page_range,
    total_pages,
)

logger = get_logger(__name__, service_name="aku")

SOURCES_ENTRY = "sources"

TILE_SIZE = (128, 128)
TILE_PAD_X = 16
TILE_PAD_Y = 8
BORDER_X = 32
BORDER_Y = 16
LABEL_FONT_SIZE = 14
LABEL_COLOR = (0, 0, 0, 255)
BACKGROUND = (255, 255, 255, 0)


def sticker_page_filename(pack_name: str, page: int) -> str:
    return f"{pack_name}-{page}.png"


def sticker_label(path: Path) -> str:
    """Label under a tile: the file name up to its first dot."""
    return path.name.split(".", 1)[0]


def list_pack_stickers(pack_dir: Path) -> list[Path]:
    """Sticker files of a pack in name order, skipping the ``sources`` entry."""
    try:
        entries = sorted(pack_dir.iterdir())
    except OSError as exc:
        logger.error("stickers.read_pack_failed", pack_dir=str(pack_dir), error=str(exc))
        return []
    return [
        entry
        for entry in entries
        if entry.name != SOURCES_ENTRY and not entry.is_dir()
    ]


def load_label_font(
    font_path: Path, size: int = LABEL_FONT_SIZE
) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
    try:
        return ImageFont.truetype(str(font_path), size)
    except OSError as exc:
        logger.warning(
            "stickers.font_unavailable", font_path=str(font_path), error=str(exc)
        )
        return ImageFont.load_default()


def _label_height(font: ImageFont.FreeTypeFont | ImageFont.ImageFont) -> int:
    left, top, right, bottom = font.getbbox("Ag")
    return int(bottom - top) + 4


def render_sticker_page(
    sticker_paths: Sequence[Path],
    out_path: Path,
    font: ImageFont.FreeTypeFont | ImageFont.ImageFont,
) -> int:
    """Render up to one page of stickers as a labelled grid on a transparent canvas.

    Each sticker is fitted into a 128x128 tile with 16 px horizontal and 8 px
    vertical padding, its label below, four tiles per row, and the whole grid
    framed by a 32x16 px border. Unreadable images are skipped.

    Returns:
        Number of stickers placed on the page
    """
    tiles: list[tuple[Image.Image, str]] = []
    for sticker_path in sticker_paths[:STICKERS_PER_PAGE]:
        try:
            with Image.open(sticker_path) as image:
                tile = ImageOps.contain(image.convert("RGBA"), TILE_SIZE)
        except (OSError, UnidentifiedImageError) as exc:
            logger.warning(
                "stickers.image_unreadable",
                sticker_path=str(sticker_path),
                error=str(exc),
            )
            continue
        tiles.append((tile, sticker_label(sticker_path)))

    columns = max(1, min(STICKERS_PER_ROW, len(tiles)))
    rows = max(1, min(STICKER_ROWS_PER_PAGE, math.ceil(len(tiles) / STICKERS_PER_ROW)))
    label_height = _label_height(font)
    cell_width = TILE_SIZE[0] + 2 * TILE_PAD_X
    cell_height = TILE_SIZE[1] + 2 * TILE_PAD_Y + label_height

    canvas = Image.new(
        "RGBA",
        (columns * cell_width + 2 * BORDER_X, rows * cell_height + 2 * BORDER_Y),
        BACKGROUND,
    )
    draw = ImageDraw.Draw(canvas)

    for index, (tile, label) in enumerate(tiles):
        row, column = divmod(index, STICKERS_PER_ROW)
        cell_x = BORDER_X + column * cell_width
        cell_y = BORDER_Y + row * cell_height
        tile_x = cell_x + TILE_PAD_X + (TILE_SIZE[0] - tile.width) // 2
        tile_y = cell_y + TILE_PAD_Y + (TILE_SIZE[1] - tile.height) // 2
        canvas.alpha_composite(tile, (tile_x, tile_y))
        label_width = draw.textlength(label, font=font)
        draw.text(
            (
                cell_x + (cell_width - label_width) / 2,
                cell_y + TILE_PAD_Y + TILE_SIZE[1] + 2,
            ),
            label,
            fill=LABEL_COLOR,
            font=font,
        )

    out_path.parent.mkdir(parents=True, exist_ok=True)
    canvas.save(out_path, format="PNG")
    return len(tiles)


class StickerPageCache:
    """Pre-rendered montage pages of every sticker pack, with their public URLs."""

    def __init__(
        self,
        cache_dir: Path,
        sticker_root: Path,
        base_url: str,
        font_path: Path,
    ) -> None:
        self.cache_dir = Path(cache_dir)
        self.sticker_root = Path(sticker_root)
        self.base_url = base_url
        self._font_path = Path(font_path)
        self._font: ImageFont.FreeTypeFont | ImageFont.ImageFont | None = None
        self._lock = threading.Lock()
        self._pages: dict[str, tuple[str, ...]] = {}

    def reset(self) -> None:
        reset_cache_dir(self.cache_dir)
        with self._lock:
            self._pages = {}

    def cleanup(self) -> None:
        remove_cache_dir(self.cache_dir)

    def page_path(self, pack_name: str, page: int) -> Path:
        return self.cache_dir / sticker_page_filename(pack_name, page)

    def permalink(self, pack_name: str, page: int) -> str:
        base = self.base_url if self.base_url.endswith("/") else self.base_url + "/"
        return base + sticker_page_filename(pack_name, page)

    def page_urls(self, pack_name: str) -> tuple[str, ...] | None:
        with self._lock:
            return self._pages.get(pack_name)

    def packs(self) -> list[str]:
        with self._lock:
            return sorted(self._pages)

    def _get_font(self) -> ImageFont.FreeTypeFont | ImageFont.ImageFont:
        if self._font is None:
            self._font = load_label_font(self._font_path)
        return self._font

    def build_pack(self, pack_name: str) -> tuple[str, ...]:
        """Render every page of one pack and publish its page URLs."""
        stickers = list_pack_stickers(self.sticker_root / pack_name)
        page_count = total_pages(len(stickers), STICKERS_PER_PAGE)
        font = self._get_font()

        urls: list[str] = []
        for page in range(page_count):
            start, end = page_range(page, len(stickers), STICKERS_PER_PAGE)
            try:
                render_sticker_page(stickers[start:end], self.page_path(pack_name, page), font)
            except OSError as exc:
                logger.error(
                    "stickers.render_failed",
                    pack_name=pack_name,
                    page=page,
                    error=str(exc),
                )
                break
            urls.append(self.permalink(pack_name, page))

        self._remove_stale_pages(pack_name, len(urls))
        with self._lock:
            self._pages[pack_name] = tuple(urls)
        logger.info(
            "stickers.pack_rendered",
            pack_name=pack_name,
            stickers=len(stickers),
            pages=len(urls),
        )
        return tuple(urls)

    def build(self, pack_names: Iterable[str]) -> int:
        """Render every listed pack; returns the total number of pages."""
        return sum(len(self.build_pack(pack_name)) for pack_name in pack_names)

    def drop_pack(self, pack_name: str) -> None:
        self._remove_stale_pages(pack_name, 0)
        with self._lock:
            self._pages.pop(pack_name, None)

    def _remove_stale_pages(self, pack_name: str, keep: int) -> None:
        with self._lock:
            previous = len(self._pages.get(pack_name, ()))
        for page in range(keep, previous):
            self.page_path(pack_name, page).unlink(missing_ok=True)
