"""Reaction-driven paginated help messages."""

from __future__ import annotations

import math
import threading
from collections import OrderedDict
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, replace
from typing import ClassVar

import discord

from services.common.structured_logging import get_logger

logger = get_logger(__name__, service_name="aku")

STRINGS_PER_PAGE = 10
STICKERS_PER_ROW = 4
STICKER_ROWS_PER_PAGE = 6
STICKERS_PER_PAGE = STICKERS_PER_ROW * STICKER_ROWS_PER_PAGE

PREVIOUS_PAGE_EMOJI = "⬅️"
NEXT_PAGE_EMOJI = "➡️"
PAGINATION_REACTIONS = (PREVIOUS_PAGE_EMOJI, NEXT_PAGE_EMOJI)

ROOT_LISTING_TITLE = "Categories"


def total_pages(total_items: int, page_size: int) -> int:
    return math.ceil(total_items / page_size)


def page_range(page: int, total_items: int, page_size: int) -> tuple[int, int]:
    """Half-open ``[start, end)`` slice of page ``page``."""
    start = page * page_size
    return start, min(start + page_size, total_items)


def page_footer(page: int, page_count: int) -> str:
    return f"Page {page + 1}/{page_count}"


@dataclass(frozen=True, slots=True)
class TextListing:
    """Paged list of names (categories or the assets of one category)."""

    page_size: ClassVar[int] = STRINGS_PER_PAGE

    title: str
    items: tuple[str, ...]

    @property
    def page_count(self) -> int:
        return total_pages(len(self.items), self.page_size)

    def page_items(self, page: int) -> tuple[str, ...]:
        start, end = page_range(page, len(self.items), self.page_size)
        return self.items[start:end]

    def render(self, page: int) -> discord.Embed:
        embed = discord.Embed(
            title=self.title,
            description="".join(f"{item}\n" for item in self.page_items(page)),
        )
        embed.set_footer(text=page_footer(page, self.page_count))
        return embed


@dataclass(frozen=True, slots=True)
class StickerPackListing:
    """One pre-rendered montage image per page, referenced by URL."""

    pack_name: str
    page_urls: tuple[str, ...]

    @property
    def page_count(self) -> int:
        return len(self.page_urls)

    def render(self, page: int) -> discord.Embed:
        embed = discord.Embed(title=self.pack_name)
        embed.set_image(url=self.page_urls[page])
        embed.set_footer(text=page_footer(page, self.page_count))
        return embed


HelpListing = TextListing | StickerPackListing


@dataclass(frozen=True, slots=True)
class HelpSession:
    name: str
    listing: HelpListing
    page: int = 0

    @property
    def page_count(self) -> int:
        return self.listing.page_count

    def render(self) -> discord.Embed:
        return self.listing.render(self.page)


def page_delta(emoji: str) -> int:
    if emoji == PREVIOUS_PAGE_EMOJI:
        return -1
    if emoji == NEXT_PAGE_EMOJI:
        return 1
    return 0


def root_listing(categories: Iterable[str]) -> TextListing:
    return TextListing(title=ROOT_LISTING_TITLE, items=tuple(sorted(categories)))


def category_listing(category: str, assets: Iterable[str]) -> TextListing:
    return TextListing(title=category, items=tuple(sorted(assets)))


def sticker_pack_listing(pack_name: str, page_urls: Sequence[str]) -> StickerPackListing:
    return StickerPackListing(pack_name=pack_name, page_urls=tuple(page_urls))


class HelpSessionRegistry:
    """Help sessions keyed by the id of the message showing them.

    Args:
        max_sessions: Oldest sessions are forgotten beyond this many (0 = unbounded)
    """

    def __init__(self, max_sessions: int = 0) -> None:
        self._max_sessions = max_sessions
        self._lock = threading.Lock()
        self._sessions: OrderedDict[int, HelpSession] = OrderedDict()

    def open(self, message_id: int, session: HelpSession) -> None:
        with self._lock:
            self._sessions[message_id] = session
            self._sessions.move_to_end(message_id)
            while self._max_sessions and len(self._sessions) > self._max_sessions:
                evicted, _ = self._sessions.popitem(last=False)
                logger.debug("help_pages.session_evicted", message_id=evicted)

    def get(self, message_id: int) -> HelpSession | None:
        with self._lock:
            return self._sessions.get(message_id)

    def __contains__(self, message_id: object) -> bool:
        with self._lock:
            return message_id in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return len(self._sessions)

    def turn(self, message_id: int, emoji: str) -> HelpSession | None:
        """Apply a pagination reaction.

        Returns:
            The updated session, or None if the message is unknown, the emoji is
            not a pagination marker or the target page is out of range
        """
        delta = page_delta(emoji)
        if delta == 0:
            return None
        with self._lock:
            session = self._sessions.get(message_id)
            if session is None:
                return None
            candidate = session.page + delta
            if candidate < 0 or candidate >= session.page_count:
                return None
            updated = replace(session, page=candidate)
            self._sessions[message_id] = updated
            self._sessions.move_to_end(message_id)
        return updated
