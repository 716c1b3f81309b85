"""Reading bookmarks, stored independently of the books they point to."""

import json
import logging
from datetime import datetime

from pydantic import ValidationError

from pustakam.errors import StorageError
from pustakam.models.bookmark import BookmarkStats, ReadingBookmark
from pustakam.storage.kv import KeyValueStore
from pustakam.storage.repository import dump_json

logger = logging.getLogger(__name__)

BOOKMARKS_KEY = "pustakam-reading-bookmarks"


def percent_complete(module_index: int, total_modules: int) -> int:
    """Percentage read when positioned in module ``module_index`` (0-based)."""
    if total_modules <= 0:
        return 0
    return round((module_index + 1) / total_modules * 100)


class BookmarkStore:
    """Bookmark persistence keyed by book id. Never raises on storage errors."""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    def get_all_bookmarks(self) -> dict[str, ReadingBookmark]:
        try:
            raw = self.kv.get(BOOKMARKS_KEY)
        except StorageError:
            logger.exception("Failed to read bookmarks")
            return {}
        if not raw:
            return {}
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored bookmarks are not valid JSON")
            return {}
        if not isinstance(data, dict):
            return {}

        bookmarks: dict[str, ReadingBookmark] = {}
        for book_id, item in data.items():
            try:
                bookmarks[book_id] = ReadingBookmark.model_validate(item)
            except ValidationError:
                logger.warning("Skipping invalid bookmark for %s", book_id)
        return bookmarks

    def _save_all(self, bookmarks: dict[str, ReadingBookmark]) -> bool:
        payload = dump_json({k: v.model_dump(mode="json") for k, v in bookmarks.items()})
        try:
            self.kv.set(BOOKMARKS_KEY, payload)
        except StorageError:
            logger.exception("Failed to save bookmarks")
            return False
        return True

    def save_bookmark(
        self,
        book_id: str,
        module_index: int,
        scroll_position: float,
        total_modules: int,
    ) -> ReadingBookmark | None:
        """Record the reader's position in a book.

        Args:
            book_id: Id of the book being read.
            module_index: 0-based index of the module on screen.
            scroll_position: Scroll offset within the module.
            total_modules: Number of modules in the book.

        Returns:
            The stored bookmark, or None if it could not be written.
        """
        bookmark = ReadingBookmark(
            book_id=book_id,
            module_index=module_index,
            scroll_position=scroll_position,
            last_read_at=datetime.now(),
            percent_complete=percent_complete(module_index, total_modules),
        )
        bookmarks = self.get_all_bookmarks()
        bookmarks[book_id] = bookmark
        return bookmark if self._save_all(bookmarks) else None

    def get_bookmark(self, book_id: str) -> ReadingBookmark | None:
        return self.get_all_bookmarks().get(book_id)

    def update_scroll_position(self, book_id: str, scroll_position: float) -> bool:
        """Move an existing bookmark's scroll offset. No-op without one."""
        bookmarks = self.get_all_bookmarks()
        bookmark = bookmarks.get(book_id)
        if bookmark is None:
            return False
        bookmark.scroll_position = scroll_position
        bookmark.last_read_at = datetime.now()
        return self._save_all(bookmarks)

    def delete_bookmark(self, book_id: str) -> bool:
        bookmarks = self.get_all_bookmarks()
        if bookmarks.pop(book_id, None) is None:
            return False
        return self._save_all(bookmarks)

    def clear_old_bookmarks(self, days_old: int = 30) -> int:
        """Drop bookmarks not touched for more than ``days_old`` days."""
        now = datetime.now()
        bookmarks = self.get_all_bookmarks()
        stale = [
            book_id
            for book_id, bookmark in bookmarks.items()
            if (now - bookmark.last_read_at.replace(tzinfo=None)).days > days_old
        ]
        for book_id in stale:
            del bookmarks[book_id]
        if stale and not self._save_all(bookmarks):
            return 0
        return len(stale)

    def bookmark_stats(self, book_id: str) -> BookmarkStats:
        bookmark = self.get_bookmark(book_id)
        if bookmark is None:
            return BookmarkStats()
        elapsed = datetime.now() - bookmark.last_read_at.replace(tzinfo=None)
        return BookmarkStats(
            has_bookmark=True,
            percent_complete=bookmark.percent_complete,
            last_read_at=bookmark.last_read_at,
            days_ago=max(elapsed.days, 0),
        )
