"""Settings and book persistence on top of a key/value backend.

Books live as one JSON list per profile partition: ``pustakam-books`` for
anonymous use and ``pustakam-books-<user_id>`` once a user id is known.
Nothing in here raises on bad stored data or a failing backend; errors are
logged and reads fall back to defaults while writes report ``False``.
"""

import json
import logging

from pydantic import ValidationError

from pustakam.errors import StorageError, StorageQuotaError
from pustakam.models.book import BookProject
from pustakam.models.settings import APISettings
from pustakam.storage.kv import KeyValueStore

logger = logging.getLogger(__name__)

SETTINGS_KEY = "pustakam-settings"
BOOKS_KEY = "pustakam-books"


def books_key(user_id: str | None = None) -> str:
    """Return the storage key of the book partition for ``user_id``."""
    return f"{BOOKS_KEY}-{user_id}" if user_id else BOOKS_KEY


def dump_json(data: object) -> str:
    """Serialize deterministically so equal snapshots give equal text."""
    return json.dumps(data, ensure_ascii=False, sort_keys=True, separators=(",", ":"))


class LocalStore:
    """Repository for settings and book projects."""

    def __init__(self, kv: KeyValueStore) -> None:
        self.kv = kv

    def _read(self, key: str) -> str | None:
        try:
            return self.kv.get(key)
        except StorageError:
            logger.exception("Failed to read %s", key)
            return None

    def _write(self, key: str, value: str) -> bool:
        try:
            self.kv.set(key, value)
        except StorageQuotaError:
            logger.error("Storage quota exceeded while writing %s", key)
            return False
        except StorageError:
            logger.exception("Failed to write %s", key)
            return False
        return True

    def _delete(self, key: str) -> bool:
        try:
            self.kv.delete(key)
        except StorageError:
            logger.exception("Failed to delete %s", key)
            return False
        return True

    def get_settings(self) -> APISettings:
        """Load settings merged over defaults. Never raises."""
        raw = self._read(SETTINGS_KEY)
        if not raw:
            return APISettings()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored settings are not valid JSON, using defaults")
            return APISettings()
        if not isinstance(data, dict):
            logger.warning("Stored settings are not an object, using defaults")
            return APISettings()
        try:
            return APISettings.model_validate(data)
        except ValidationError as exc:
            logger.warning("Stored settings rejected, using defaults: %s", exc)
            return APISettings()

    def save_settings(self, settings: APISettings) -> bool:
        return self._write(SETTINGS_KEY, dump_json(settings.model_dump(mode="json")))

    def _migrate_anonymous_books(self, user_id: str) -> None:
        """Move anonymous books into a user's empty partition, once."""
        user_key = books_key(user_id)
        if self._read(user_key) is not None:
            return
        anonymous = self._read(BOOKS_KEY)
        if not anonymous:
            return
        if self._write(user_key, anonymous):
            self._delete(BOOKS_KEY)
            logger.info("Migrated anonymous books to user %s", user_id)

    def get_books(self, user_id: str | None = None) -> list[BookProject]:
        """Load all books of a partition, skipping any that fail validation."""
        if user_id:
            self._migrate_anonymous_books(user_id)

        raw = self._read(books_key(user_id))
        if not raw:
            return []
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            logger.warning("Stored books for %s are not valid JSON", books_key(user_id))
            return []
        if not isinstance(data, list):
            logger.warning("Stored books for %s are not a list", books_key(user_id))
            return []

        books: list[BookProject] = []
        for item in data:
            try:
                books.append(BookProject.model_validate(item))
            except ValidationError as exc:
                book_id = item.get("id") if isinstance(item, dict) else None
                logger.warning("Skipping invalid stored book %s: %s", book_id, exc)
        return books

    def save_books(self, books: list[BookProject], user_id: str | None = None) -> bool:
        payload = dump_json([book.model_dump(mode="json") for book in books])
        return self._write(books_key(user_id), payload)

    def get_book(self, book_id: str, user_id: str | None = None) -> BookProject | None:
        for book in self.get_books(user_id):
            if book.id == book_id:
                return book
        return None

    def save_book(self, project: BookProject, user_id: str | None = None) -> bool:
        """Write a snapshot of ``project``, replacing any earlier one by id."""
        books = self.get_books(user_id)
        for i, existing in enumerate(books):
            if existing.id == project.id:
                books[i] = project
                break
        else:
            books.append(project)
        return self.save_books(books, user_id)

    def delete_book(self, book_id: str, user_id: str | None = None) -> bool:
        books = self.get_books(user_id)
        remaining = [b for b in books if b.id != book_id]
        if len(remaining) == len(books):
            return False
        return self.save_books(remaining, user_id)

    def clear_books(self, user_id: str | None = None) -> bool:
        return self._delete(books_key(user_id))

    def clear_all(self) -> bool:
        """Remove every key this application owns."""
        try:
            keys = self.kv.keys()
        except StorageError:
            logger.exception("Failed to list stored keys")
            return False
        ok = True
        for key in keys:
            if key.startswith("pustakam-"):
                ok = self._delete(key) and ok
        return ok
