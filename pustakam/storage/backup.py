"""Backup export and import of a profile's books and settings."""

import json
import logging
from datetime import date, datetime
from typing import Literal

import chardet
from pydantic import BaseModel, Field, ValidationError

from pustakam.errors import BackupFormatError, StorageError
from pustakam.models.backup import CURRENT_BACKUP_VERSION, BackupEnvelope, migrate_backup_data
from pustakam.models.book import BookProject
from pustakam.models.settings import APISettings
from pustakam.storage.repository import LocalStore

logger = logging.getLogger(__name__)

ImportMode = Literal["merge", "replace"]


class ImportPreview(BaseModel):
    """What an import would change, shown before applying it."""

    book_count: int = 0
    duplicate_book_ids: list[str] = Field(default_factory=list)
    settings_conflict: bool = False


class ImportSummary(BaseModel):
    books_added: int = 0
    books_skipped: int = 0
    settings_saved: bool = False


def backup_filename(today: date | None = None) -> str:
    today = today or date.today()
    return f"pustakam-backup-{today.isoformat()}.json"


def export_backup(store: LocalStore, user_id: str | None = None) -> str:
    """Serialize the profile's books and settings into a backup document.

    Args:
        store: Repository to read from.
        user_id: Book partition to export; None for anonymous books.

    Returns:
        Pretty-printed JSON text of the current backup version.
    """
    envelope = BackupEnvelope(
        version=CURRENT_BACKUP_VERSION,
        export_date=datetime.now(),
        books=store.get_books(user_id),
        settings=store.get_settings(),
    )
    return json.dumps(envelope.model_dump(mode="json"), ensure_ascii=False, indent=2)


def decode_backup_bytes(raw: bytes) -> str:
    """Decode a backup file read as bytes.

    Tries UTF-8 first, then falls back to encoding detection.
    """
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        pass

    detected = chardet.detect(raw)
    encoding = detected.get("encoding") or "utf-8"
    confidence = detected.get("confidence", 0)
    if confidence < 0.7:
        logger.warning(
            "Low confidence encoding detection for backup: %s (%.0f%%)",
            encoding,
            confidence * 100,
        )
    try:
        return raw.decode(encoding)
    except (UnicodeDecodeError, LookupError) as exc:
        raise BackupFormatError(f"Could not decode backup file as {encoding}") from exc


def load_backup(data: str | bytes) -> BackupEnvelope:
    """Parse, migrate and validate a backup document.

    Args:
        data: Backup JSON, as text or raw file bytes.

    Returns:
        The backup in the current version.

    Raises:
        BackupFormatError: If the document is not a usable backup.
    """
    text = decode_backup_bytes(data) if isinstance(data, bytes) else data
    try:
        raw = json.loads(text)
    except json.JSONDecodeError as exc:
        raise BackupFormatError(
            f"Backup is not valid JSON: {exc}",
            user_message="Failed to read import file. Please check the file format.",
        ) from exc
    if not isinstance(raw, dict) or not isinstance(raw.get("books", []), list):
        raise BackupFormatError("Backup must be an object with a list of books")

    # Browser exports carry no version field in some early builds
    raw.setdefault("version", "1.0.0")
    try:
        migrated = migrate_backup_data(raw)
        return BackupEnvelope.model_validate(migrated)
    except (ValueError, ValidationError) as exc:
        raise BackupFormatError(f"Invalid backup: {exc}") from exc


def preview_import(
    store: LocalStore, envelope: BackupEnvelope, user_id: str | None = None
) -> ImportPreview:
    existing_ids = {book.id for book in store.get_books(user_id)}
    existing_settings = store.get_settings()
    return ImportPreview(
        book_count=len(envelope.books),
        duplicate_book_ids=[b.id for b in envelope.books if b.id in existing_ids],
        settings_conflict=existing_settings != envelope.settings,
    )


def _merge_settings(existing: APISettings, incoming: APISettings) -> APISettings:
    """Take the incoming settings but keep every existing non-empty API key."""
    api_keys = dict(incoming.api_keys)
    for provider, key in existing.api_keys.items():
        if key.strip():
            api_keys[provider] = key
    return incoming.model_copy(update={"api_keys": api_keys})


def _merge_books(existing: list[BookProject], incoming: list[BookProject]) -> tuple[list[BookProject], int]:
    merged = list(existing)
    known = {book.id for book in existing}
    added = 0
    for book in incoming:
        if book.id in known:
            continue
        merged.append(book)
        known.add(book.id)
        added += 1
    return merged, added


def apply_import(
    store: LocalStore,
    envelope: BackupEnvelope,
    mode: ImportMode = "merge",
    user_id: str | None = None,
) -> ImportSummary:
    """Write an imported backup into the store.

    ``merge`` keeps existing books on id collisions and keeps existing
    non-empty API keys; ``replace`` overwrites books and settings.

    Raises:
        StorageError: If the books or settings could not be written.
    """
    if mode == "replace":
        books = list(envelope.books)
        settings = envelope.settings
        added = len(books)
    elif mode == "merge":
        books, added = _merge_books(store.get_books(user_id), envelope.books)
        settings = _merge_settings(store.get_settings(), envelope.settings)
    else:
        raise ValueError(f"Unknown import mode: {mode!r}")

    if not store.save_books(books, user_id):
        raise StorageError("Failed to save imported books")
    settings_saved = store.save_settings(settings)
    if not settings_saved:
        logger.warning("Imported books were saved but settings were not")

    logger.info("Imported backup (%s): %d books added", mode, added)
    return ImportSummary(
        books_added=added,
        books_skipped=len(envelope.books) - added,
        settings_saved=settings_saved,
    )
