"""Versioned backup envelope and the migrations between its versions."""

import re
from collections.abc import Callable
from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from pustakam.models.book import BookProject
from pustakam.models.settings import APISettings

CURRENT_BACKUP_VERSION = "2"

# camelCase settings fields of the first backup format, mapped to provider ids
_V1_API_KEY_FIELDS: dict[str, str] = {
    "cerebrasApiKey": "cerebras",
    "googleApiKey": "google",
    "mistralApiKey": "mistral",
    "xaiApiKey": "xai",
    "groqApiKey": "groq",
    "openRouterApiKey": "openrouter",
    "cohereApiKey": "cohere",
    "longcatApiKey": "longcat",
}

_CAMEL_BOUNDARY = re.compile(r"(?<!^)(?=[A-Z])")


class BackupEnvelope(BaseModel):
    """Everything a profile owns, in one portable document."""

    version: str = CURRENT_BACKUP_VERSION
    export_date: datetime = Field(default_factory=datetime.now)
    books: list[BookProject] = Field(default_factory=list)
    settings: APISettings = Field(default_factory=APISettings)


def _snake_case(key: str) -> str:
    return _CAMEL_BOUNDARY.sub("_", key).lower()


def _snake_keys(value: Any) -> Any:
    if isinstance(value, dict):
        return {_snake_case(k): _snake_keys(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_snake_keys(item) for item in value]
    return value


def _migrate_v1_book(raw: dict[str, Any]) -> dict[str, Any]:
    book = _snake_keys(raw)
    if not isinstance(book.get("session"), dict):
        book["session"] = {
            "goal": book.get("goal") or book.get("title") or "",
            "language": book.get("language", "en"),
            "generation_mode": book.get("generation_mode", "stellar"),
        }
    _pad_module_slots(book)
    return book


def _pad_module_slots(book: dict[str, Any]) -> None:
    """Give a partially generated book one module slot per roadmap entry.

    The first format stored only the modules generated so far; the missing
    ones become pending slots so the book can be resumed.
    """
    roadmap = book.get("roadmap")
    modules = book.get("modules")
    if not isinstance(roadmap, dict) or not isinstance(roadmap.get("modules"), list):
        return
    if not isinstance(modules, list) or not modules:
        return

    by_roadmap_id = {
        m.get("roadmap_module_id"): m for m in modules if isinstance(m, dict)
    }
    book["modules"] = [
        by_roadmap_id.get(entry.get("id"))
        or {
            "roadmap_module_id": entry.get("id", ""),
            "title": entry.get("title", ""),
            "status": "pending",
        }
        for entry in roadmap["modules"]
        if isinstance(entry, dict)
    ]


def _migrate_v1_settings(raw: dict[str, Any]) -> dict[str, Any]:
    api_keys = {
        provider: raw[field]
        for field, provider in _V1_API_KEY_FIELDS.items()
        if isinstance(raw.get(field), str) and raw[field]
    }
    settings: dict[str, Any] = {"api_keys": api_keys}
    for field in ("selectedProvider", "selectedModel", "defaultGenerationMode", "defaultLanguage"):
        if field in raw:
            settings[_snake_case(field)] = raw[field]
    return settings


def migrate_v1_to_v2(data: dict[str, Any]) -> dict[str, Any]:
    """Convert the camelCase browser backup ("1.0.0") to version 2."""
    books = data.get("books") or []
    settings = data.get("settings") or {}
    return {
        "version": "2",
        "export_date": data.get("exportDate") or data.get("export_date") or datetime.now().isoformat(),
        "books": [_migrate_v1_book(b) for b in books if isinstance(b, dict)],
        "settings": _migrate_v1_settings(settings) if isinstance(settings, dict) else {},
    }


# Each entry upgrades one version to the next
BACKUP_MIGRATIONS: dict[str, Callable[[dict[str, Any]], dict[str, Any]]] = {
    "1.0.0": migrate_v1_to_v2,
    "1.0": migrate_v1_to_v2,
}


def migrate_backup_data(data: dict[str, Any]) -> dict[str, Any]:
    """Apply migrations until ``data`` is at the current version.

    Args:
        data: Decoded backup document of any known version.

    Returns:
        The document in the current version's shape.

    Raises:
        ValueError: If the version is unknown.
    """
    version = str(data.get("version", ""))
    while version != CURRENT_BACKUP_VERSION:
        migration = BACKUP_MIGRATIONS.get(version)
        if migration is None:
            raise ValueError(f"Unsupported backup version: {version!r}")
        data = migration(data)
        version = str(data.get("version", ""))
    return data
