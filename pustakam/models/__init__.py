"""Data models for the Pustakam book generator."""

from pustakam.models.backup import CURRENT_BACKUP_VERSION, BackupEnvelope
from pustakam.models.book import (
    BookModule,
    BookProject,
    BookRoadmap,
    BookSession,
    BookStatus,
    ComplexityLevel,
    GenerationMode,
    Language,
    ModuleStatus,
    RoadmapModule,
    SessionPreferences,
    count_words,
)
from pustakam.models.bookmark import BookmarkStats, ReadingBookmark
from pustakam.models.settings import (
    PROVIDER_DISPLAY_NAMES,
    PROVIDER_MODELS,
    APISettings,
    provider_display_name,
)

__all__ = [
    "APISettings",
    "BackupEnvelope",
    "BookModule",
    "BookProject",
    "BookRoadmap",
    "BookSession",
    "BookStatus",
    "BookmarkStats",
    "ComplexityLevel",
    "CURRENT_BACKUP_VERSION",
    "GenerationMode",
    "Language",
    "ModuleStatus",
    "PROVIDER_DISPLAY_NAMES",
    "PROVIDER_MODELS",
    "ReadingBookmark",
    "RoadmapModule",
    "SessionPreferences",
    "count_words",
    "provider_display_name",
]
