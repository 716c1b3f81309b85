"""Tests for data models."""

import pytest
from pydantic import ValidationError

from pustakam.models import (
    APISettings,
    BookModule,
    BookProject,
    BookRoadmap,
    BookSession,
    BookStatus,
    ModuleStatus,
    RoadmapModule,
    count_words,
)
from pustakam.models.backup import BackupEnvelope, migrate_backup_data


def _roadmap(n: int) -> BookRoadmap:
    return BookRoadmap(
        modules=[RoadmapModule(id=f"module_{i}", title=f"Module {i}", order=i) for i in range(1, n + 1)],
        total_modules=n,
    )


class TestBookProject:
    def test_create_with_defaults(self) -> None:
        project = BookProject(title="Rust", goal="Learn Rust", session=BookSession(goal="Learn Rust"))
        assert project.id
        assert project.status == BookStatus.PLANNING
        assert project.progress == 0
        assert project.modules == []
        assert project.category == "general"

    def test_unique_ids(self) -> None:
        session = BookSession(goal="x")
        a = BookProject(title="A", goal="x", session=session)
        b = BookProject(title="B", goal="x", session=session)
        assert a.id != b.id

    def test_module_count_must_match_roadmap(self) -> None:
        with pytest.raises(ValidationError):
            BookProject(
                title="T",
                goal="g",
                session=BookSession(goal="g"),
                roadmap=_roadmap(3),
                modules=[BookModule(roadmap_module_id="module_1", title="Module 1")],
            )

    def test_roadmap_without_slots_is_valid(self) -> None:
        project = BookProject(title="T", goal="g", session=BookSession(goal="g"), roadmap=_roadmap(3))
        assert project.roadmap.total_modules == 3

    def test_completed_requires_all_modules_completed(self) -> None:
        modules = [
            BookModule(roadmap_module_id="module_1", title="Module 1", status=ModuleStatus.COMPLETED),
            BookModule(roadmap_module_id="module_2", title="Module 2", status=ModuleStatus.ERROR),
        ]
        with pytest.raises(ValidationError):
            BookProject(
                title="T",
                goal="g",
                session=BookSession(goal="g"),
                roadmap=_roadmap(2),
                modules=modules,
                status=BookStatus.COMPLETED,
            )

    def test_check_invariants_after_mutation(self) -> None:
        project = BookProject(title="T", goal="g", session=BookSession(goal="g"), roadmap=_roadmap(2))
        project.modules = [BookModule(roadmap_module_id="module_1", title="Module 1")]
        with pytest.raises(ValueError):
            project.check_invariants()

    def test_json_roundtrip_keeps_status_enum(self) -> None:
        project = BookProject(
            title="T", goal="g", session=BookSession(goal="g"), status=BookStatus.GENERATING_CONTENT
        )
        restored = BookProject.model_validate_json(project.model_dump_json())
        assert restored.status is BookStatus.GENERATING_CONTENT
        assert restored == project


class TestCountWords:
    def test_counts_whitespace_separated(self) -> None:
        assert count_words("one two\nthree\tfour  ") == 4

    def test_empty(self) -> None:
        assert count_words("   ") == 0


class TestAPISettings:
    def test_defaults(self) -> None:
        settings = APISettings()
        assert settings.selected_provider == "cerebras"
        assert settings.selected_model == "gpt-oss-120b"
        assert settings.default_generation_mode.value == "stellar"
        assert settings.default_language.value == "en"

    def test_unknown_provider_falls_back_to_default(self) -> None:
        settings = APISettings.model_validate({"selected_provider": "acme", "selected_model": "x"})
        assert settings.selected_provider == "cerebras"
        assert settings.selected_model == "gpt-oss-120b"

    def test_model_not_offered_falls_back_to_first_model(self) -> None:
        settings = APISettings.model_validate({"selected_provider": "groq", "selected_model": "gpt-oss-120b"})
        assert settings.selected_provider == "groq"
        assert settings.selected_model == "llama-3.3-70b-versatile"

    def test_invalid_mode_and_language_fall_back(self) -> None:
        settings = APISettings.model_validate(
            {"default_generation_mode": "wormhole", "default_language": "fr"}
        )
        assert settings.default_generation_mode.value == "stellar"
        assert settings.default_language.value == "en"

    def test_unknown_fields_dropped(self) -> None:
        settings = APISettings.model_validate({"theme": "dark"})
        assert "theme" not in settings.model_dump()

    def test_api_keys_filtered_to_known_providers(self) -> None:
        settings = APISettings.model_validate({"api_keys": {"google": "g", "acme": "a", "groq": 5}})
        assert settings.api_keys == {"google": "g"}

    def test_api_key_for_blank_is_none(self) -> None:
        settings = APISettings(api_keys={"google": "  "})
        assert settings.api_key_for("google") is None
        assert settings.api_key_for("mistral") is None


class TestBackupMigration:
    def test_v1_camel_case_backup_migrates(self) -> None:
        v1 = {
            "version": "1.0.0",
            "exportDate": "2025-01-01T10:00:00.000Z",
            "books": [
                {
                    "id": "b1",
                    "title": "Python",
                    "goal": "Learn Python",
                    "language": "en",
                    "status": "completed",
                    "progress": 100,
                    "createdAt": "2025-01-01T09:00:00.000Z",
                    "updatedAt": "2025-01-01T09:30:00.000Z",
                    "roadmap": {
                        "modules": [
                            {"id": "module_1", "title": "Basics", "objectives": ["a"], "estimatedTime": "1h", "order": 1}
                        ],
                        "totalModules": 1,
                        "estimatedReadingTime": "2 hours",
                        "difficultyLevel": "beginner",
                    },
                    "modules": [
                        {
                            "id": "m1",
                            "roadmapModuleId": "module_1",
                            "title": "Basics",
                            "content": "## Basics",
                            "wordCount": 2,
                            "status": "completed",
                        }
                    ],
                    "finalBook": "# Python",
                    "totalWords": 2,
                    "generationMode": "stellar",
                    "category": "programming",
                }
            ],
            "settings": {
                "googleApiKey": "g-key",
                "openRouterApiKey": "",
                "selectedProvider": "google",
                "selectedModel": "gemini-2.5-flash",
            },
        }
        envelope = BackupEnvelope.model_validate(migrate_backup_data(v1))

        assert envelope.version == "2"
        book = envelope.books[0]
        assert book.final_book == "# Python"
        assert book.modules[0].roadmap_module_id == "module_1"
        assert book.roadmap.modules[0].estimated_time == "1h"
        assert book.session.goal == "Learn Python"
        assert envelope.settings.api_keys == {"google": "g-key"}
        assert envelope.settings.selected_model == "gemini-2.5-flash"

    def test_unknown_version_rejected(self) -> None:
        with pytest.raises(ValueError):
            migrate_backup_data({"version": "99", "books": []})

    def test_current_version_untouched(self) -> None:
        data = {"version": "2", "books": [], "settings": {}}
        assert migrate_backup_data(data) is data
