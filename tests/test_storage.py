"""Tests for the settings and book repository."""

import json
import logging

import pytest

from pustakam.errors import StorageError
from pustakam.models import APISettings, BookProject, BookSession, BookStatus
from pustakam.storage.kv import MemoryKeyValueStore
from pustakam.storage.repository import BOOKS_KEY, SETTINGS_KEY, LocalStore, books_key, dump_json


def _book(book_id: str, title: str = "Book") -> BookProject:
    return BookProject(id=book_id, title=title, goal=f"Learn {title}", session=BookSession(goal=f"Learn {title}"))


class _BrokenKeyValueStore(MemoryKeyValueStore):
    def get(self, key: str) -> str | None:
        raise StorageError("disk on fire")

    def set(self, key: str, value: str) -> None:
        raise StorageError("disk on fire")


@pytest.fixture
def kv() -> MemoryKeyValueStore:
    return MemoryKeyValueStore()


@pytest.fixture
def store(kv: MemoryKeyValueStore) -> LocalStore:
    return LocalStore(kv)


class TestBooksKey:
    def test_anonymous_partition(self) -> None:
        assert books_key() == "pustakam-books"

    def test_user_partition(self) -> None:
        assert books_key("u1") == "pustakam-books-u1"


class TestDumpJson:
    def test_deterministic_key_order(self) -> None:
        assert dump_json({"b": 1, "a": 2}) == dump_json({"a": 2, "b": 1}) == '{"a":2,"b":1}'

    def test_keeps_non_ascii(self) -> None:
        assert dump_json({"t": "पुस्तकम्"}) == '{"t":"पुस्तकम्"}'


class TestSettings:
    def test_defaults_when_nothing_stored(self, store: LocalStore) -> None:
        assert store.get_settings() == APISettings()

    def test_save_and_load(self, store: LocalStore) -> None:
        settings = APISettings(api_keys={"groq": "gsk"}, selected_provider="groq", selected_model="llama-3.3-70b-versatile")
        assert store.save_settings(settings) is True
        assert store.get_settings() == settings

    def test_corrupt_settings_fall_back_to_defaults(self, kv: MemoryKeyValueStore, store: LocalStore) -> None:
        kv.set(SETTINGS_KEY, "{not json")
        assert store.get_settings() == APISettings()

    def test_non_object_settings_fall_back_to_defaults(self, kv: MemoryKeyValueStore, store: LocalStore) -> None:
        kv.set(SETTINGS_KEY, "[1, 2]")
        assert store.get_settings() == APISettings()

    def test_invalid_stored_values_are_coerced(self, kv: MemoryKeyValueStore, store: LocalStore) -> None:
        kv.set(SETTINGS_KEY, json.dumps({"selected_provider": "nope", "default_language": "xx"}))
        settings = store.get_settings()
        assert settings.selected_provider == "cerebras"
        assert settings.default_language.value == "en"

    @pytest.mark.parametrize("bad_value", [["en"], {"lang": "en"}, 3])
    def test_non_scalar_stored_values_are_coerced(
        self, kv: MemoryKeyValueStore, store: LocalStore, bad_value: object
    ) -> None:
        kv.set(
            SETTINGS_KEY,
            json.dumps(
                {
                    "selected_provider": "groq",
                    "default_language": bad_value,
                    "default_generation_mode": bad_value,
                }
            ),
        )
        settings = store.get_settings()
        assert settings.selected_provider == "groq"
        assert settings.default_language.value == "en"
        assert settings.default_generation_mode.value == "stellar"

    def test_backend_failure_returns_defaults(self) -> None:
        store = LocalStore(_BrokenKeyValueStore())
        assert store.get_settings() == APISettings()
        assert store.save_settings(APISettings()) is False


class TestBooks:
    def test_empty_partition(self, store: LocalStore) -> None:
        assert store.get_books() == []

    def test_save_and_get_book(self, store: LocalStore) -> None:
        book = _book("b1", "Rust")
        assert store.save_book(book) is True
        assert store.get_book("b1") == book
        assert store.get_book("missing") is None

    def test_save_book_replaces_by_id(self, store: LocalStore) -> None:
        book = _book("b1")
        store.save_book(book)
        book.status = BookStatus.ERROR
        store.save_book(book)

        books = store.get_books()
        assert len(books) == 1
        assert books[0].status == BookStatus.ERROR

    def test_delete_book(self, store: LocalStore) -> None:
        store.save_books([_book("b1"), _book("b2")])
        assert store.delete_book("b1") is True
        assert [b.id for b in store.get_books()] == ["b2"]

    def test_delete_missing_book(self, store: LocalStore) -> None:
        store.save_books([_book("b1")])
        assert store.delete_book("nope") is False

    def test_invalid_books_are_skipped(self, kv: MemoryKeyValueStore, store: LocalStore) -> None:
        valid = _book("b1").model_dump(mode="json")
        kv.set(BOOKS_KEY, json.dumps([valid, {"id": "broken"}, "junk"]))
        assert [b.id for b in store.get_books()] == ["b1"]

    def test_corrupt_books_json(self, kv: MemoryKeyValueStore, store: LocalStore) -> None:
        kv.set(BOOKS_KEY, "[[[")
        assert store.get_books() == []

    def test_partitions_are_separate(self, store: LocalStore) -> None:
        store.save_books([_book("mine")], "u1")
        store.save_books([_book("theirs")], "u2")
        assert [b.id for b in store.get_books("u1")] == ["mine"]
        assert [b.id for b in store.get_books("u2")] == ["theirs"]

    def test_snapshot_is_deterministic(self, kv: MemoryKeyValueStore, store: LocalStore) -> None:
        book = _book("b1")
        store.save_books([book])
        first = kv.get(BOOKS_KEY)
        store.save_books([BookProject.model_validate_json(book.model_dump_json())])
        assert kv.get(BOOKS_KEY) == first

    def test_quota_exceeded_returns_false(self, caplog: pytest.LogCaptureFixture) -> None:
        store = LocalStore(MemoryKeyValueStore(quota_bytes=50))
        with caplog.at_level(logging.ERROR):
            assert store.save_book(_book("b1", "A rather long title")) is False
        assert "quota" in caplog.text.lower()
        assert store.get_books() == []

    def test_clear_books(self, store: LocalStore) -> None:
        store.save_books([_book("b1")])
        assert store.clear_books() is True
        assert store.get_books() == []


class TestAnonymousMigration:
    def test_anonymous_books_move_to_user(self, kv: MemoryKeyValueStore, store: LocalStore) -> None:
        store.save_books([_book("b1")])

        books = store.get_books("u1")

        assert [b.id for b in books] == ["b1"]
        assert kv.get(BOOKS_KEY) is None
        assert kv.get(books_key("u1")) is not None

    def test_migration_happens_once(self, store: LocalStore) -> None:
        store.save_books([_book("b1")])
        store.get_books("u1")
        # Later anonymous books stay put because the user partition exists
        store.save_books([_book("b2")])

        assert [b.id for b in store.get_books("u1")] == ["b1"]
        assert [b.id for b in store.get_books()] == ["b2"]

    def test_existing_user_books_not_overwritten(self, store: LocalStore) -> None:
        store.save_books([_book("mine")], "u1")
        store.save_books([_book("anon")])

        assert [b.id for b in store.get_books("u1")] == ["mine"]


class TestClearAll:
    def test_removes_only_application_keys(self, kv: MemoryKeyValueStore, store: LocalStore) -> None:
        store.save_settings(APISettings())
        store.save_books([_book("b1")], "u1")
        kv.set("other-app", "keep")

        assert store.clear_all() is True
        assert kv.keys() == ["other-app"]
