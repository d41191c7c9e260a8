"""
Tests for src/completion_store.py: completion log backends.

Both backends share one contract, so most tests run against each of them:
- get() of an unknown id is None
- set_if_absent() keeps the first timestamp
- records survive a restart (new store instance on the same file)
"""

import json
import os
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest

from completion_store import (
    JsonCompletionStore,
    SqliteCompletionStore,
    create_completion_store,
    format_completed_at,
    parse_completed_at,
)
from exceptions import StorageError


FIRST = "2025-11-05T14:30:45.123Z"
SECOND = "2025-11-06T08:00:00.000Z"


@pytest.fixture(params=["json", "sqlite"])
def store_factory(request, tmp_path):
    """Returns a callable creating a store on the same file each time."""
    if request.param == "json":
        path = tmp_path / "data" / "ausbuch-log.json"
        return lambda: JsonCompletionStore(path)
    path = tmp_path / "data" / "ausbuch-log.db"
    return lambda: SqliteCompletionStore(path)


class TestTimestampFormat:
    def test_format_utc_milliseconds_z(self):
        moment = datetime(2025, 11, 5, 14, 30, 45, 123456, tzinfo=timezone.utc)
        assert format_completed_at(moment) == "2025-11-05T14:30:45.123Z"

    def test_naive_is_utc(self):
        assert format_completed_at(datetime(2025, 1, 2, 3, 4, 5)) == "2025-01-02T03:04:05.000Z"

    def test_parse_round_trip(self):
        parsed = parse_completed_at(FIRST)
        assert parsed.tzinfo is not None
        assert format_completed_at(parsed) == FIRST


class TestStoreContract:
    def test_unknown_task(self, store_factory):
        store = store_factory()
        assert store.get("42") is None
        assert store.is_completed("42") is False

    def test_set_then_get(self, store_factory):
        store = store_factory()
        assert store.set_if_absent("42", FIRST) == FIRST
        assert store.get("42") == FIRST
        assert store.is_completed("42") is True

    def test_first_write_wins(self, store_factory):
        store = store_factory()
        store.set_if_absent("42", FIRST)

        assert store.set_if_absent("42", SECOND) == FIRST
        assert store.get("42") == FIRST

    def test_numeric_id_is_stringified(self, store_factory):
        store = store_factory()
        store.set_if_absent(42, FIRST)
        assert store.get("42") == FIRST

    def test_survives_restart(self, store_factory):
        store_factory().set_if_absent("42", FIRST)
        store_factory().set_if_absent("43", SECOND)

        reopened = store_factory()
        assert reopened.get("42") == FIRST
        assert reopened.get("43") == SECOND


class TestJsonCompletionStore:
    def test_file_layout(self, tmp_path):
        path = tmp_path / "ausbuch-log.json"
        store = JsonCompletionStore(path)
        store.set_if_absent("8412345678", FIRST)

        assert json.loads(path.read_text(encoding="utf-8")) == {"8412345678": FIRST}

    def test_restart_round_trip_is_byte_identical(self, tmp_path):
        path = tmp_path / "ausbuch-log.json"
        store = JsonCompletionStore(path)
        store.set_if_absent("1", FIRST)
        store.set_if_absent("2", SECOND)
        before = path.read_bytes()

        reopened = JsonCompletionStore(path)
        assert reopened.get("1") == FIRST
        # A no-op write keeps the file untouched
        reopened.set_if_absent("1", SECOND)
        assert path.read_bytes() == before

    def test_existing_file_is_read(self, tmp_path):
        path = tmp_path / "ausbuch-log.json"
        path.write_text(json.dumps({"7": FIRST}), encoding="utf-8")

        assert JsonCompletionStore(path).get("7") == FIRST

    def test_corrupt_file_treated_as_empty(self, tmp_path):
        path = tmp_path / "ausbuch-log.json"
        path.write_text("{not json", encoding="utf-8")

        store = JsonCompletionStore(path)
        assert store.get("7") is None
        # Reads leave the damaged file where it is
        assert path.read_text(encoding="utf-8") == "{not json"

    def test_corrupt_file_moved_aside_before_write(self, tmp_path):
        path = tmp_path / "ausbuch-log.json"
        path.write_text('{"1": "2025-11-05T14:30:45.123Z", "2": ', encoding="utf-8")

        store = JsonCompletionStore(path)
        store.set_if_absent("7", FIRST)

        assert json.loads(path.read_text(encoding="utf-8")) == {"7": FIRST}
        moved = list(tmp_path.glob("ausbuch-log.json.corrupt-*"))
        assert len(moved) == 1
        assert moved[0].read_text(encoding="utf-8") == '{"1": "2025-11-05T14:30:45.123Z", "2": '

    def test_corrupt_file_that_cannot_be_moved_is_not_overwritten(self, tmp_path):
        path = tmp_path / "ausbuch-log.json"
        path.write_text("{not json", encoding="utf-8")
        store = JsonCompletionStore(path)

        with patch("completion_store.os.replace", side_effect=OSError("busy")):
            with pytest.raises(StorageError):
                store.set_if_absent("7", FIRST)

        assert path.read_text(encoding="utf-8") == "{not json"

    def test_non_object_treated_as_empty(self, tmp_path):
        path = tmp_path / "ausbuch-log.json"
        path.write_text("[1, 2, 3]", encoding="utf-8")

        store = JsonCompletionStore(path)
        assert store.get("1") is None

        store.set_if_absent("1", FIRST)
        assert len(list(tmp_path.glob("ausbuch-log.json.corrupt-*"))) == 1

    def test_no_temp_files_left(self, tmp_path):
        store = JsonCompletionStore(tmp_path / "ausbuch-log.json")
        store.set_if_absent("1", FIRST)

        assert not list(tmp_path.glob(".tmp_ausbuch_*"))

    def test_write_failure_raises_storage_error(self, tmp_path):
        path = tmp_path / "ausbuch-log.json"
        store = JsonCompletionStore(path)

        with patch("completion_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(StorageError):
                store.set_if_absent("1", FIRST)

        assert not path.exists()
        assert not list(tmp_path.glob(".tmp_ausbuch_*"))


class TestSqliteCompletionStore:
    def test_db_path(self, tmp_path):
        store = SqliteCompletionStore(tmp_path / "log.db")
        assert store.db_path == str(tmp_path / "log.db")

    def test_table_created(self, tmp_path):
        import sqlite3

        SqliteCompletionStore(tmp_path / "log.db")
        conn = sqlite3.connect(tmp_path / "log.db")
        try:
            tables = [r[0] for r in conn.execute(
                "SELECT name FROM sqlite_master WHERE type='table'")]
        finally:
            conn.close()
        assert "completion_log" in tables


class TestCreateCompletionStore:
    def test_json_backend(self, tmp_path):
        config = SimpleNamespace(storage_backend="json", completion_log_path=tmp_path / "a.json")
        assert isinstance(create_completion_store(config), JsonCompletionStore)

    def test_sqlite_backend(self, tmp_path):
        config = SimpleNamespace(storage_backend="sqlite", completion_log_path=tmp_path / "a.db")
        store = create_completion_store(config)
        assert isinstance(store, SqliteCompletionStore)
        assert os.path.exists(tmp_path / "a.db")
